"""
Detector contract and the deadline guard every stage runs behind.

A detector turns prepared images into one kind of partial evidence. It
never raises to the orchestrator: `Detector.run` races `extract` against
the stage deadline and substitutes `empty()` on timeout or failure.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Generic, List, Tuple, TypeVar

from clearout.core.exceptions import ClearoutBaseException
from clearout.core.logging import LogContext, get_logger
from clearout.core.metrics import record_detector_outcome
from clearout.engines.identify.preprocess import PreparedImage
from clearout.engines.identify.schemas import IdentifyOptionsDTO, StageOutcome

logger = get_logger(__name__)

T = TypeVar("T")
E = TypeVar("E")


async def guard_deadline(coro: Awaitable[T], timeout_s: float, default: T) -> Tuple[T, StageOutcome]:
    """Await `coro` for at most `timeout_s`; `default` on timeout or error.

    On timeout the awaiting task is cancelled. Work already handed to a
    thread keeps running but its result is dropped.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout_s), StageOutcome.OK
    except asyncio.TimeoutError:
        return default, StageOutcome.TIMEOUT
    except ClearoutBaseException as e:
        logger.warning("stage_failed", error=e.message, error_code=e.code, details=e.details)
        return default, StageOutcome.ERROR
    except Exception as e:
        logger.warning("stage_failed", error=str(e), error_type=type(e).__name__)
        return default, StageOutcome.ERROR


async def run_with_deadline(coro: Awaitable[T], timeout_s: float, default: T) -> T:
    """Race `coro` against a deadline, substituting `default` on expiry or failure."""
    value, _ = await guard_deadline(coro, timeout_s, default)
    return value


class Detector(ABC, Generic[E]):
    """One detector stage (barcode, ocr, vlm, clip)."""

    stage: str = ""

    @abstractmethod
    def empty(self) -> E:
        """Zero-value evidence for this stage."""

    @abstractmethod
    async def extract(
        self,
        images: List[PreparedImage],
        options: IdentifyOptionsDTO,
        timeout_s: float,
    ) -> E:
        ...

    async def run(
        self,
        images: List[PreparedImage],
        options: IdentifyOptionsDTO,
        timeout_s: float,
        enabled: bool = True,
    ) -> Tuple[E, StageOutcome]:
        """Run the stage behind its deadline. Never raises."""
        if not enabled:
            record_detector_outcome(self.stage, StageOutcome.DISABLED.value)
            logger.debug("stage_disabled", stage=self.stage)
            return self.empty(), StageOutcome.DISABLED

        start = time.perf_counter()
        with LogContext(stage=self.stage):
            evidence, outcome = await guard_deadline(
                self.extract(images, options, timeout_s), timeout_s, self.empty()
            )
        elapsed = time.perf_counter() - start
        record_detector_outcome(self.stage, outcome.value, elapsed)

        if outcome == StageOutcome.TIMEOUT:
            logger.warning("stage_timeout", stage=self.stage, timeout_ms=round(timeout_s * 1000))
        else:
            logger.info("stage_completed", stage=self.stage, outcome=outcome.value,
                        duration_ms=round(elapsed * 1000, 2))
        return evidence, outcome
