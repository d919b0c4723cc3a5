"""
Identify Service

Orchestrates one identify call:

1. Validate options (the only failure a caller can see)
2. Prepare images (RGB original + OCR-ready grayscale)
3. Run barcode, OCR, vision and visual-neighbor detectors concurrently,
   each behind its own deadline
4. Classify OCR text with the keyword rules
5. Fuse, calibrate and assemble the result
"""

import asyncio
import time
import uuid
from typing import Any, Dict, Optional, Sequence, Union

from pydantic import ValidationError

from clearout.core.cache import LazyCell
from clearout.core.config import IdentifyConfig, get_identify_config
from clearout.core.exceptions import OptionsValidationError
from clearout.core.logging import LogContext, get_logger
from clearout.core.metrics import record_identify_result
from clearout.engines.identify.assembler import assemble_result
from clearout.engines.identify.detectors.barcode import BarcodeDetector
from clearout.engines.identify.detectors.base import Detector
from clearout.engines.identify.detectors.neighbors import NeighborDetector
from clearout.engines.identify.detectors.ocr import OcrDetector
from clearout.engines.identify.detectors.vision import VisionDetector
from clearout.engines.identify.fusion import fuse
from clearout.engines.identify.preprocess import prepare_images
from clearout.engines.identify.repositories import ReferenceRepository, get_reference_repository
from clearout.engines.identify.rules import classify_from_text
from clearout.engines.identify.schemas import FusionInputs, IdentifyOptionsDTO, IdentifyResultDTO

logger = get_logger(__name__)

OptionsInput = Union[IdentifyOptionsDTO, Dict[str, Any], None]


def parse_options(options: OptionsInput) -> IdentifyOptionsDTO:
    """Validate caller options eagerly.

    Raises:
        OptionsValidationError: unknown keys, wrong types, bad values
    """
    if options is None:
        return IdentifyOptionsDTO()
    if isinstance(options, IdentifyOptionsDTO):
        return options
    if not isinstance(options, dict):
        raise OptionsValidationError(f"Options must be a mapping, got {type(options).__name__}")
    try:
        return IdentifyOptionsDTO.model_validate(options)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise OptionsValidationError("Invalid identify options", errors=errors)


class IdentifyService:
    """
    Identify a household item from photos and recommend what to do with it.

    Detectors and reference data are injectable; by default every detector
    uses the process-wide reference repository and the real libraries.
    """

    def __init__(
        self,
        config: Optional[IdentifyConfig] = None,
        reference: Optional[ReferenceRepository] = None,
        barcode: Optional[Detector] = None,
        ocr: Optional[Detector] = None,
        vision: Optional[Detector] = None,
        neighbors: Optional[Detector] = None,
    ):
        self._config = config
        self._reference = reference
        self.barcode = barcode or BarcodeDetector()
        self.ocr = ocr or OcrDetector(reference=reference)
        self.vision = vision or VisionDetector(reference=reference)
        self.neighbors = neighbors or NeighborDetector(reference=reference)

    @property
    def config(self) -> IdentifyConfig:
        return self._config or get_identify_config()

    @property
    def reference(self) -> ReferenceRepository:
        return self._reference or get_reference_repository()

    def _stage_timeout_s(self, stage: str, options: IdentifyOptionsDTO) -> float:
        ms = options.timeout_ms or self.config.timeouts.for_stage(stage)
        return ms / 1000.0

    def _stage_enabled(self, stage: str, options: IdentifyOptionsDTO) -> bool:
        requested = getattr(options.enable_stages, stage)
        if requested is not None:
            return requested
        return getattr(self.config.enable_stages, stage)

    async def analyze(self, images: Sequence[bytes], options: OptionsInput = None) -> IdentifyResultDTO:
        """
        Run the full pipeline over `images`.

        Args:
            images: Raw image buffers, in order
            options: IdentifyOptionsDTO or a dict with camelCase/snake_case keys

        Returns:
            IdentifyResultDTO; always well-formed once options validate

        Raises:
            OptionsValidationError: options failed validation (before any detector runs)
        """
        opts = parse_options(options)
        request_id = str(uuid.uuid4())

        with LogContext(request_id=request_id):
            start = time.perf_counter()
            logger.info("identify_started", images=len(images), allow_filename_text=opts.allow_filename_text)

            prepared = await asyncio.to_thread(prepare_images, list(images), opts.image_names)

            detectors = (self.barcode, self.ocr, self.vision, self.neighbors)
            results = await asyncio.gather(*[
                d.run(prepared, opts, self._stage_timeout_s(d.stage, opts), self._stage_enabled(d.stage, opts))
                for d in detectors
            ])
            (barcode, barcode_outcome), (ocr, ocr_outcome), (vision, vision_outcome), (nbrs, nbrs_outcome) = results

            reference = self.reference
            rule = classify_from_text("\n".join(ocr.lines), opts.user_allowed_categories, reference.rules())

            inputs = FusionInputs(
                codes=barcode.codes,
                ocr_lines=ocr.lines,
                ocr_ids=ocr.ids,
                ocr_hazards=ocr.hazards,
                brand_hints=ocr.brand_hints,
                vision=vision,
                neighbors=nbrs.neighbors,
                rule=rule,
                stage_outcomes={
                    self.barcode.stage: barcode_outcome,
                    self.ocr.stage: ocr_outcome,
                    self.vision.stage: vision_outcome,
                    self.neighbors.stage: nbrs_outcome,
                },
            )
            decision = fuse(inputs, self.config, reference)
            result = assemble_result(inputs, decision)

            elapsed = time.perf_counter() - start
            record_identify_result(
                result.resolution_level.value, result.next_step.value, result.confidence, elapsed
            )
            logger.info(
                "identify_completed",
                resolution_level=result.resolution_level.value,
                next_step=result.next_step.value,
                category=decision.category,
                raw_score=round(decision.raw_score, 4),
                confidence=round(result.confidence, 4),
                duration_ms=round(elapsed * 1000, 2),
            )
            return result


_default_service: LazyCell[IdentifyService] = LazyCell(IdentifyService, name="identify_service")


async def analyze_item(images: Sequence[bytes], options: OptionsInput = None) -> IdentifyResultDTO:
    """Identify an item with the process-wide service."""
    return await _default_service.get().analyze(images, options)
