"""
Structured logging with structlog.

Events are snake_case names with keyword context (`stage_completed`,
`identify_completed`, ...). Inside an identify call every entry carries
the call's `request_id`; inside a detector stage it also carries `stage`.
Both travel in context variables, so work handed to `asyncio.to_thread`
keeps them.
"""

import sys
import logging
import structlog
from typing import Optional, Any, Dict
from contextvars import ContextVar

from clearout import __version__
from clearout.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

# Third-party loggers that are chatty below WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "PIL", "easyocr")


def add_call_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Attach version, request id and stage; an explicit stage= wins."""
    event_dict["version"] = __version__

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    stage = stage_var.get()
    if stage:
        event_dict.setdefault("stage", stage)

    return event_dict


def setup_logging(log_level: Optional[str] = None, json_format: Optional[bool] = None):
    """
    Configure structlog over stdlib logging on stdout.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR; defaults to settings.LOG_LEVEL
        json_format: JSON lines if True, console output if False;
            defaults to settings.LOG_FORMAT_JSON
    """
    level = (log_level or settings.LOG_LEVEL).upper()
    if json_format is None:
        json_format = settings.LOG_FORMAT_JSON

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            add_call_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """
    Scope `request_id` and/or `stage` onto every log entry in the block.

    Usage:
        with LogContext(request_id=str(uuid.uuid4())):
            ...
    """

    def __init__(self, request_id: Optional[str] = None, stage: Optional[str] = None):
        self.request_id = request_id
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        if self.request_id:
            self._tokens.append((request_id_var, request_id_var.set(self.request_id)))
        if self.stage:
            self._tokens.append((stage_var, stage_var.set(self.stage)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False
