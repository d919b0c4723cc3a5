"""
Exception Taxonomy

Only `OptionsValidationError` ever reaches a caller of `analyze_item`.
Detector and reference-data errors are raised internally and converted to
empty evidence or to the dataset's no-op value where they are caught.
"""

from typing import Optional, Dict, Any

from clearout.core.logging import request_id_var


# =============================================================================
# Custom Exceptions
# =============================================================================

class ClearoutBaseException(Exception):
    """Base exception for ClearOut Identify."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "request_id": self.request_id,
            "code": self.code,
            "stage": self.stage,
            "details": self.details,
        }


class OptionsValidationError(ClearoutBaseException):
    """Raised when caller options fail schema validation."""

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        super().__init__(message, code=400, **kwargs)
        self.details["errors"] = errors or []


class DetectorError(ClearoutBaseException):
    """Raised inside a detector when its underlying library fails."""

    def __init__(self, message: str, stage: str, **kwargs):
        super().__init__(message, code=500, stage=stage, **kwargs)


class ExternalAPIError(ClearoutBaseException):
    """Raised when an external API call fails (e.g., the vision model)."""

    def __init__(self, message: str, service: str, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, code=502, **kwargs)
        self.details["service"] = service
        self.details["http_status"] = http_status


class ReferenceDataError(ClearoutBaseException):
    """Raised when a reference-data file is missing or corrupt."""

    def __init__(self, message: str, dataset: str, **kwargs):
        super().__init__(message, code=500, **kwargs)
        self.details["dataset"] = dataset


class CalibrationError(ValueError):
    """Raised when a calibration map cannot be fitted or is invalid."""
