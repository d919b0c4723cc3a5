"""
Image preparation boundary.

Each raw buffer becomes a `PreparedImage` carrying the raw bytes (for
embedding), an upright RGB original bounded to 1600 px (barcode, vision)
and an autocontrasted grayscale copy (OCR). Buffers PIL cannot decode
keep only their bytes; detectors that need pixels skip them.
"""

import io
from typing import List, Optional, Sequence

from PIL import Image, ImageOps, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict

from clearout.core.logging import get_logger

logger = get_logger(__name__)

MAX_SIDE = 1600


class PreparedImage(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: bytes
    original: Optional[Image.Image] = None
    ocr_ready: Optional[Image.Image] = None
    name: Optional[str] = None


def prepare_image(data: bytes, name: Optional[str] = None) -> PreparedImage:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("image_undecodable", name=name, error=str(e))
        return PreparedImage(data=data, name=name)

    img = ImageOps.exif_transpose(img).convert("RGB")
    img.thumbnail((MAX_SIDE, MAX_SIDE))
    gray = ImageOps.autocontrast(img.convert("L"))
    return PreparedImage(data=data, original=img, ocr_ready=gray, name=name)


def prepare_images(buffers: Sequence[bytes], names: Optional[Sequence[str]] = None) -> List[PreparedImage]:
    """Prepare every buffer; `names[i]` labels `buffers[i]` when present."""
    names = list(names or [])
    return [
        prepare_image(bytes(data), names[i] if i < len(names) else None)
        for i, data in enumerate(buffers)
    ]
