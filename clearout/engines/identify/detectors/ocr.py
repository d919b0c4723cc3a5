"""
OCR Detector

Reads text from the bottom strip, the centered tag region and the full
frame of every OCR-ready image with easyocr. From the combined text it
derives identifier candidates, hazard keywords and brand hints.
"""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import numpy as np
from PIL import Image

from clearout.core.cache import LazyCell
from clearout.core.config import settings
from clearout.core.exceptions import DetectorError
from clearout.core.logging import get_logger
from clearout.engines.identify.detectors.base import Detector
from clearout.engines.identify.preprocess import PreparedImage
from clearout.engines.identify.repositories import ReferenceRepository, get_reference_repository
from clearout.engines.identify.schemas import IdentifyOptionsDTO, OcrEvidence
from clearout.engines.identify.text import brand_hints, detect_hazards, extract_ids

logger = get_logger(__name__)

# Returns raw text blocks for one grayscale crop
Recognizer = Callable[[Image.Image], List[str]]

BOTTOM_STRIP_START = 0.7
TAG_REGION_FRACTION = 0.5


def _load_easyocr_reader():
    import easyocr

    langs = [lang.strip() for lang in settings.OCR_LANGS.split(",") if lang.strip()]
    logger.info("ocr_reader_loading", langs=langs, gpu=settings.OCR_GPU)
    return easyocr.Reader(langs, gpu=settings.OCR_GPU, verbose=False)


_easyocr_reader = LazyCell(_load_easyocr_reader, name="easyocr_reader")


def easyocr_recognizer() -> Optional[Recognizer]:
    """Recognizer backed by a shared easyocr Reader, or None if not installed.

    The first call loads the model and blocks; call it from a worker thread.

    Raises:
        DetectorError: easyocr is installed but the reader failed to load
    """
    try:
        reader = _easyocr_reader.get()
    except ImportError as e:
        logger.warning("ocr_recognizer_unavailable", error=str(e))
        return None
    except Exception as e:
        raise DetectorError(f"easyocr reader failed to load: {e}", stage="ocr") from e

    def _recognize(img: Image.Image) -> List[str]:
        return [str(t) for t in reader.readtext(np.array(img), detail=0)]

    return _recognize


def ocr_crops(img: Image.Image) -> List[Tuple[str, Image.Image]]:
    """Bottom 30% strip, centered 50%x50% tag region, then the full frame."""
    width, height = img.size
    top = int(height * BOTTOM_STRIP_START)
    tag_w, tag_h = int(width * TAG_REGION_FRACTION), int(height * TAG_REGION_FRACTION)
    left, upper = (width - tag_w) // 2, (height - tag_h) // 2

    crops = []
    if height - top > 0:
        crops.append(("bottom", img.crop((0, top, width, height))))
    if tag_w > 0 and tag_h > 0:
        crops.append(("tag", img.crop((left, upper, left + tag_w, upper + tag_h))))
    crops.append(("full", img))
    return crops


def filename_lines(names: List[str]) -> List[str]:
    return [name.replace("_", " ").replace(".", " ").replace("-", " ") for name in names]


class OcrDetector(Detector[OcrEvidence]):
    stage = "ocr"

    def __init__(
        self,
        recognizer: Optional[Recognizer] = None,
        reference: Optional[ReferenceRepository] = None,
        max_lines: Optional[int] = None,
    ):
        self._recognizer = recognizer
        self._unavailable = False
        self._reference = reference
        self.max_lines = max_lines or settings.OCR_MAX_LINES

    def _resolve_recognizer(self) -> Optional[Recognizer]:
        # Runs in the worker thread; a missing library is remembered
        if self._recognizer is None and not self._unavailable:
            self._recognizer = easyocr_recognizer()
            self._unavailable = self._recognizer is None
        return self._recognizer

    @property
    def reference(self) -> ReferenceRepository:
        return self._reference or get_reference_repository()

    def empty(self) -> OcrEvidence:
        return OcrEvidence()

    def _save_crop(self, debug_dir: str, index: int, region: str, crop: Image.Image):
        try:
            path = Path(debug_dir)
            path.mkdir(parents=True, exist_ok=True)
            crop.save(path / f"ocr_{index}_{region}.png")
        except (OSError, ValueError) as e:
            logger.debug("ocr_debug_write_failed", debug_dir=debug_dir, error=str(e))

    def _recognize_all(self, images: List[PreparedImage], debug_dir: Optional[str]) -> List[str]:
        recognizer = self._resolve_recognizer()
        lines: List[str] = []
        if recognizer is None:
            return lines
        for index, image in enumerate(images):
            if image.ocr_ready is None:
                continue
            for region, crop in ocr_crops(image.ocr_ready):
                if debug_dir:
                    self._save_crop(debug_dir, index, region, crop)
                try:
                    blocks = recognizer(crop)
                except Exception as e:
                    # A bad crop only loses its own text
                    logger.debug("ocr_crop_failed", region=region, error=str(e))
                    continue
                for block in blocks:
                    lines.extend(line.strip() for line in block.splitlines() if line.strip())
        return lines

    async def extract(
        self,
        images: List[PreparedImage],
        options: IdentifyOptionsDTO,
        timeout_s: float,
    ) -> OcrEvidence:
        lines = await asyncio.to_thread(self._recognize_all, images, options.debug_dir)

        if options.allow_filename_text:
            lines.extend(filename_lines(options.image_names))

        text = "\n".join(lines)
        return OcrEvidence(
            lines=tuple(lines[: self.max_lines]),
            ids=tuple(extract_ids(text)),
            hazards=tuple(detect_hazards(text)),
            brand_hints=tuple(brand_hints(text, self.reference.brand_lexicon())),
        )
