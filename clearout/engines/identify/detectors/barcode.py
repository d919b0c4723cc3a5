"""
Barcode Detector

Decodes retail and QR codes from each original image with pyzbar, trying
0/90/180/270 degree rotations and stopping at the first rotation that
reads. When nothing decodes (or zbar is not installed) and the caller
allows filename text, ISBN/EAN-looking tokens in image names are used
instead, tagged `FILENAME:`.
"""

import asyncio
import re
from typing import Callable, List, Optional, Tuple

from PIL import Image

from clearout.core.exceptions import DetectorError
from clearout.core.logging import get_logger
from clearout.engines.identify.detectors.base import Detector
from clearout.engines.identify.preprocess import PreparedImage
from clearout.engines.identify.schemas import BarcodeEvidence, IdentifyOptionsDTO

logger = get_logger(__name__)

# Returns (format, text) pairs for one image
Decoder = Callable[[Image.Image], List[Tuple[str, str]]]

ROTATIONS = (0, 90, 180, 270)

# pyzbar symbol type -> tag used in evidence codes
FORMAT_TAGS = {
    "EAN13": "EAN_13",
    "EAN8": "EAN_8",
    "UPCA": "UPC_A",
    "UPCE": "UPC_E",
    "CODE128": "CODE_128",
    "QRCODE": "QR_CODE",
}

FILENAME_CODE_PATTERN = re.compile(r"(97[89]\d{10}|\b\d{12,13}\b|ISBN[\d-]+)", re.IGNORECASE)
ISBN_DIGITS_PATTERN = re.compile(r"97[89]\d{10}|\d{9}[\dXx]")

BOOKS_PRODUCT_CATEGORY = "Media > Books"


def pyzbar_decoder() -> Optional[Decoder]:
    """Decoder backed by pyzbar, or None when zbar is unavailable."""
    try:
        from pyzbar.pyzbar import ZBarSymbol, decode
    except ImportError as e:
        logger.warning("barcode_decoder_unavailable", error=str(e))
        return None

    symbols = [getattr(ZBarSymbol, name) for name in FORMAT_TAGS]

    def _decode(img: Image.Image) -> List[Tuple[str, str]]:
        found = []
        for result in decode(img, symbols=symbols):
            text = result.data.decode("utf-8", errors="replace")
            if text:
                found.append((FORMAT_TAGS.get(result.type, result.type), text))
        return found

    return _decode


def codes_from_filenames(names: List[str]) -> List[str]:
    codes = []
    for name in names:
        m = FILENAME_CODE_PATTERN.search(name)
        if m:
            codes.append(f"FILENAME:{m.group(1)}")
    return list(dict.fromkeys(codes))


def map_barcode_to_category(code: str) -> Optional[str]:
    """`Media > Books` for ISBN-13/ISBN-10 payloads, else None.

    Accepts tagged codes (`EAN_13:978...`, `FILENAME:ISBN-...`) or raw text.
    """
    raw = code.split(":")[-1]
    digits = re.sub(r"[^0-9Xx]", "", raw)
    if digits and ISBN_DIGITS_PATTERN.fullmatch(digits):
        return BOOKS_PRODUCT_CATEGORY
    return None


class BarcodeDetector(Detector[BarcodeEvidence]):
    stage = "barcode"

    def __init__(self, decoder: Optional[Decoder] = None):
        self._decoder = decoder
        self._unavailable = False

    def _resolve_decoder(self) -> Optional[Decoder]:
        # Runs in the worker thread; a missing library is remembered
        if self._decoder is None and not self._unavailable:
            self._decoder = pyzbar_decoder()
            self._unavailable = self._decoder is None
        return self._decoder

    def empty(self) -> BarcodeEvidence:
        return BarcodeEvidence()

    def _decode_all(self, images: List[PreparedImage]) -> List[str]:
        decoder = self._resolve_decoder()
        codes: List[str] = []
        if decoder is None:
            return codes
        for image in images:
            if image.original is None:
                continue
            for angle in ROTATIONS:
                frame = image.original if angle == 0 else image.original.rotate(angle, expand=True)
                try:
                    found = decoder(frame)
                except Exception as e:
                    raise DetectorError(f"barcode decoding failed: {e}", stage=self.stage) from e
                if found:
                    codes.extend(f"{fmt}:{text}" for fmt, text in found)
                    break
        return list(dict.fromkeys(codes))

    async def extract(
        self,
        images: List[PreparedImage],
        options: IdentifyOptionsDTO,
        timeout_s: float,
    ) -> BarcodeEvidence:
        codes = await asyncio.to_thread(self._decode_all, images)

        if not codes and options.allow_filename_text:
            codes = codes_from_filenames(options.image_names)
            if codes:
                logger.info("barcode_from_filename", count=len(codes))

        return BarcodeEvidence(codes=tuple(codes))
