"""
Identify Engine

Evidence fusion over four concurrent detectors:
1. Barcode - pyzbar
2. OCR - easyocr over label crops
3. Vision - vision-language model description (mock or live)
4. Visual neighbors - gallery similarity
"""

from clearout.engines.identify.schemas import IdentifyOptionsDTO, IdentifyResultDTO
from clearout.engines.identify.services import IdentifyService, analyze_item

__all__ = ["IdentifyOptionsDTO", "IdentifyResultDTO", "IdentifyService", "analyze_item"]
