import asyncio
import io
import json
from typing import Any, Optional

import pytest
from PIL import Image

from clearout.core.config import IdentifyConfig, settings
from clearout.engines.identify.detectors.base import Detector
from clearout.engines.identify.repositories import InMemoryReferenceData, ReferenceRepository
from clearout.engines.identify.schemas import (
    BarcodeEvidence,
    NeighborEvidence,
    OcrEvidence,
    VisionGuess,
)
from clearout.engines.identify.services import IdentifyService
from clearout.engines.identify.text import brand_hints, detect_hazards, extract_ids

ADAPTER_CATEGORY = "Electronics > Computers > Computer Accessories > Laptop Chargers & Adapters"
BOOKS_CATEGORY = "Media > Books"
JACKETS_CATEGORY = "Apparel & Accessories > Clothing > Outerwear > Jackets"
ALLOWED_CATEGORIES = [ADAPTER_CATEGORY, BOOKS_CATEGORY, JACKETS_CATEGORY]


def _shipped(name: str) -> Any:
    return json.loads((settings.DATA_DIR / name).read_text(encoding="utf-8"))


class StaticDetector(Detector):
    """Detector double returning fixed evidence, optionally slow or failing."""

    def __init__(self, stage: str, evidence: Any, empty: Any, delay: float = 0.0, error: Optional[Exception] = None):
        self.stage = stage
        self.evidence = evidence
        self._empty = empty
        self.delay = delay
        self.error = error
        self.calls = 0

    def empty(self):
        return self._empty

    async def extract(self, images, options, timeout_s):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.evidence


def ocr_evidence(*lines: str) -> OcrEvidence:
    """OCR evidence derived from `lines` the same way the OCR detector does."""
    text = "\n".join(lines)
    return OcrEvidence(
        lines=tuple(lines),
        ids=tuple(extract_ids(text)),
        hazards=tuple(detect_hazards(text)),
        brand_hints=tuple(brand_hints(text, _shipped("brand_lexicon.json"))),
    )


@pytest.fixture
def reference() -> ReferenceRepository:
    """Repository over the shipped reference tables, held in memory."""
    return ReferenceRepository(
        InMemoryReferenceData(
            rules=_shipped("keyword_rules.json"),
            taxonomy=_shipped("taxonomy.json"),
            brand_lexicon=_shipped("brand_lexicon.json"),
            rn_map=_shipped("rn_map.json"),
        )
    )


@pytest.fixture
def config() -> IdentifyConfig:
    return IdentifyConfig()


@pytest.fixture
def make_service(config, reference):
    """Build an IdentifyService with static detectors; unset stages return nothing."""

    def _make(barcode=None, ocr=None, vision=None, clip=None, **detectors) -> IdentifyService:
        return IdentifyService(
            config=config,
            reference=reference,
            barcode=detectors.get("barcode_detector")
            or StaticDetector("barcode", barcode or BarcodeEvidence(), BarcodeEvidence()),
            ocr=detectors.get("ocr_detector") or StaticDetector("ocr", ocr or OcrEvidence(), OcrEvidence()),
            vision=detectors.get("vision_detector")
            or StaticDetector("vlm", vision or VisionGuess(), VisionGuess()),
            neighbors=detectors.get("clip_detector")
            or StaticDetector("clip", clip or NeighborEvidence(), NeighborEvidence()),
        )

    return _make


@pytest.fixture
def png_bytes() -> bytes:
    img = Image.new("RGB", (64, 48), color=(200, 30, 30))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
