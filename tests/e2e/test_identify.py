import asyncio
import re

import pytest

from clearout.core.exceptions import OptionsValidationError
from clearout.engines.identify.detectors.barcode import BarcodeDetector
from clearout.engines.identify.detectors.neighbors import NeighborDetector
from clearout.engines.identify.detectors.ocr import OcrDetector
from clearout.engines.identify.detectors.vision import MockVisionAdapter, VisionDetector
from clearout.engines.identify.rules import classify_from_text
from clearout.engines.identify.schemas import (
    BarcodeEvidence,
    NextStep,
    ResolutionLevel,
    StageOutcome,
    VisionGuess,
)
from clearout.engines.identify.services import IdentifyService, analyze_item
from tests.conftest import (
    ADAPTER_CATEGORY,
    ALLOWED_CATEGORIES,
    BOOKS_CATEGORY,
    JACKETS_CATEGORY,
    StaticDetector,
    ocr_evidence,
)

ALL_STAGES_OFF = {"barcode": False, "ocr": False, "vlm": False, "clip": False}


# =============================================================================
# Scenarios
# =============================================================================

@pytest.mark.asyncio
async def test_isbn_text_then_isbn_barcode(make_service, png_bytes):
    ocr = ocr_evidence("ISBN 9780306406157")
    options = {"userAllowedCategories": ALLOWED_CATEGORIES}

    text_only = await make_service(ocr=ocr).analyze([png_bytes], options)
    with_code = await make_service(
        ocr=ocr, barcode=BarcodeEvidence(codes=("EAN_13:9780306406157",))
    ).analyze([png_bytes], options)

    assert text_only.attributes.product_category == BOOKS_CATEGORY
    assert text_only.attributes.category == "books"
    assert text_only.resolution_level == ResolutionLevel.CATEGORY_ONLY
    assert text_only.next_step == NextStep.GIVE

    assert with_code.resolution_level == ResolutionLevel.SKU
    assert with_code.confidence >= 0.3
    assert with_code.next_step == NextStep.SELL
    assert with_code.evidence.codes == ["EAN_13:9780306406157"]


@pytest.mark.asyncio
async def test_apple_adapter_label(make_service, reference, png_bytes):
    text = "Apple MagSafe AC Power Adapter model A1718 85W"

    rule = classify_from_text(text, [ADAPTER_CATEGORY], reference.rules())
    result = await make_service(ocr=ocr_evidence(text)).analyze(
        [png_bytes], {"userAllowedCategories": [ADAPTER_CATEGORY]}
    )

    assert rule.category == ADAPTER_CATEGORY
    assert rule.brand == "Apple"
    assert re.fullmatch(r"A\d{4}", rule.model)
    assert result.attributes.product_category == ADAPTER_CATEGORY
    assert "MagSafe" in result.evidence.rule_signals
    assert "A1718" in result.evidence.ocr_ids


@pytest.mark.asyncio
async def test_rn_jacket_label(make_service, png_bytes):
    result = await make_service(ocr=ocr_evidence("RN12345", "Jacket")).analyze(
        [png_bytes], {"userAllowedCategories": ALLOWED_CATEGORIES}
    )

    assert result.attributes.product_category == JACKETS_CATEGORY
    assert result.attributes.category == "clothing"
    assert result.attributes.brand == "Levi's"
    assert result.resolution_level != ResolutionLevel.SKU
    assert result.resolution_level == ResolutionLevel.BRAND_CATEGORY
    assert result.next_step == NextStep.GIVE


@pytest.mark.asyncio
async def test_no_evidence_anywhere(make_service, png_bytes):
    result = await make_service().analyze([png_bytes], {})

    assert result.resolution_level == ResolutionLevel.CATEGORY_ONLY
    assert result.attributes.category == "misc"
    assert result.hazards == []
    assert result.confidence == 0.0
    assert result.next_step == NextStep.NEEDS_MORE_INFO


@pytest.mark.asyncio
async def test_analyze_item_with_every_stage_disabled(png_bytes):
    result = await analyze_item([png_bytes], {"enableStages": ALL_STAGES_OFF})

    payload = result.to_json_dict()
    assert payload["resolutionLevel"] == "category_only"
    assert payload["attributes"]["category"] == "misc"
    assert payload["hazards"] == []
    assert payload["confidence"] == 0.0
    assert payload["nextStep"] == "needs_more_info"
    assert set(payload["evidence"]["stages"].values()) == {"disabled"}


# =============================================================================
# Precedence, hazards, safety
# =============================================================================

@pytest.mark.asyncio
async def test_code_wins_over_brand_and_model(make_service, png_bytes):
    service = make_service(
        barcode=BarcodeEvidence(codes=("UPC_A:885909950805",)),
        vision=VisionGuess(brand_guess="Apple", model_guess="A1718", category="electronics"),
    )

    result = await service.analyze([png_bytes])

    assert result.resolution_level == ResolutionLevel.SKU
    assert result.attributes.brand == "Apple"
    assert result.attributes.model == "A1718"


@pytest.mark.asyncio
async def test_hazards_union_of_vision_and_ocr(make_service, png_bytes):
    service = make_service(
        ocr=ocr_evidence("Caution: razor sharp"),
        vision=VisionGuess(category="tools", hazards=["battery"]),
    )

    result = await service.analyze([png_bytes])

    assert [h.value for h in result.hazards] == ["battery", "blade"]
    assert result.next_step == NextStep.RECYCLE


@pytest.mark.asyncio
async def test_battery_blocks_sale_of_scanned_item(make_service, png_bytes):
    service = make_service(
        barcode=BarcodeEvidence(codes=("EAN_13:0885909950805",)),
        ocr=ocr_evidence("20V MAX Lithium Ion"),
    )

    result = await service.analyze([png_bytes])

    assert result.resolution_level == ResolutionLevel.SKU
    assert result.next_step == NextStep.RECYCLE


# =============================================================================
# Filename evidence
# =============================================================================

def _pipeline(reference, tmp_path):
    """Real detectors over libraries that find nothing, so only filenames can speak."""
    return IdentifyService(
        reference=reference,
        barcode=BarcodeDetector(decoder=lambda img: []),
        ocr=OcrDetector(recognizer=lambda img: [], reference=reference),
        vision=VisionDetector(adapter=MockVisionAdapter(tmp_path), reference=reference),
        neighbors=NeighborDetector(reference=reference),
    )


@pytest.mark.asyncio
async def test_filename_isbn_only_counts_when_allowed(reference, tmp_path, png_bytes):
    service = _pipeline(reference, tmp_path)
    names = ["Sony_book_9780306406157.jpg"]

    gated = await service.analyze([png_bytes], {"imageNames": names})
    allowed = await service.analyze([png_bytes], {"imageNames": names, "allowFilenameText": True})

    assert gated.resolution_level != ResolutionLevel.SKU
    assert gated.evidence.codes == []
    assert gated.evidence.ocr == []
    assert gated.attributes.brand is None
    assert "9780306406157" not in str(gated.to_json_dict())

    assert allowed.resolution_level == ResolutionLevel.SKU
    assert allowed.evidence.codes == ["FILENAME:9780306406157"]
    assert allowed.attributes.product_category == BOOKS_CATEGORY
    assert allowed.confidence > 0.3


@pytest.mark.asyncio
async def test_filename_jacket_is_not_sku(reference, tmp_path, png_bytes):
    service = _pipeline(reference, tmp_path)

    result = await service.analyze(
        [png_bytes],
        {
            "imageNames": ["jacket_RN12345.jpg"],
            "allowFilenameText": True,
            "userAllowedCategories": ALLOWED_CATEGORIES,
        },
    )

    assert result.resolution_level != ResolutionLevel.SKU
    assert result.attributes.product_category == JACKETS_CATEGORY


# =============================================================================
# Timeouts, failures, options
# =============================================================================

@pytest.mark.asyncio
async def test_slow_and_failing_stages_degrade_to_empty(make_service, png_bytes):
    slow_vision = StaticDetector("vlm", VisionGuess(category="books"), VisionGuess(), delay=5.0)
    broken_ocr = StaticDetector("ocr", None, ocr_evidence(), error=RuntimeError("easyocr exploded"))
    service = make_service(
        barcode=BarcodeEvidence(codes=("EAN_13:9780306406157",)),
        vision_detector=slow_vision,
        ocr_detector=broken_ocr,
    )

    loop = asyncio.get_running_loop()
    start = loop.time()
    result = await service.analyze([png_bytes], {"timeoutMs": 100})
    elapsed = loop.time() - start

    assert elapsed < 2.0
    assert result.resolution_level == ResolutionLevel.SKU
    assert result.evidence.vision == {"materials": [], "hazards": []}
    assert result.evidence.stages == {
        "barcode": StageOutcome.OK,
        "ocr": StageOutcome.ERROR,
        "vlm": StageOutcome.TIMEOUT,
        "clip": StageOutcome.OK,
    }


@pytest.mark.asyncio
async def test_disabled_stage_is_not_called(make_service, png_bytes):
    vision = StaticDetector("vlm", VisionGuess(category="books"), VisionGuess())
    service = make_service(vision_detector=vision)

    result = await service.analyze([png_bytes], {"enableStages": {"vlm": False}})

    assert vision.calls == 0
    assert result.evidence.stages["vlm"] == StageOutcome.DISABLED
    assert result.attributes.category == "misc"


@pytest.mark.asyncio
async def test_bad_options_fail_before_any_detector_runs(make_service, png_bytes):
    barcode = StaticDetector("barcode", BarcodeEvidence(), BarcodeEvidence())
    service = make_service(barcode_detector=barcode)

    with pytest.raises(OptionsValidationError):
        await service.analyze([png_bytes], {"timeoutMs": 500, "turbo": True})

    assert barcode.calls == 0


@pytest.mark.asyncio
async def test_undecodable_images_still_produce_a_result(reference, tmp_path):
    service = _pipeline(reference, tmp_path)

    result = await service.analyze([b"\x00\x01 not an image"], {"enableStages": {"vlm": False}})

    assert result.resolution_level == ResolutionLevel.CATEGORY_ONLY
    assert result.next_step == NextStep.NEEDS_MORE_INFO
