"""
Fusion Engine

Pure decision logic over one call's evidence: attribute precedence,
resolution level, hazard union, weighted raw score, calibration and the
recommended next step. Nothing here performs I/O beyond reading the
already-loaded reference tables, and nothing here raises for any mix of
detector outcomes.
"""

from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from clearout.core.config import FusionWeights, IdentifyConfig
from clearout.engines.identify.calibration import apply_calibration
from clearout.engines.identify.repositories import ReferenceRepository, normalize_rn
from clearout.engines.identify.schemas import (
    HAZARD_VOCABULARY,
    FusionInputs,
    Hazard,
    NextStep,
    ResolutionLevel,
)
from clearout.engines.identify.taxonomy import canonical_category, normalize_brand
from clearout.engines.identify.text import extract_rn

DONATE_FRIENDLY_CATEGORIES = frozenset({"books", "clothing", "toys"})
SELL_BLOCKING_HAZARDS = frozenset({Hazard.BATTERY.value, Hazard.AEROSOL.value})


class FusionDecision(BaseModel):
    """Resolved attributes and verdict for one call."""
    model_config = ConfigDict(frozen=True)

    brand: Optional[str] = None
    model: Optional[str] = None
    category: str
    material: Optional[str] = None
    hazards: List[str]
    resolution_level: ResolutionLevel
    raw_score: float
    confidence: float
    next_step: NextStep


# =============================================================================
# Attribute resolution
# =============================================================================

def brand_from_rn(ocr_lines: Sequence[str], rn_map: Dict[str, str]) -> Optional[str]:
    """First RN (lines in order, RNs within a line in order) with a known brand."""
    for line in ocr_lines:
        for rn in extract_rn(line):
            brand = rn_map.get(normalize_rn(rn))
            if brand:
                return brand
    return None


def resolve_brand(inputs: FusionInputs, lexicon: Dict[str, str], rn_map: Dict[str, str]) -> Optional[str]:
    brand = normalize_brand(inputs.vision.brand_guess, lexicon)
    if brand:
        return brand
    return brand_from_rn(inputs.ocr_lines, rn_map)


def decide_resolution(has_code: bool, brand: Optional[str], model: Optional[str], category: Optional[str]) -> ResolutionLevel:
    if has_code:
        return ResolutionLevel.SKU
    if brand and model:
        return ResolutionLevel.BRAND_MODEL
    if brand and category:
        return ResolutionLevel.BRAND_CATEGORY
    return ResolutionLevel.CATEGORY_ONLY


def merge_hazards(vision_hazards: Sequence[str], ocr_hazards: Sequence[str]) -> List[str]:
    """Union in vision-then-OCR order, limited to the hazard vocabulary."""
    merged = [h.strip().lower() for h in vision_hazards] + list(ocr_hazards)
    return list(dict.fromkeys(h for h in merged if h in HAZARD_VOCABULARY))


# =============================================================================
# Scoring and decision
# =============================================================================

def raw_score(inputs: FusionInputs, brand: Optional[str], model: Optional[str], weights: FusionWeights) -> float:
    score = 0.0
    if inputs.codes:
        score += weights.w_code
    if model:
        score += weights.w_model * 0.8
    if brand:
        score += weights.w_brand * 0.7
    if inputs.neighbors:
        score += weights.w_clip * max(n.score for n in inputs.neighbors)
    if inputs.vision.category:
        score += weights.w_vlm * 0.6
    if inputs.ocr_lines:
        score += weights.w_ocr_text * 0.5
    return min(1.0, max(0.0, score))


def decide_next_step(
    resolution: ResolutionLevel,
    confidence: float,
    hazards: Sequence[str],
    category: str,
    sell_threshold: float,
) -> NextStep:
    if resolution == ResolutionLevel.SKU or (
        resolution == ResolutionLevel.BRAND_MODEL and confidence >= sell_threshold
    ):
        step = NextStep.SELL
    elif hazards:
        step = NextStep.RECYCLE
    elif category in DONATE_FRIENDLY_CATEGORIES:
        step = NextStep.GIVE
    else:
        step = NextStep.NEEDS_MORE_INFO

    # Safety overrides monetization
    if step == NextStep.SELL and SELL_BLOCKING_HAZARDS.intersection(hazards):
        step = NextStep.RECYCLE
    return step


def fuse(inputs: FusionInputs, config: IdentifyConfig, reference: ReferenceRepository) -> FusionDecision:
    """Merge one call's evidence into a single decision."""
    brand = resolve_brand(inputs, reference.brand_lexicon(), reference.rn_map())
    model = inputs.vision.model_guess or None
    category = canonical_category(inputs.vision.category or " ".join(inputs.ocr_lines), reference.taxonomy())

    resolution = decide_resolution(bool(inputs.codes), brand, model, category)
    hazards = merge_hazards(inputs.vision.hazards, inputs.ocr_hazards)

    score = raw_score(inputs, brand, model, config.weights)
    confidence = min(1.0, max(0.0, apply_calibration(score, reference.calibration())))
    next_step = decide_next_step(resolution, confidence, hazards, category, config.sell_threshold)

    return FusionDecision(
        brand=brand,
        model=model,
        category=category,
        material=inputs.vision.materials[0] if inputs.vision.materials else None,
        hazards=hazards,
        resolution_level=resolution,
        raw_score=score,
        confidence=confidence,
        next_step=next_step,
    )
