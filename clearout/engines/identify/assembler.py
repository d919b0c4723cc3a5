"""
Result Assembler: decision + evidence -> IdentifyResultDTO.
"""

from typing import Optional

from clearout.engines.identify.detectors.barcode import map_barcode_to_category
from clearout.engines.identify.fusion import FusionDecision
from clearout.engines.identify.schemas import (
    AttributesDTO,
    EvidenceDTO,
    FusionInputs,
    Hazard,
    IdentifyResultDTO,
)


def product_category(inputs: FusionInputs) -> Optional[str]:
    """Rule classifier category, else the first barcode that maps to one."""
    if inputs.rule.category:
        return inputs.rule.category
    for code in inputs.codes:
        category = map_barcode_to_category(code)
        if category:
            return category
    return None


def assemble_result(inputs: FusionInputs, decision: FusionDecision) -> IdentifyResultDTO:
    return IdentifyResultDTO(
        resolution_level=decision.resolution_level,
        attributes=AttributesDTO(
            brand=decision.brand,
            model=decision.model,
            material=decision.material,
            category=decision.category,
            product_category=product_category(inputs),
        ),
        hazards=[Hazard(h) for h in decision.hazards],
        confidence=decision.confidence,
        evidence=EvidenceDTO(
            codes=list(inputs.codes),
            ocr=list(inputs.ocr_lines),
            ocr_ids=list(inputs.ocr_ids),
            neighbors=list(inputs.neighbors),
            vision=inputs.vision.model_dump(exclude_none=True),
            rule_signals=list(inputs.rule.signals),
            stages=dict(inputs.stage_outcomes),
        ),
        next_step=decision.next_step,
    )
