from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr
from pydantic.alias_generators import to_camel
from typing import List, Dict, Optional, Tuple, Literal, Any
from enum import Enum


class ResolutionLevel(str, Enum):
    """How specifically the item was identified, most specific first."""
    SKU = "sku"
    BRAND_MODEL = "brand_model"
    BRAND_CATEGORY = "brand_category"
    CATEGORY_ONLY = "category_only"


class NextStep(str, Enum):
    SELL = "sell"
    GIVE = "give"
    RECYCLE = "recycle"
    NEEDS_MORE_INFO = "needs_more_info"


class Hazard(str, Enum):
    BATTERY = "battery"
    AEROSOL = "aerosol"
    BLADE = "blade"
    CHEMICAL = "chemical"
    PRESSURIZED = "pressurized"


HAZARD_VOCABULARY = frozenset(h.value for h in Hazard)


class StageOutcome(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"
    DISABLED = "disabled"


STAGES = ("barcode", "ocr", "vlm", "clip")


# =============================================================================
# Request Options
# =============================================================================

class EnableStagesDTO(BaseModel):
    """Per-stage switches. Unset stages follow the configured default."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    barcode: Optional[StrictBool] = None
    ocr: Optional[StrictBool] = None
    vlm: Optional[StrictBool] = None
    clip: Optional[StrictBool] = None


class IdentifyOptionsDTO(BaseModel):
    """Caller options for one identify call.

    Accepts camelCase (`timeoutMs`) or snake_case (`timeout_ms`) keys.
    Unknown keys and wrong types are rejected.
    """
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    timeout_ms: Optional[StrictInt] = Field(None, gt=0, description="Overrides every stage timeout")
    enable_stages: EnableStagesDTO = Field(default_factory=EnableStagesDTO)
    image_names: List[StrictStr] = Field(default_factory=list)
    vlm_provider: Optional[Literal["mock", "live"]] = None
    mock_id: Optional[StrictStr] = None
    allow_filename_text: StrictBool = Field(False, description="Gates all filename-derived evidence")
    debug_dir: Optional[StrictStr] = None
    user_allowed_categories: List[StrictStr] = Field(default_factory=list)


# =============================================================================
# Evidence (per call, immutable)
# =============================================================================

class VisionGuess(BaseModel):
    """Structured output of the vision-language model."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    category: Optional[StrictStr] = None
    brand_guess: Optional[StrictStr] = None
    model_guess: Optional[StrictStr] = None
    materials: List[StrictStr] = Field(default_factory=list)
    hazards: List[StrictStr] = Field(default_factory=list)


class Neighbor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    score: float = Field(..., ge=0.0, le=1.0)


class BarcodeEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    codes: Tuple[str, ...] = ()


class OcrEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    lines: Tuple[str, ...] = ()
    ids: Tuple[str, ...] = ()
    hazards: Tuple[str, ...] = ()
    brand_hints: Tuple[str, ...] = ()


class NeighborEvidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    neighbors: Tuple[Neighbor, ...] = ()


class RuleGuess(BaseModel):
    """Rule classifier output; `signals` are the literal matched substrings."""
    model_config = ConfigDict(frozen=True)

    category: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    signals: Tuple[str, ...] = ()


class FusionInputs(BaseModel):
    """Everything the fusion step may look at, built once per call."""
    model_config = ConfigDict(frozen=True)

    codes: Tuple[str, ...] = ()
    ocr_lines: Tuple[str, ...] = ()
    ocr_ids: Tuple[str, ...] = ()
    ocr_hazards: Tuple[str, ...] = ()
    brand_hints: Tuple[str, ...] = ()
    vision: VisionGuess = Field(default_factory=VisionGuess)
    neighbors: Tuple[Neighbor, ...] = ()
    rule: RuleGuess = Field(default_factory=RuleGuess)
    stage_outcomes: Dict[str, StageOutcome] = Field(default_factory=dict)


# =============================================================================
# Result
# =============================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AttributesDTO(_CamelModel):
    brand: Optional[str] = None
    model: Optional[str] = None
    material: Optional[str] = None
    size_class: Optional[Literal["small", "medium", "large"]] = None
    power: Optional[Literal["plug", "battery", "none"]] = None
    category: Optional[str] = Field(None, description="Canonical taxonomy id")
    product_category: Optional[str] = Field(
        None, description="Fine-grained product category from keyword rules or barcode"
    )


class EvidenceDTO(_CamelModel):
    """Pass-through subset of the fusion inputs, for explainability."""
    codes: List[str] = Field(default_factory=list)
    ocr: List[str] = Field(default_factory=list)
    ocr_ids: List[str] = Field(default_factory=list)
    neighbors: List[Neighbor] = Field(default_factory=list)
    vision: Dict[str, Any] = Field(default_factory=dict)
    rule_signals: List[str] = Field(default_factory=list)
    stages: Dict[str, StageOutcome] = Field(default_factory=dict)


class IdentifyResultDTO(_CamelModel):
    resolution_level: ResolutionLevel
    attributes: AttributesDTO = Field(default_factory=AttributesDTO)
    hazards: List[Hazard] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence: EvidenceDTO = Field(default_factory=EvidenceDTO)
    next_step: NextStep

    def to_json_dict(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset attributes omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
