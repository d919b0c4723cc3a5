"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.

`Settings` holds everything the process can be tuned with; `IdentifyConfig`
is the frozen subset the fusion engine reads on every call (weights,
thresholds, stage timeouts, stage switches). It is built once and shared.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

from clearout.core.cache import LazyCell


PACKAGE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "ClearOut Identify"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD

    # ==========================================================================
    # Reference Data
    # ==========================================================================
    # keyword_rules.json, taxonomy.json, brand_lexicon.json, rn_map.json,
    # calibration.json, gallery/, mocks/
    DATA_DIR: Path = PACKAGE_DIR / "data"

    # ==========================================================================
    # Fusion Weights
    # ==========================================================================
    W_CODE: float = 0.9
    W_MODEL: float = 0.6
    W_BRAND: float = 0.45
    W_CLIP: float = 0.35
    W_VLM: float = 0.4
    W_OCR_TEXT: float = 0.25

    SELL_CONFIDENCE_THRESHOLD: float = 0.7

    # ==========================================================================
    # Stage Timeouts (milliseconds)
    # ==========================================================================
    BARCODE_TIMEOUT_MS: int = 800
    OCR_TIMEOUT_MS: int = 2000
    VLM_TIMEOUT_MS: int = 800
    CLIP_TIMEOUT_MS: int = 800

    # ==========================================================================
    # Stage Switches
    # ==========================================================================
    ENABLE_BARCODE: bool = True
    ENABLE_OCR: bool = True
    ENABLE_VLM: bool = True
    ENABLE_CLIP: bool = True

    # ==========================================================================
    # Vision-Language Model
    # ==========================================================================
    VLM_PROVIDER: str = "mock"  # mock, live
    OPENAI_API_KEY: Optional[str] = None
    VLM_API_URL: str = "https://api.openai.com/v1/responses"
    VLM_MODEL: str = "gpt-4o"

    # ==========================================================================
    # Detector Settings
    # ==========================================================================
    OCR_LANGS: str = "en"
    OCR_GPU: bool = False
    OCR_MAX_LINES: int = 50
    EMBEDDING_DIM: int = 512
    NEIGHBOR_TOP_K: int = 5

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()


# =============================================================================
# Fusion Config (frozen, shared read-only)
# =============================================================================

class FusionWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    w_code: float = Field(0.9, ge=0.0)
    w_model: float = Field(0.6, ge=0.0)
    w_brand: float = Field(0.45, ge=0.0)
    w_clip: float = Field(0.35, ge=0.0)
    w_vlm: float = Field(0.4, ge=0.0)
    w_ocr_text: float = Field(0.25, ge=0.0)


class StageTimeouts(BaseModel):
    model_config = ConfigDict(frozen=True)

    barcode_ms: int = Field(800, gt=0)
    ocr_ms: int = Field(2000, gt=0)
    vlm_ms: int = Field(800, gt=0)
    clip_ms: int = Field(800, gt=0)

    def for_stage(self, stage: str) -> int:
        return getattr(self, f"{stage}_ms")


class StageSwitches(BaseModel):
    model_config = ConfigDict(frozen=True)

    barcode: bool = True
    ocr: bool = True
    vlm: bool = True
    clip: bool = True


class IdentifyConfig(BaseModel):
    """Weights, sell threshold, stage timeouts and stage switches."""

    model_config = ConfigDict(frozen=True)

    weights: FusionWeights = Field(default_factory=FusionWeights)
    sell_threshold: float = Field(0.7, ge=0.0, le=1.0)
    timeouts: StageTimeouts = Field(default_factory=StageTimeouts)
    enable_stages: StageSwitches = Field(default_factory=StageSwitches)

    @classmethod
    def from_settings(cls, s: Settings) -> "IdentifyConfig":
        return cls(
            weights=FusionWeights(
                w_code=s.W_CODE,
                w_model=s.W_MODEL,
                w_brand=s.W_BRAND,
                w_clip=s.W_CLIP,
                w_vlm=s.W_VLM,
                w_ocr_text=s.W_OCR_TEXT,
            ),
            sell_threshold=s.SELL_CONFIDENCE_THRESHOLD,
            timeouts=StageTimeouts(
                barcode_ms=s.BARCODE_TIMEOUT_MS,
                ocr_ms=s.OCR_TIMEOUT_MS,
                vlm_ms=s.VLM_TIMEOUT_MS,
                clip_ms=s.CLIP_TIMEOUT_MS,
            ),
            enable_stages=StageSwitches(
                barcode=s.ENABLE_BARCODE,
                ocr=s.ENABLE_OCR,
                vlm=s.ENABLE_VLM,
                clip=s.ENABLE_CLIP,
            ),
        )


_identify_config: LazyCell[IdentifyConfig] = LazyCell(
    lambda: IdentifyConfig.from_settings(settings), name="identify_config"
)


def get_identify_config() -> IdentifyConfig:
    """Process-wide fusion config, built from `settings` on first use."""
    return _identify_config.get()
