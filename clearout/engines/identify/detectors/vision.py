"""
Vision-Description Detector

A vision-language model describes the item as structured JSON. Two
adapters implement the same `describe` capability:

- MockVisionAdapter: replays a recorded JSON fixture (tests, demos)
- LiveVisionAdapter: calls an OpenAI-compatible Responses endpoint

Either way the detector only ever sees a `VisionGuess`; failures of the
live call are "no evidence", never exceptions.
"""

import base64
import io
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from clearout.core.config import settings
from clearout.core.exceptions import ExternalAPIError
from clearout.core.logging import get_logger
from clearout.core.metrics import record_vision_api_call
from clearout.engines.identify.detectors.base import Detector
from clearout.engines.identify.preprocess import PreparedImage
from clearout.engines.identify.repositories import ReferenceRepository, get_reference_repository
from clearout.engines.identify.schemas import HAZARD_VOCABULARY, IdentifyOptionsDTO, VisionGuess

logger = get_logger(__name__)

USER_PROMPT = "Describe item"

# Strict structured-output schema; every key required, nullable where optional
VISION_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "category": {"type": ["string", "null"]},
        "brand_guess": {"type": ["string", "null"]},
        "model_guess": {"type": ["string", "null"]},
        "materials": {"type": "array", "items": {"type": "string"}},
        "hazards": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["category", "brand_guess", "model_guess", "materials", "hazards"],
}


def build_system_prompt(categories: Sequence[str]) -> str:
    return (
        "Reply ONLY with JSON keys: category, brand_guess, model_guess, materials, hazards. "
        f"Category must be one of: {', '.join(categories)}. "
        f"Hazards can include: {', '.join(sorted(HAZARD_VOCABULARY))}."
    )


# =============================================================================
# Adapters
# =============================================================================

class VisionAdapter(ABC):
    """Describe an item from its images as a structured guess."""

    @abstractmethod
    async def describe(
        self,
        images: List[PreparedImage],
        system_prompt: str,
        user_prompt: str,
        options: IdentifyOptionsDTO,
        timeout_s: float,
    ) -> VisionGuess:
        ...


class MockVisionAdapter(VisionAdapter):
    """Loads `<mocks_dir>/<id>.json`.

    `id` is `mockId`, else the first image name's stem, else `default`.
    Anything that goes wrong yields the `misc` fallback.
    """

    FALLBACK = VisionGuess(category="misc", materials=[], hazards=[])

    def __init__(self, mocks_dir: Union[str, Path]):
        self.mocks_dir = Path(mocks_dir)

    @staticmethod
    def fixture_id(options: IdentifyOptionsDTO) -> str:
        if options.mock_id:
            return options.mock_id
        if options.image_names:
            return Path(options.image_names[0]).name.split(".")[0] or "default"
        return "default"

    async def describe(self, images, system_prompt, user_prompt, options, timeout_s) -> VisionGuess:
        fixture = self.mocks_dir / f"{self.fixture_id(options)}.json"
        try:
            payload = json.loads(fixture.read_text(encoding="utf-8"))
            return VisionGuess.model_validate(payload)
        except (OSError, ValueError, ValidationError) as e:
            logger.debug("vision_mock_fallback", fixture=str(fixture), error=str(e))
            return self.FALLBACK


class LiveVisionAdapter(VisionAdapter):
    """Calls a Responses-style endpoint with a strict JSON schema.

    No API key, a non-2xx status, a transport error or timeout, missing
    output text, or output that fails the schema all give an empty guess.
    No retries.
    """

    def __init__(
        self,
        api_key: Optional[str],
        url: str,
        model: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.model = model
        self.transport = transport

    @staticmethod
    def _image_part(image: PreparedImage) -> Dict[str, str]:
        if image.original is not None:
            buf = io.BytesIO()
            image.original.save(buf, format="JPEG", quality=90)
            data, mime = buf.getvalue(), "image/jpeg"
        else:
            data, mime = image.data, "image/png"
        encoded = base64.b64encode(data).decode("ascii")
        return {"type": "input_image", "image_url": f"data:{mime};base64,{encoded}"}

    def build_payload(self, images: List[PreparedImage], system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": 0,
            "input": [
                {"role": "system", "content": [{"type": "input_text", "text": system_prompt}]},
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": user_prompt}]
                    + [self._image_part(image) for image in images],
                },
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "ClearOutVisionSchema",
                    "strict": True,
                    "schema": VISION_RESPONSE_SCHEMA,
                }
            },
        }

    @staticmethod
    def output_text(body: Dict[str, Any]) -> str:
        text = body.get("output_text")
        if text:
            return text
        try:
            content = body["output"][0]["content"][0]
            text = content.get("text")
            return text.get("value", "") if isinstance(text, dict) else (text or "")
        except (KeyError, IndexError, TypeError, AttributeError):
            return ""

    async def _post(self, payload: Dict[str, Any], timeout_s: float) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=self.transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            record_vision_api_call("error")
            raise ExternalAPIError(f"Vision request failed: {e}", service="vision")

        record_vision_api_call("ok" if response.is_success else "error", response.status_code)
        if not response.is_success:
            raise ExternalAPIError(
                f"Vision endpoint returned {response.status_code}",
                service="vision",
                http_status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIError(f"Vision response is not JSON: {e}", service="vision",
                                   http_status=response.status_code)

    async def describe(self, images, system_prompt, user_prompt, options, timeout_s) -> VisionGuess:
        if not self.api_key:
            logger.info("vision_live_skipped", reason="no_api_key")
            return VisionGuess()

        try:
            body = await self._post(self.build_payload(images, system_prompt, user_prompt), timeout_s)
        except ExternalAPIError as e:
            logger.warning("vision_live_failed", error=e.message, **e.details)
            return VisionGuess()

        text = self.output_text(body)
        if not text:
            logger.warning("vision_live_empty_output")
            return VisionGuess()
        try:
            return VisionGuess.model_validate(json.loads(text))
        except (ValueError, ValidationError) as e:
            logger.warning("vision_live_schema_mismatch", error=str(e))
            return VisionGuess()


def get_vision_adapter(options: IdentifyOptionsDTO) -> VisionAdapter:
    """Adapter for `options.vlmProvider`, defaulting to the configured provider."""
    provider = options.vlm_provider or settings.VLM_PROVIDER
    if provider == "live":
        return LiveVisionAdapter(
            api_key=settings.OPENAI_API_KEY,
            url=settings.VLM_API_URL,
            model=settings.VLM_MODEL,
        )
    return MockVisionAdapter(settings.DATA_DIR / "mocks")


# =============================================================================
# Detector
# =============================================================================

class VisionDetector(Detector[VisionGuess]):
    stage = "vlm"

    def __init__(
        self,
        adapter: Optional[VisionAdapter] = None,
        reference: Optional[ReferenceRepository] = None,
    ):
        self.adapter = adapter
        self._reference = reference

    @property
    def reference(self) -> ReferenceRepository:
        return self._reference or get_reference_repository()

    def empty(self) -> VisionGuess:
        return VisionGuess()

    async def extract(
        self,
        images: List[PreparedImage],
        options: IdentifyOptionsDTO,
        timeout_s: float,
    ) -> VisionGuess:
        adapter = self.adapter or get_vision_adapter(options)
        system_prompt = build_system_prompt(self.reference.category_ids())
        return await adapter.describe(images, system_prompt, USER_PROMPT, options, timeout_s)
