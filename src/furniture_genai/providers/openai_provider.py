from __future__ import annotations

import base64
import json
import logging
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, OpenAIError

from furniture_genai.errors import (
    BackendError,
    TerminalBackendError,
    TransientBackendError,
    ValidationError,
    transient_for_status,
)
from furniture_genai.imaging import sniff_mime_type
from furniture_genai.models import Size
from furniture_genai.providers.base import SynthesizedImage

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You are analyzing {count} image(s) of THE SAME furniture product from different angles.
Combine what every image shows into one product profile. It will be used to generate NEW images of the
product from text alone, so be precise about materials, textures, colors, construction and proportions.

Return STRICT JSON only (no markdown) with keys:
- type: specific product type in snake_case (e.g. "ergonomic_office_chair")
- materials: [string]
- primaryColor: {{hex: "#RRGGBB", name: string, confidence: 0..1}}
- style: string (e.g. "modern", "industrial", "scandinavian")
- wallMounted: boolean
- features: [{{name, description, importance: high|medium|low}}]
- dimensions: {{estimated: {{width, height, depth, unit: cm|inches, confidence: high|medium|low}}}}
- confidence: high|medium|low
- notes: string
- textToImagePrompts: {{baseDescription, packshot, lifestyle, hero, story, instagram, detail,
  photographySpecs: {{cameraAngle, lightingSetup, depthOfField, composition}},
  visualDetails: {{materialTextures, colorPalette, hardwareDetails, proportionalRelationships}}}}
"""


def translate_openai_error(exc: OpenAIError, what: str) -> BackendError:
    """Map an SDK exception onto the transient/terminal split."""
    if isinstance(exc, APIStatusError):
        cls = TransientBackendError if transient_for_status(exc.status_code) else TerminalBackendError
        return cls(f"{what} failed with status {exc.status_code}: {exc.message}", status_code=exc.status_code)
    # APITimeoutError is a subclass of APIConnectionError.
    if isinstance(exc, APIConnectionError):
        return TransientBackendError(f"{what} could not reach OpenAI: {exc}")
    return TerminalBackendError(f"{what} failed: {exc}")


def _first_image(resp: Any, what: str) -> bytes:
    data = getattr(resp, "data", None) or []
    b64 = getattr(data[0], "b64_json", None) if data else None
    if not b64:
        raise TerminalBackendError(f"{what} returned no image data")
    return base64.b64decode(b64)


class OpenAIImageProvider:
    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-image-1", client: Any | None = None) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def synthesize_from_text(self, instruction: str, size: Size) -> SynthesizedImage:
        try:
            resp = await self.client.images.generate(
                model=self.model,
                prompt=instruction,
                size=str(size),
                n=1,
            )
        except OpenAIError as exc:
            raise translate_openai_error(exc, "image generation") from exc
        return self._wrap(_first_image(resp, "image generation"), "generate")

    async def edit_from_reference(self, reference: bytes, instruction: str, size: Size) -> SynthesizedImage:
        try:
            resp = await self.client.images.edit(
                model=self.model,
                image=("reference.png", reference, sniff_mime_type(reference)),
                prompt=instruction,
                size=str(size),
                n=1,
            )
        except OpenAIError as exc:
            raise translate_openai_error(exc, "image edit") from exc
        return self._wrap(_first_image(resp, "image edit"), "edit")

    def _wrap(self, image_bytes: bytes, operation: str) -> SynthesizedImage:
        return SynthesizedImage(
            image_bytes=image_bytes,
            mime_type=sniff_mime_type(image_bytes),
            provider=self.name,
            model=self.model,
            raw_metadata={"operation": operation},
        )


class OpenAIVisionProvider:
    """Structured product analysis from one or more photos of the same item."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-2024-08-06", client: Any | None = None) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def analyze_product(self, images: list[bytes]) -> dict[str, Any]:
        if not images:
            raise ValidationError("at least one product image is required for analysis")

        content: list[dict[str, Any]] = [{"type": "text", "text": ANALYSIS_PROMPT.format(count=len(images))}]
        for img in images:
            data_url = f"data:{sniff_mime_type(img)};base64,{base64.b64encode(img).decode('ascii')}"
            content.append({"type": "image_url", "image_url": {"url": data_url, "detail": "high"}})

        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
                max_tokens=2000,
                temperature=0.1,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise translate_openai_error(exc, "product analysis") from exc

        text = resp.choices[0].message.content if resp.choices else None
        if not text:
            raise TerminalBackendError("product analysis returned an empty response")
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TerminalBackendError("product analysis returned invalid JSON", detail=text[:200]) from exc
        logger.info("Analyzed %d product image(s) with %s", len(images), self.model)
        return parsed
