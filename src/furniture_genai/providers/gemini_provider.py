from __future__ import annotations

import logging
from io import BytesIO
from typing import Any

from PIL import Image, UnidentifiedImageError

from furniture_genai.errors import BackendError, TerminalBackendError, TransientBackendError, transient_for_status
from furniture_genai.imaging import sniff_mime_type
from furniture_genai.models import Size
from furniture_genai.providers.base import SynthesizedImage

logger = logging.getLogger(__name__)


class GeminiImageProvider:
    """
    Two paths depending on model family:
    - Imagen models: `models.generate_images(...)` (text-to-image only)
    - Gemini image preview models: `models.generate_content(...)` with an image
      response modality; the reference photo goes in as an inline image part.
    """

    name = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash-image-preview", client: Any | None = None) -> None:
        # Imported lazily so the service can start with only the OpenAI stack configured.
        from google import genai  # type: ignore

        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def synthesize_from_text(self, instruction: str, size: Size) -> SynthesizedImage:
        from google.genai import types  # type: ignore

        if self.model.startswith("imagen-"):
            resp = await self._call(
                "image generation",
                self.client.aio.models.generate_images(
                    model=self.model,
                    prompt=instruction,
                    config=types.GenerateImagesConfig(number_of_images=1, aspect_ratio=size.aspect_ratio),
                ),
            )
            for gi in getattr(resp, "generated_images", []) or []:
                img_bytes = getattr(getattr(gi, "image", None), "image_bytes", None)
                if img_bytes:
                    return self._wrap(img_bytes, sniff_mime_type(img_bytes), "generate_images")
            raise TerminalBackendError(f"{self.model} returned no image data")

        return await self._generate_content([instruction], size, "generate_content")

    async def edit_from_reference(self, reference: bytes, instruction: str, size: Size) -> SynthesizedImage:
        from google.genai import types  # type: ignore

        if self.model.startswith("imagen-"):
            raise TerminalBackendError(f"{self.model} cannot condition on a reference image")

        contents: list[Any] = [
            instruction,
            types.Part.from_bytes(data=reference, mime_type=sniff_mime_type(reference)),
        ]
        return await self._generate_content(contents, size, "edit")

    async def _generate_content(self, contents: list[Any], size: Size, operation: str) -> SynthesizedImage:
        from google.genai import types  # type: ignore

        resp = await self._call(
            operation,
            self.client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=["image", "text"],
                    image_config=types.ImageConfig(aspect_ratio=size.aspect_ratio),
                ),
            ),
        )
        extracted = _extract_images_from_generate_content(resp)
        if not extracted:
            text = getattr(resp, "text", None)
            raise TerminalBackendError(f"{self.model} returned no image", detail=(text or "")[:200] or None)
        data, mime = extracted[0]
        return self._wrap(data, mime, operation)

    async def _call(self, what: str, awaitable: Any) -> Any:
        from google.genai import errors as genai_errors  # type: ignore

        try:
            return await awaitable
        except genai_errors.APIError as exc:
            raise _translate(exc, what) from exc

    def _wrap(self, data: bytes, mime_type: str, operation: str) -> SynthesizedImage:
        return SynthesizedImage(
            image_bytes=data,
            mime_type=mime_type,
            provider=self.name,
            model=self.model,
            raw_metadata={"operation": operation},
        )


def _translate(exc: Any, what: str) -> BackendError:
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    if isinstance(code, int) and transient_for_status(code):
        return TransientBackendError(f"{what} failed with status {code}: {message}", status_code=code)
    return TerminalBackendError(f"{what} failed: {message}", status_code=code if isinstance(code, int) else None)


def _extract_images_from_generate_content(resp: Any) -> list[tuple[bytes, str]]:
    out: list[tuple[bytes, str]] = []
    for cand in getattr(resp, "candidates", []) or []:
        content = getattr(cand, "content", None)
        parts = getattr(content, "parts", None) or []
        for part in parts:
            inline = getattr(part, "inline_data", None)
            if not inline:
                continue
            mime = getattr(inline, "mime_type", None) or ""
            data = getattr(inline, "data", None)
            if not data:
                continue
            if mime and not mime.startswith("image/"):
                continue
            try:
                Image.open(BytesIO(data)).verify()
            except (UnidentifiedImageError, OSError):
                logger.warning("Skipping undecodable %s part from %s", mime or "inline", getattr(resp, "model_version", "gemini"))
                continue
            out.append((data, mime or sniff_mime_type(data)))
    return out
