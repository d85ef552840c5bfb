from __future__ import annotations

from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

from furniture_genai.models import (
    AssetType,
    ContextPreset,
    GenerationMethod,
    GenerationResult,
    GenerationSource,
    Quality,
    ResultMetadata,
    Size,
)
from furniture_genai.providers.base import SynthesizedImage

# Reference-conditioned output stays closer to the real product.
DEFAULT_CONFIDENCE: Mapping[GenerationMethod, float] = MappingProxyType(
    {
        GenerationMethod.REFERENCE_BASED: 0.9,
        GenerationMethod.TEXT_TO_IMAGE: 0.8,
    }
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProvenanceRecorder:
    def __init__(self, confidence: Mapping[GenerationMethod, float] | None = None) -> None:
        self.confidence = MappingProxyType(dict(confidence or DEFAULT_CONFIDENCE))

    def source_for(
        self,
        method: GenerationMethod,
        model: str,
        duration_ms: int = 0,
        fallback_reason: str | None = None,
    ) -> GenerationSource:
        if method is GenerationMethod.HYBRID:
            raise ValueError("hybrid must be resolved before provenance is recorded")
        return GenerationSource(
            method=method,
            model=model,
            confidence=max(0.0, min(1.0, self.confidence[method])),
            reference_image_used=method is GenerationMethod.REFERENCE_BASED,
            duration_ms=duration_ms,
            fallback_reason=fallback_reason,
        )

    def record(
        self,
        image: SynthesizedImage,
        method: GenerationMethod,
        prompt: str,
        size: Size,
        variation_index: int,
        context_preset: ContextPreset,
        quality: Quality,
        duration_ms: int,
        fallback_reason: str | None = None,
        asset_type: AssetType | None = None,
    ) -> GenerationResult:
        return GenerationResult(
            image_bytes=image.image_bytes,
            mime_type=image.mime_type,
            prompt=prompt,
            source=self.source_for(method, image.model, duration_ms, fallback_reason),
            metadata=ResultMetadata(
                timestamp=_now_iso(),
                size=str(size),
                variation_index=variation_index,
                context_preset=context_preset,
                quality=quality,
                asset_type=asset_type,
            ),
        )
