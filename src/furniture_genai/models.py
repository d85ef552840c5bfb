from __future__ import annotations

import base64
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from furniture_genai.errors import ValidationError

MIN_VARIATIONS = 1
MAX_VARIATIONS = 4


class ContextPreset(str, Enum):
    PACKSHOT = "packshot"
    LIFESTYLE = "lifestyle"
    HERO = "hero"
    STORY = "story"
    INSTAGRAM = "instagram"
    DETAIL = "detail"


class GenerationMethod(str, Enum):
    TEXT_TO_IMAGE = "text-to-image"
    REFERENCE_BASED = "reference-based"
    HYBRID = "hybrid"


class Quality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AssetType(str, Enum):
    LIFESTYLE = "lifestyle"
    AD = "ad"
    SOCIAL = "social"
    HERO = "hero"
    VARIATION = "variation"


ASSET_CONTEXT: Mapping[AssetType, ContextPreset] = MappingProxyType(
    {
        AssetType.LIFESTYLE: ContextPreset.LIFESTYLE,
        AssetType.AD: ContextPreset.HERO,
        AssetType.SOCIAL: ContextPreset.INSTAGRAM,
        AssetType.HERO: ContextPreset.HERO,
        AssetType.VARIATION: ContextPreset.PACKSHOT,
    }
)


class JobState(str, Enum):
    CREATED = "created"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED)


@dataclass(frozen=True)
class Size:
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def parse(cls, value: str) -> Size:
        try:
            w, h = value.lower().split("x", 1)
            return cls(int(w), int(h))
        except (AttributeError, ValueError) as exc:
            raise ValidationError(f"invalid size '{value}', expected WIDTHxHEIGHT") from exc

    @property
    def aspect_ratio(self) -> str:
        # Providers accept a fixed set of ratio strings; snap to the nearest one.
        ratios = {"1:1": 1.0, "2:3": 2 / 3, "3:2": 3 / 2, "9:16": 9 / 16, "16:9": 16 / 9}
        actual = self.width / self.height
        return min(ratios, key=lambda k: abs(ratios[k] - actual))


PRESET_SIZES: Mapping[ContextPreset, Size] = MappingProxyType(
    {
        ContextPreset.PACKSHOT: Size(1024, 1024),
        ContextPreset.INSTAGRAM: Size(1024, 1024),
        ContextPreset.DETAIL: Size(1024, 1024),
        ContextPreset.STORY: Size(1024, 1536),
        ContextPreset.HERO: Size(1536, 1024),
        ContextPreset.LIFESTYLE: Size(1536, 1024),
    }
)


def clamp_variations(value: Any) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"variations must be an integer, got {value!r}") from exc
    return max(MIN_VARIATIONS, min(MAX_VARIATIONS, n))


def _enum(enum_cls: type[Enum], value: Any, label: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"unsupported {label} '{value}'. Must be one of: {allowed}") from exc


@dataclass(frozen=True)
class PhotographySpecs:
    camera_angle: str | None = None
    lighting_setup: str | None = None
    depth_of_field: str | None = None
    composition: str | None = None


@dataclass(frozen=True)
class VisualDetails:
    material_textures: str | None = None
    color_palette: str | None = None
    hardware_details: str | None = None
    proportional_relationships: str | None = None


@dataclass(frozen=True)
class EstimatedDimensions:
    width: float
    height: float
    depth: float
    unit: str = "cm"
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM


@dataclass(frozen=True)
class ProductProfile:
    product_type: str
    materials: tuple[str, ...] = ()
    color_name: str = "neutral"
    color_hex: str | None = None
    style: str = "modern"
    wall_mounted: bool = False
    features: tuple[str, ...] = ()
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    dimensions: EstimatedDimensions | None = None
    # "base_description" plus one fragment per ContextPreset value; any may be missing.
    prompt_fragments: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    photography_specs: PhotographySpecs = field(default_factory=PhotographySpecs)
    visual_details: VisualDetails = field(default_factory=VisualDetails)
    product_name: str | None = None
    notes: str = ""
    version: int = 1
    analysis_model: str | None = None
    analysis_timestamp: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.prompt_fragments, MappingProxyType):
            object.__setattr__(self, "prompt_fragments", MappingProxyType(dict(self.prompt_fragments)))
        object.__setattr__(self, "materials", tuple(self.materials))
        object.__setattr__(self, "features", tuple(self.features))

    @property
    def base_description(self) -> str | None:
        return self.prompt_fragments.get("base_description")

    @property
    def display_name(self) -> str:
        return self.product_name or self.product_type.replace("_", " ")

    def fragment_for(self, preset: ContextPreset) -> str | None:
        return self.prompt_fragments.get(preset.value)

    def revise(self, **changes: Any) -> ProductProfile:
        """Return a new profile version with ``changes`` applied."""
        changes.setdefault("version", self.version + 1)
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        # Same shape the vision analysis produces, so it normalizes back unchanged.
        ps, vd = self.photography_specs, self.visual_details
        prompts: dict[str, Any] = {k: v for k, v in self.prompt_fragments.items() if k != "base_description"}
        prompts["baseDescription"] = self.base_description
        prompts["photographySpecs"] = {
            "cameraAngle": ps.camera_angle,
            "lightingSetup": ps.lighting_setup,
            "depthOfField": ps.depth_of_field,
            "composition": ps.composition,
        }
        prompts["visualDetails"] = {
            "materialTextures": vd.material_textures,
            "colorPalette": vd.color_palette,
            "hardwareDetails": vd.hardware_details,
            "proportionalRelationships": vd.proportional_relationships,
        }
        dims = None
        if self.dimensions is not None:
            d = self.dimensions
            dims = {
                "estimated": {
                    "width": d.width,
                    "height": d.height,
                    "depth": d.depth,
                    "unit": d.unit,
                    "confidence": d.confidence.value,
                }
            }
        return {
            "type": self.product_type,
            "productName": self.product_name,
            "materials": list(self.materials),
            "primaryColor": {"name": self.color_name, "hex": self.color_hex},
            "style": self.style,
            "wallMounted": self.wall_mounted,
            "features": list(self.features),
            "confidence": self.confidence.value,
            "dimensions": dims,
            "notes": self.notes,
            "textToImagePrompts": prompts,
            "version": self.version,
            "analysisModel": self.analysis_model,
            "analysisTimestamp": self.analysis_timestamp,
        }


@dataclass(frozen=True)
class GenerationSettings:
    context_preset: ContextPreset = ContextPreset.PACKSHOT
    variations: int = 2
    quality: Quality = Quality.MEDIUM
    background_style: str | None = "minimal"
    lighting: str | None = "soft_daylight"
    product_position: str | None = "center"
    reserved_text_zone: str | None = None
    props: tuple[str, ...] = ()
    strict_mode: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "context_preset", _enum(ContextPreset, self.context_preset, "context preset"))
        object.__setattr__(self, "quality", _enum(Quality, self.quality, "quality"))
        object.__setattr__(self, "variations", clamp_variations(self.variations))
        object.__setattr__(self, "props", tuple(self.props or ()))

    @property
    def size(self) -> Size:
        return PRESET_SIZES[self.context_preset]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GenerationSettings:
        keys = {
            "contextPreset": "context_preset",
            "backgroundStyle": "background_style",
            "productPosition": "product_position",
            "reservedTextZone": "reserved_text_zone",
            "strictMode": "strict_mode",
        }
        known = set(cls.__dataclass_fields__)
        kwargs: dict[str, Any] = {}
        for k, v in data.items():
            name = keys.get(k, k)
            if name in known and v is not None:
                kwargs[name] = v
        return cls(**kwargs)


@dataclass(frozen=True)
class GenerationRequest:
    profile: ProductProfile
    settings: GenerationSettings = field(default_factory=GenerationSettings)
    reference_image: bytes | None = None
    custom_prompt: str | None = None

    @property
    def has_reference_image(self) -> bool:
        return bool(self.reference_image)


@dataclass(frozen=True)
class GenerationSource:
    method: GenerationMethod
    model: str
    confidence: float
    reference_image_used: bool
    duration_ms: int
    fallback_reason: str | None = None


@dataclass(frozen=True)
class ResultMetadata:
    timestamp: str
    size: str
    variation_index: int
    context_preset: ContextPreset
    quality: Quality
    asset_type: AssetType | None = None


@dataclass(frozen=True)
class GenerationResult:
    image_bytes: bytes
    mime_type: str
    prompt: str
    source: GenerationSource
    metadata: ResultMetadata

    @property
    def url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.image_bytes).decode('ascii')}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "prompt": self.prompt,
            "source": {
                "method": self.source.method.value,
                "model": self.source.model,
                "confidence": self.source.confidence,
                "referenceImageUsed": self.source.reference_image_used,
                "durationMs": self.source.duration_ms,
                "fallbackReason": self.source.fallback_reason,
            },
            "metadata": {
                "timestamp": self.metadata.timestamp,
                "size": self.metadata.size,
                "variationIndex": self.metadata.variation_index,
                "contextPreset": self.metadata.context_preset.value,
                "quality": self.metadata.quality.value,
                "assetType": self.metadata.asset_type.value if self.metadata.asset_type else None,
            },
        }


@dataclass(frozen=True)
class VariationError:
    variation_index: int
    kind: str
    message: str
    method: GenerationMethod | None = None
    asset_type: AssetType | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "variationIndex": self.variation_index,
            "kind": self.kind,
            "message": self.message,
            "method": self.method.value if self.method else None,
            "assetType": self.asset_type.value if self.asset_type else None,
        }


@dataclass(frozen=True)
class BatchOutcome:
    results: list[GenerationResult]
    errors: list[VariationError]

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def requested(self) -> int:
        return self.succeeded + self.failed


@dataclass(frozen=True)
class BatchItem:
    asset_type: AssetType
    variations: int = 1
    custom_prompt: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "asset_type", _enum(AssetType, self.asset_type, "asset type"))
        object.__setattr__(self, "variations", clamp_variations(self.variations))

    @property
    def context_preset(self) -> ContextPreset:
        return ASSET_CONTEXT[self.asset_type]


@dataclass(frozen=True)
class BatchRequest:
    profile: ProductProfile
    source_image: bytes
    items: tuple[BatchItem, ...]
    settings: GenerationSettings = field(default_factory=GenerationSettings)

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        if not self.items:
            raise ValidationError("at least one asset request is required")


@dataclass(frozen=True)
class AssetBatchOutcome:
    groups: dict[AssetType, BatchOutcome]
    # Asset types whose every variation failed.
    group_errors: dict[AssetType, list[VariationError]]

    @property
    def succeeded(self) -> int:
        return sum(o.succeeded for o in self.groups.values())

    @property
    def requested(self) -> int:
        return sum(o.requested for o in self.groups.values())


@dataclass
class GenerationJob:
    job_id: str
    instruction: str
    size: Size
    duration_seconds: int
    state: JobState = JobState.CREATED
    backend_job_id: str | None = None
    submission_attempts: int = 0
    poll_attempts: int = 0
    artifact_handle: str | None = None
    backend_duration_seconds: float | None = None
    backend_size: str | None = None
    error: str | None = None
    error_kind: str | None = None
    source: GenerationSource | None = None
    history: list[JobState] = field(default_factory=lambda: [JobState.CREATED])
    created_at: str | None = None
    finished_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "state": self.state.value,
            "backendJobId": self.backend_job_id,
            "submissionAttempts": self.submission_attempts,
            "pollAttempts": self.poll_attempts,
            "artifactHandle": self.artifact_handle,
            "durationSeconds": self.backend_duration_seconds,
            "size": self.backend_size,
            "error": self.error,
            "errorKind": self.error_kind,
            "history": [s.value for s in self.history],
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
            "source": None
            if self.source is None
            else {
                "method": self.source.method.value,
                "model": self.source.model,
                "confidence": self.source.confidence,
                "referenceImageUsed": self.source.reference_image_used,
            },
        }
