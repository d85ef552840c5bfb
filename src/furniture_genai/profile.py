from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from furniture_genai.errors import ValidationError
from furniture_genai.models import (
    ConfidenceLevel,
    ContextPreset,
    EstimatedDimensions,
    PhotographySpecs,
    ProductProfile,
    VisualDetails,
)

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset({"true", "yes", "y", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "n", "0", ""})


class ProfileNormalizer:
    """
    Turns raw vision-analysis output into a canonical ProductProfile.

    Accepts the structured-output shape produced by the vision provider as well
    as the older flattened and "detected field" shapes ({"value": ..., "source": ...}).
    Keys may be camelCase or snake_case.
    """

    def normalize(
        self,
        raw: Mapping[str, Any] | str,
        product_name: str | None = None,
        analysis_model: str | None = None,
    ) -> ProductProfile:
        data = _parse_jsonish(raw) if isinstance(raw, str) else raw
        if not isinstance(data, Mapping):
            raise ValidationError("product analysis must be a JSON object")

        product_type = _text(_get(data, "type", "product_type")) or "furniture"
        color_name, color_hex = _color(data)
        prompts = _get(data, "textToImagePrompts", "text_to_image_prompts") or {}
        if not isinstance(prompts, Mapping):
            prompts = {}

        fragments: dict[str, str] = {}
        base = _text(_get(prompts, "baseDescription", "base_description"))
        if base:
            fragments["base_description"] = base
        for preset in ContextPreset:
            value = _text(prompts.get(preset.value))
            if value:
                fragments[preset.value] = value

        profile = ProductProfile(
            product_type=product_type,
            materials=_string_list(_get(data, "materials")),
            color_name=color_name,
            color_hex=color_hex,
            style=_text(_get(data, "style")) or "modern",
            wall_mounted=_flag(_get(data, "wallMounted", "wall_mounted"), "wallMounted"),
            features=_features(_get(data, "features")),
            confidence=_confidence(_get(data, "confidence")),
            dimensions=_dimensions(data),
            prompt_fragments=fragments,
            photography_specs=_photography_specs(_get(prompts, "photographySpecs", "photography_specs")),
            visual_details=_visual_details(_get(prompts, "visualDetails", "visual_details")),
            product_name=product_name or _text(_get(data, "productName", "product_name")),
            notes=_text(_get(data, "notes")) or "",
            analysis_model=analysis_model or _text(_get(data, "analysisModel", "analysis_model")),
            version=_version(_get(data, "version")),
            analysis_timestamp=_text(_get(data, "analysisTimestamp", "analysis_timestamp"))
            or datetime.now(timezone.utc).isoformat(),
        )
        logger.info(
            "Normalized product profile: type=%s, materials=%d, fragments=%s, confidence=%s",
            profile.product_type,
            len(profile.materials),
            sorted(fragments),
            profile.confidence.value,
        )
        return profile


def _get(data: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return None


def _unwrap(value: Any) -> Any:
    # DetectedField: {"value": ..., "source": "detected" | "override"}
    if isinstance(value, Mapping) and "value" in value:
        return value["value"]
    return value


def _text(value: Any) -> str | None:
    value = _unwrap(value)
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _string_list(value: Any) -> tuple[str, ...]:
    value = _unwrap(value)
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(p.strip() for p in value.split(",") if p.strip())
    out: list[str] = []
    for item in _items(value):
        if isinstance(item, Mapping):
            continue
        s = _text(item)
        if s:
            out.append(s)
    return tuple(out)


def _items(value: Any) -> list[Any]:
    # A lone scalar (or a single feature object) counts as a one-element list.
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _flag(value: Any, field: str) -> bool:
    value = _unwrap(value)
    if value is None:
        return False
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s in _FALSE_STRINGS:
            return False
        raise ValidationError(f"{field} must be a boolean, got {value!r}")
    if isinstance(value, (bool, int, float)):
        return bool(value)
    raise ValidationError(f"{field} must be a boolean, got {type(value).__name__}")


def _features(value: Any) -> tuple[str, ...]:
    value = _unwrap(value)
    if not value:
        return ()
    if isinstance(value, str):
        return _string_list(value)
    names: list[str] = []
    for item in _items(value):
        if isinstance(item, Mapping):
            name = _text(item.get("name"))
        else:
            name = _text(item)
        if name:
            names.append(name)
    return tuple(names)


def _color(data: Mapping[str, Any]) -> tuple[str, str | None]:
    primary = _get(data, "primaryColor", "primary_color", "colorAnalysis")
    if isinstance(primary, Mapping):
        return _text(primary.get("name")) or "neutral", _text(primary.get("hex"))
    hex_value = _text(_get(data, "colorHex", "color_hex", "detectedColor"))
    name = _text(_get(data, "colorName", "color_name")) or hex_value or "neutral"
    return name, hex_value


def _version(value: Any) -> int:
    try:
        return max(1, int(_unwrap(value)))
    except (TypeError, ValueError):
        return 1


def _confidence(value: Any) -> ConfidenceLevel:
    value = _text(value)
    if value is None:
        return ConfidenceLevel.MEDIUM
    try:
        return ConfidenceLevel(value.lower())
    except ValueError:
        logger.warning("Unknown confidence level %r, using medium", value)
        return ConfidenceLevel.MEDIUM


def _dimensions(data: Mapping[str, Any]) -> EstimatedDimensions | None:
    dims = _get(data, "dimensions")
    est = _get(dims, "estimated") if isinstance(dims, Mapping) else None
    est = est or _get(data, "estimatedDimensions", "estimated_dimensions")
    if not isinstance(est, Mapping):
        return None
    try:
        return EstimatedDimensions(
            width=float(est["width"]),
            height=float(est["height"]),
            depth=float(est["depth"]),
            unit=_text(est.get("unit")) or "cm",
            confidence=_confidence(est.get("confidence")),
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring malformed dimension estimate: %r", est)
        return None


def _photography_specs(value: Any) -> PhotographySpecs:
    if not isinstance(value, Mapping):
        return PhotographySpecs()
    return PhotographySpecs(
        camera_angle=_text(_get(value, "cameraAngle", "camera_angle")),
        lighting_setup=_text(_get(value, "lightingSetup", "lighting_setup")),
        depth_of_field=_text(_get(value, "depthOfField", "depth_of_field")),
        composition=_text(_get(value, "composition")),
    )


def _visual_details(value: Any) -> VisualDetails:
    if not isinstance(value, Mapping):
        return VisualDetails()
    return VisualDetails(
        material_textures=_text(_get(value, "materialTextures", "material_textures")),
        color_palette=_text(_get(value, "colorPalette", "color_palette")),
        hardware_details=_text(_get(value, "hardwareDetails", "hardware_details")),
        proportional_relationships=_text(_get(value, "proportionalRelationships", "proportional_relationships")),
    )


def _strip_code_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        # Remove leading fence line
        first_nl = s.find("\n")
        if first_nl != -1:
            s = s[first_nl + 1 :]
        # Remove trailing fence
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    return s.strip()


def _parse_jsonish(raw_text: str) -> Any:
    s = _strip_code_fences(raw_text)
    try:
        return json.loads(s)
    except json.JSONDecodeError as exc:
        raise ValidationError("product analysis is not valid JSON", detail=str(exc)) from exc
