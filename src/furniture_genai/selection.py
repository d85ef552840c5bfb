from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from furniture_genai.errors import ConfigurationError
from furniture_genai.models import ContextPreset, GenerationMethod

logger = logging.getLogger(__name__)

# Presets where fidelity to the real product matters most try the photo first.
DEFAULT_METHOD_PREFERENCES: Mapping[ContextPreset, GenerationMethod] = MappingProxyType(
    {
        ContextPreset.PACKSHOT: GenerationMethod.HYBRID,
        ContextPreset.DETAIL: GenerationMethod.REFERENCE_BASED,
        ContextPreset.HERO: GenerationMethod.HYBRID,
        ContextPreset.LIFESTYLE: GenerationMethod.TEXT_TO_IMAGE,
        ContextPreset.INSTAGRAM: GenerationMethod.TEXT_TO_IMAGE,
        ContextPreset.STORY: GenerationMethod.TEXT_TO_IMAGE,
    }
)

NO_REFERENCE_REASON = "no reference image supplied"


@dataclass(frozen=True)
class MethodPlan:
    """Ordered attempts for one variation. Never contains HYBRID."""

    preferred: GenerationMethod
    attempts: tuple[GenerationMethod, ...]
    degraded_reason: str | None = None

    @property
    def primary(self) -> GenerationMethod:
        return self.attempts[0]


def build_preferences(overrides: Mapping[str, str] | None = None) -> Mapping[ContextPreset, GenerationMethod]:
    prefs = dict(DEFAULT_METHOD_PREFERENCES)
    for key, value in (overrides or {}).items():
        try:
            prefs[ContextPreset(key)] = GenerationMethod(value)
        except ValueError as exc:
            raise ConfigurationError(f"invalid method preference {key}={value}") from exc
    return MappingProxyType(prefs)


class MethodSelector:
    def __init__(self, preferences: Mapping[ContextPreset, GenerationMethod] | None = None) -> None:
        prefs = dict(preferences if preferences is not None else DEFAULT_METHOD_PREFERENCES)
        missing = [p.value for p in ContextPreset if p not in prefs]
        if missing:
            raise ConfigurationError(f"method preferences missing presets: {', '.join(missing)}")
        self.preferences: Mapping[ContextPreset, GenerationMethod] = MappingProxyType(prefs)

    def preferred(self, preset: ContextPreset) -> GenerationMethod:
        return self.preferences[preset]

    def select(self, preset: ContextPreset, has_reference_image: bool) -> GenerationMethod:
        return self.plan(preset, has_reference_image).primary

    def plan(self, preset: ContextPreset, has_reference_image: bool) -> MethodPlan:
        plan = self.plan_for(self.preferred(preset), has_reference_image)
        if plan.degraded_reason:
            logger.info(
                "Preset %s prefers %s but %s; using %s",
                preset.value,
                plan.preferred.value,
                plan.degraded_reason,
                plan.primary.value,
            )
        return plan

    def plan_for(self, method: GenerationMethod, has_reference_image: bool) -> MethodPlan:
        if method is GenerationMethod.TEXT_TO_IMAGE:
            return MethodPlan(method, (GenerationMethod.TEXT_TO_IMAGE,))
        if not has_reference_image:
            return MethodPlan(method, (GenerationMethod.TEXT_TO_IMAGE,), degraded_reason=NO_REFERENCE_REASON)
        if method is GenerationMethod.REFERENCE_BASED:
            return MethodPlan(method, (GenerationMethod.REFERENCE_BASED,))
        return MethodPlan(method, (GenerationMethod.REFERENCE_BASED, GenerationMethod.TEXT_TO_IMAGE))
