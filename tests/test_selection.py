"""
Tests for MethodSelector and the plans it builds.
"""
import pytest

from furniture_genai.errors import ConfigurationError
from furniture_genai.models import ContextPreset, GenerationMethod
from furniture_genai.selection import (
    DEFAULT_METHOD_PREFERENCES,
    NO_REFERENCE_REASON,
    MethodSelector,
    build_preferences,
)

T2I = GenerationMethod.TEXT_TO_IMAGE
REF = GenerationMethod.REFERENCE_BASED
HYBRID = GenerationMethod.HYBRID


@pytest.fixture
def selector():
    return MethodSelector()


class TestSelect:
    @pytest.mark.parametrize("preset", list(ContextPreset))
    @pytest.mark.parametrize("has_ref", [True, False])
    def test_never_returns_hybrid(self, selector, preset, has_ref):
        assert selector.select(preset, has_ref) is not HYBRID
        assert HYBRID not in selector.plan(preset, has_ref).attempts

    def test_hybrid_preset_without_reference_uses_text(self, selector):
        assert selector.preferred(ContextPreset.HERO) is HYBRID
        assert selector.select(ContextPreset.HERO, has_reference_image=False) is T2I

    def test_hybrid_preset_with_reference_tries_reference_first(self, selector):
        plan = selector.plan(ContextPreset.HERO, has_reference_image=True)
        assert plan.attempts == (REF, T2I)
        assert plan.degraded_reason is None

    def test_reference_preset_degrades_without_reference(self, selector):
        plan = selector.plan(ContextPreset.DETAIL, has_reference_image=False)
        assert plan.attempts == (T2I,)
        assert plan.degraded_reason == NO_REFERENCE_REASON

    def test_reference_preset_has_no_fallback(self, selector):
        assert selector.plan(ContextPreset.DETAIL, has_reference_image=True).attempts == (REF,)

    def test_text_preset_ignores_reference(self, selector):
        plan = selector.plan(ContextPreset.LIFESTYLE, has_reference_image=True)
        assert plan.attempts == (T2I,)
        assert plan.degraded_reason is None


class TestPreferences:
    def test_preferences_are_immutable(self, selector):
        with pytest.raises(TypeError):
            selector.preferences[ContextPreset.HERO] = T2I

    def test_injected_table(self):
        prefs = {p: T2I for p in ContextPreset}
        prefs[ContextPreset.LIFESTYLE] = REF
        selector = MethodSelector(prefs)
        assert selector.select(ContextPreset.LIFESTYLE, True) is REF
        assert selector.select(ContextPreset.HERO, True) is T2I

    def test_incomplete_table_is_rejected(self):
        with pytest.raises(ConfigurationError, match="missing presets"):
            MethodSelector({ContextPreset.HERO: HYBRID})

    def test_overrides_from_configuration(self):
        prefs = build_preferences({"lifestyle": "hybrid"})
        assert prefs[ContextPreset.LIFESTYLE] is HYBRID
        assert prefs[ContextPreset.PACKSHOT] is DEFAULT_METHOD_PREFERENCES[ContextPreset.PACKSHOT]

    @pytest.mark.parametrize("overrides", [{"billboard": "hybrid"}, {"hero": "magic"}])
    def test_invalid_overrides(self, overrides):
        with pytest.raises(ConfigurationError):
            build_preferences(overrides)
