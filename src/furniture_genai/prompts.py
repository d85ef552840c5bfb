from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from furniture_genai.models import (
    ASSET_CONTEXT,
    AssetType,
    ContextPreset,
    GenerationSettings,
    ProductProfile,
)

DEFAULT_CAMERA_ANGLE = "Three-quarter view, eye-level perspective"
DEFAULT_LIGHTING_SETUP = "Three-point lighting with key light, fill light, and rim light"
DEFAULT_DEPTH_OF_FIELD = "Medium depth of field with product in sharp focus"
DEFAULT_COMPOSITION = "Rule of thirds with product as focal point"

STRICT_CLAUSE = "No text, labels, watermarks, or unauthorized objects."
STRICT_WALL_MOUNTED_CLAUSE = "Wall-mounted only: the product never touches the floor or stands free."

WALL_MOUNTED_NOTE = (
    "The piece is wall-mounted and must stay securely attached to the wall, never shown touching the floor "
    "or free-standing. Keep the mounting system visible."
)
WALL_MOUNTED_DESK_NOTE = (
    "The desk is wall-mounted with its surface 75cm (29.5 inches) above the floor. Show the mounting "
    "brackets and clear space underneath; no legs or floor contact."
)

CONTEXT_CONSTRAINTS: Mapping[ContextPreset, str] = MappingProxyType(
    {
        ContextPreset.PACKSHOT: "Studio photography setup, clean background, no distractions, catalog-quality presentation.",
        ContextPreset.LIFESTYLE: "Authentic home environment, natural context, lived-in feeling.",
        ContextPreset.HERO: "Dramatic composition, negative space for text, premium appeal.",
        ContextPreset.INSTAGRAM: "Social media optimized, thumb-stopping appeal, mobile-friendly composition.",
        ContextPreset.STORY: "Vertical mobile format, centered product, story-appropriate framing.",
        ContextPreset.DETAIL: "Close-up detail shot, texture focus, material emphasis.",
    }
)

# Used when the profile carries no fragment for the preset and no base description.
_FALLBACK_OPENERS: Mapping[ContextPreset, str] = MappingProxyType(
    {
        ContextPreset.PACKSHOT: "Professional product photography of {subject}. Clean studio lighting, neutral background, product centered and prominent.",
        ContextPreset.LIFESTYLE: "Lifestyle photography showing {subject} in a realistic modern home setting. Natural lighting, lived-in environment.",
        ContextPreset.HERO: "Hero banner image of {subject}. Dramatic composition with negative space for text overlay, premium presentation.",
        ContextPreset.INSTAGRAM: "Instagram-ready photo of {subject}. Social media optimized, engaging composition, mobile-friendly.",
        ContextPreset.STORY: "Vertical story format image of {subject}. Mobile-optimized vertical composition.",
        ContextPreset.DETAIL: "Close-up detail photograph of {subject}, showing texture and craftsmanship.",
    }
)

ASSET_PROMPTS: Mapping[AssetType, str] = MappingProxyType(
    {
        AssetType.LIFESTYLE: (
            "Transform this {name} into a stunning lifestyle scene. Place the product naturally in a modern, "
            "sophisticated real-world environment such as a living room, bedroom, kitchen, or office space, with "
            "complementary furniture, decor and lighting. The scene should feel authentic, inviting, and aspirational."
        ),
        AssetType.AD: (
            "Create a high-impact advertising image for this {name}. Use dramatic, professional lighting that makes "
            "the product the clear hero of the composition, with styling that communicates premium quality."
        ),
        AssetType.SOCIAL: (
            "Transform this {name} into an engaging social media image. Use contemporary styling, tasteful vibrant "
            "colors and a modern composition optimized for mobile viewing, keeping the product as the focal point."
        ),
        AssetType.HERO: (
            "Create a premium hero banner image for this {name} suitable for website headers. Leave strategic white "
            "space for text overlay while making the product the dominant visual element."
        ),
        AssetType.VARIATION: (
            "Generate an appealing variation of this {name} by modifying its color, material, finish, or texture "
            "while keeping the same style, composition, and product integrity."
        ),
    }
)

FIDELITY_CLAUSE = (
    "Maintain the product's original identity, quality, and key features while applying the transformation."
)


def _humanize(value: str) -> str:
    return value.replace("_", " ").strip()


class PromptComposer:
    """
    Builds the instruction text sent to a synthesis backend.

    compose() is deterministic: identical inputs give byte-identical output.
    Blocks are joined in a fixed order; an empty block is skipped rather than
    leaving a dangling label.
    """

    def compose(
        self,
        profile: ProductProfile,
        preset: ContextPreset,
        settings: GenerationSettings,
        custom_prompt: str | None = None,
    ) -> str:
        parts = [
            self._base_fragment(profile, preset),
            self._visual_details(profile),
            self._product_facts(profile),
            self._photography(profile),
            CONTEXT_CONSTRAINTS[preset],
            self._settings_overrides(preset, settings),
        ]
        if settings.strict_mode:
            parts.extend(_strict_clauses(profile))
        if custom_prompt and custom_prompt.strip():
            parts.append(f"Additional instructions: {custom_prompt.strip()}")
        return " ".join(p for p in parts if p)

    def compose_asset(
        self,
        profile: ProductProfile,
        asset_type: AssetType,
        settings: GenerationSettings,
        variation_index: int,
        custom_prompt: str | None = None,
    ) -> str:
        parts = [
            ASSET_PROMPTS[asset_type].format(name=profile.display_name),
            FIDELITY_CLAUSE,
            CONTEXT_CONSTRAINTS[ASSET_CONTEXT[asset_type]],
        ]
        if variation_index > 1:
            parts.append(
                f"Create variation {variation_index} with a different style, perspective, or approach "
                f"while maintaining the {asset_type.value} theme."
            )
        if custom_prompt and custom_prompt.strip():
            parts.append(f"Additional instructions: {custom_prompt.strip()}")
        if settings.strict_mode:
            parts.extend(_strict_clauses(profile))
        return " ".join(parts)

    def _base_fragment(self, profile: ProductProfile, preset: ContextPreset) -> str:
        fragment = profile.fragment_for(preset) or profile.base_description
        if fragment:
            return fragment.strip()

        subject = _humanize(profile.product_type)
        if profile.materials:
            subject += f" made from {', '.join(profile.materials)}"
        subject += f" in {profile.color_name} color, {profile.style} style"
        opener = _FALLBACK_OPENERS[preset].format(subject=subject)
        if profile.features:
            opener += f" Key features: {', '.join(profile.features[:3])}."
        return opener

    def _visual_details(self, profile: ProductProfile) -> str:
        vd = profile.visual_details
        blocks = [
            ("Materials and textures", vd.material_textures),
            ("Color palette", vd.color_palette),
            ("Construction details", vd.hardware_details),
            ("Proportions", vd.proportional_relationships),
        ]
        return " ".join(f"{label}: {value.rstrip('.')}." for label, value in blocks if value)

    def _product_facts(self, profile: ProductProfile) -> str:
        facts = []
        dims = profile.dimensions
        if dims is not None and (dims.width or dims.height or dims.depth):
            u = dims.unit
            facts.append(f"Dimensions: {dims.width:g}{u} W x {dims.height:g}{u} H x {dims.depth:g}{u} D, keep these proportions.")
        if profile.wall_mounted:
            is_desk = any(word in profile.product_type.lower() for word in ("desk", "workstation"))
            facts.append(WALL_MOUNTED_DESK_NOTE if is_desk else WALL_MOUNTED_NOTE)
        return " ".join(facts)

    def _photography(self, profile: ProductProfile) -> str:
        ps = profile.photography_specs
        return (
            f"Camera: {(ps.camera_angle or DEFAULT_CAMERA_ANGLE).rstrip('.')}. "
            f"Lighting setup: {(ps.lighting_setup or DEFAULT_LIGHTING_SETUP).rstrip('.')}. "
            f"Depth of field: {(ps.depth_of_field or DEFAULT_DEPTH_OF_FIELD).rstrip('.')}. "
            f"Composition: {(ps.composition or DEFAULT_COMPOSITION).rstrip('.')}."
        )

    def _settings_overrides(self, preset: ContextPreset, settings: GenerationSettings) -> str:
        out: list[str] = []
        if settings.background_style:
            out.append(f"Background: {_humanize(settings.background_style)}.")
        if settings.lighting:
            out.append(f"Lighting: {_humanize(settings.lighting)}.")
        if settings.product_position and preset in (ContextPreset.HERO, ContextPreset.PACKSHOT):
            out.append(f"Product positioned {settings.product_position}.")
        if settings.reserved_text_zone:
            out.append(f"Leave the {settings.reserved_text_zone} area clear for text overlay.")
        if settings.props:
            out.append(f"Include props: {', '.join(settings.props)}.")
        return " ".join(out)


def _strict_clauses(profile: ProductProfile) -> list[str]:
    if profile.wall_mounted:
        return [STRICT_CLAUSE, STRICT_WALL_MOUNTED_CLAUSE]
    return [STRICT_CLAUSE]
