"""
Shared fixtures for the generation orchestration tests.
"""
import pytest

from fakes import FakeClock, FakeImageBackend, FakeVideoBackend, RecordingSleep, make_png

from furniture_genai.models import GenerationSettings, ProductProfile
from furniture_genai.profile import ProfileNormalizer


@pytest.fixture
def raw_analysis():
    """Structured vision output for an oak side table."""
    return {
        "type": "side_table",
        "materials": ["oak", "steel"],
        "primaryColor": {"hex": "#A0522D", "name": "warm oak", "confidence": 0.9},
        "style": "scandinavian",
        "wallMounted": False,
        "features": [
            {"name": "tapered legs", "description": "solid oak legs", "importance": "high"},
            {"name": "round top", "description": "45cm diameter", "importance": "medium"},
        ],
        "dimensions": {
            "estimated": {"width": 45, "height": 55, "depth": 45, "unit": "cm", "confidence": "medium"}
        },
        "confidence": "high",
        "notes": "Light wear on the top edge.",
        "textToImagePrompts": {
            "baseDescription": "A round scandinavian side table in warm oak with tapered legs.",
            "packshot": "Studio packshot of a round oak side table with tapered legs.",
            "lifestyle": "A round oak side table beside a linen sofa.",
            "photographySpecs": {
                "cameraAngle": "Front view at table height",
                "lightingSetup": "Softbox key light",
            },
            "visualDetails": {
                "materialTextures": "Visible oak grain with matte lacquer",
                "colorPalette": "",
            },
        },
    }


@pytest.fixture
def profile(raw_analysis) -> ProductProfile:
    return ProfileNormalizer().normalize(raw_analysis, product_name="Oslo Side Table")


@pytest.fixture
def bare_profile() -> ProductProfile:
    """A profile without any prompt fragments or photography specs."""
    return ProductProfile(product_type="lounge_chair", materials=("velvet",), color_name="green", style="mid-century")


@pytest.fixture
def default_settings() -> GenerationSettings:
    return GenerationSettings()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def image_backend() -> FakeImageBackend:
    return FakeImageBackend()


@pytest.fixture
def video_backend() -> FakeVideoBackend:
    return FakeVideoBackend()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock)
