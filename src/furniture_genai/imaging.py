from __future__ import annotations

import logging
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from furniture_genai.errors import ValidationError

logger = logging.getLogger(__name__)

# images.edit rejects uploads above this size.
MAX_REFERENCE_BYTES = 4 * 1024 * 1024

# Modes the edit endpoints accept as-is.
_EDIT_MODES = {"RGBA", "LA", "L"}


def prepare_reference_image(content: bytes) -> bytes:
    """
    Normalize an uploaded reference photo into a PNG the edit backends accept:
    - decode with Pillow (rejects non-images)
    - RGB and palette images gain an alpha channel
    - re-encode as PNG and enforce the 4MB upload limit
    """
    if not content:
        raise ValidationError("reference image is empty")
    try:
        img = Image.open(BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError("reference image is not a valid image file", detail=str(exc)) from exc

    original_mode = img.mode
    if img.mode not in _EDIT_MODES:
        img = img.convert("RGBA")

    buf = BytesIO()
    img.save(buf, format="PNG")
    out = buf.getvalue()
    if len(out) > MAX_REFERENCE_BYTES:
        raise ValidationError(
            f"reference image is too large after conversion ({len(out)} bytes, max {MAX_REFERENCE_BYTES})"
        )

    logger.debug("Prepared reference image: mode %s -> %s, %d -> %d bytes", original_mode, img.mode, len(content), len(out))
    return out


def sniff_mime_type(content: bytes, default: str = "image/png") -> str:
    try:
        with Image.open(BytesIO(content)) as img:
            fmt = (img.format or "").lower()
    except (UnidentifiedImageError, OSError):
        return default
    return f"image/{fmt}" if fmt else default
