from __future__ import annotations

from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from spritepatch.constants import SUPPORTED_EXTENSIONS
from spritepatch.errors import DecodeFailure


def _decode_standard(path: Path) -> Image.Image:
    with Image.open(path) as image:
        return ImageOps.exif_transpose(image).convert("RGBA").copy()


def decode_sheet(path: Path) -> Image.Image:
    """Decode a sprite sheet to RGBA, keeping its transparency."""
    ext = path.suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise DecodeFailure(f"unsupported image format: {path.suffix}")
    try:
        return _decode_standard(path)
    except FileNotFoundError as exc:
        raise DecodeFailure(f"image not found: {path}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise DecodeFailure(f"cannot decode {path.name}: {exc}") from exc
