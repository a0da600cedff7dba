from __future__ import annotations

import re

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1F]')


def sanitize_token(value: str | None, fallback: str = "NA") -> str:
    text = (value or "").strip()
    if not text:
        text = fallback
    text = INVALID_FILENAME_CHARS.sub("_", text)
    text = re.sub(r"\s+", "_", text)
    text = text.strip(" ._")
    return text or fallback


def build_export_name(prefix: str, index: int, extension: str) -> str:
    """``<prefix>_<index+1>.<ext>`` for the patch at zero-based ``index``."""
    if index < 0:
        raise ValueError(f"patch index must be >= 0, got {index}")
    ext = extension.lower().lstrip(".")
    if not ext:
        raise ValueError("export extension must not be empty")
    return f"{sanitize_token(prefix, fallback='sprite_export')}_{index + 1}.{ext}"
