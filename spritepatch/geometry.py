# Normalized <-> raw pixel conversion.
# Every field, vertical ones included, is scaled by the image WIDTH; stored
# calibration values depend on that convention.
from __future__ import annotations

from spritepatch.constants import NORMALIZED_SPAN
from spritepatch.models import MasterSize, PixelRect, Rect


def to_raw(value: float, image_width: float) -> float:
    return (value / NORMALIZED_SPAN) * image_width


def to_normalized(value: float, image_width: float) -> float:
    if image_width <= 0:
        raise ValueError(f"image width must be positive, got {image_width}")
    return (value / image_width) * NORMALIZED_SPAN


def rect_to_raw(rect: Rect, image_width: float) -> PixelRect:
    return PixelRect(
        x=to_raw(rect.x, image_width),
        y=to_raw(rect.y, image_width),
        w=to_raw(rect.w, image_width),
        h=to_raw(rect.h, image_width),
    )


def rect_to_normalized(rect: PixelRect, image_width: float) -> Rect:
    return Rect(
        x=to_normalized(rect.x, image_width),
        y=to_normalized(rect.y, image_width),
        w=to_normalized(rect.w, image_width),
        h=to_normalized(rect.h, image_width),
    )


def effective_patch(patch: Rect, use_uniform_size: bool, master_size: MasterSize) -> Rect:
    """Return the patch rect actually sampled, recentred on the master size when enabled."""
    if not use_uniform_size:
        return patch
    center_x, center_y = patch.center
    return Rect(
        x=center_x - master_size.w / 2.0,
        y=center_y - master_size.h / 2.0,
        w=master_size.w,
        h=master_size.h,
    )


def clamp_rect(rect: Rect, min_size: float = 1.0) -> Rect:
    """Clamp an interactively edited rect back into the normalized range."""
    w = min(NORMALIZED_SPAN, max(min_size, rect.w))
    h = max(min_size, rect.h)
    x = min(NORMALIZED_SPAN - w, max(0.0, rect.x))
    y = max(0.0, rect.y)
    return Rect(x=x, y=y, w=w, h=h)


def anchor_sub_rect(anchor: Rect | None, patch: Rect, image_width: float) -> PixelRect:
    """Raw-pixel anchor crop relative to the patch origin; the whole patch when unset."""
    if anchor is None:
        return PixelRect(x=0.0, y=0.0, w=to_raw(patch.w, image_width), h=to_raw(patch.h, image_width))
    return rect_to_raw(anchor, image_width)
