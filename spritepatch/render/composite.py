"""Overlay one patch onto the shared anchor region.

The draw plan is pure geometry; the helpers below apply it to a Pillow RGBA
canvas. The mask box is always the ORIGINAL target rect, independent of the
calibrated destination, so the erased area and the drawn area may differ
when scale != 1 or offsets are non-zero.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from PIL import Image

from spritepatch.geometry import rect_to_raw, to_raw
from spritepatch.models import Calibration, PatchOffset, PixelRect, Rect

_TRANSPARENT = (0, 0, 0, 0)


@dataclass(slots=True)
class DrawPlan:
    source: PixelRect
    dest: PixelRect
    mask: PixelRect | None
    alpha: float


def compute_draw_plan(
    image_size: tuple[int, int],
    patch: Rect,
    target: Rect,
    calibration: Calibration,
    offset: PatchOffset | None = None,
    *,
    masking: bool = True,
    preview: bool = False,
    opacity: float = 1.0,
) -> DrawPlan:
    image_width = image_size[0]
    source = rect_to_raw(patch, image_width)
    target_px = rect_to_raw(target, image_width)

    center_x, center_y = target_px.center
    dest_w = source.w * calibration.scale
    dest_h = source.h * calibration.scale
    dest_x = center_x - dest_w / 2.0 + to_raw(calibration.offset_x, image_width)
    dest_y = center_y - dest_h / 2.0 + to_raw(calibration.offset_y, image_width)
    if offset is not None:
        dest_x += to_raw(offset.dx, image_width)
        dest_y += to_raw(offset.dy, image_width)

    mask = target_px if masking and not preview else None
    alpha = min(1.0, max(0.0, float(opacity))) if preview else 1.0
    return DrawPlan(
        source=source,
        dest=PixelRect(x=dest_x, y=dest_y, w=dest_w, h=dest_h),
        mask=mask,
        alpha=alpha,
    )


def _is_drawable(rect: PixelRect) -> bool:
    values = (rect.x, rect.y, rect.w, rect.h)
    return all(math.isfinite(v) for v in values) and rect.w > 0 and rect.h > 0


def _clip_box(
    box: tuple[int, int, int, int],
    size: tuple[int, int],
) -> tuple[int, int, int, int] | None:
    left = max(0, box[0])
    top = max(0, box[1])
    right = min(size[0], box[2])
    bottom = min(size[1], box[3])
    if right <= left or bottom <= top:
        return None
    return (left, top, right, bottom)


def clear_mask(canvas: Image.Image, plan: DrawPlan, origin: tuple[float, float] = (0.0, 0.0)) -> None:
    if plan.mask is None or not _is_drawable(plan.mask):
        return
    x0, y0, x1, y1 = plan.mask.box
    box = (
        int(round(x0 - origin[0])),
        int(round(y0 - origin[1])),
        int(round(x1 - origin[0])),
        int(round(y1 - origin[1])),
    )
    clipped = _clip_box(box, canvas.size)
    if clipped is None:
        return
    canvas.paste(_TRANSPARENT, clipped)


def _sample_source(image: Image.Image, source: PixelRect, size: tuple[int, int]) -> Image.Image:
    # Crop to the enclosing integer box first: Pillow pads out-of-bounds
    # reads with transparency, resize(box=...) would refuse them.
    x0, y0, x1, y1 = source.box
    left, top = math.floor(x0), math.floor(y0)
    right, bottom = math.ceil(x1), math.ceil(y1)
    region = image.crop((left, top, right, bottom))
    if region.mode != "RGBA":
        region = region.convert("RGBA")
    return region.resize(
        size,
        Image.Resampling.BILINEAR,
        box=(x0 - left, y0 - top, x1 - left, y1 - top),
    )


def _apply_alpha(patch: Image.Image, alpha: float) -> Image.Image:
    if alpha >= 1.0:
        return patch
    channel = patch.getchannel("A").point(lambda v: int(round(v * alpha)))
    patch.putalpha(channel)
    return patch


def draw_patch(canvas: Image.Image, image: Image.Image, plan: DrawPlan, origin: tuple[float, float] = (0.0, 0.0)) -> None:
    if plan.alpha <= 0 or not _is_drawable(plan.source) or not _is_drawable(plan.dest):
        return
    dest_w = int(round(plan.dest.w))
    dest_h = int(round(plan.dest.h))
    if dest_w <= 0 or dest_h <= 0:
        return
    dest_x = int(round(plan.dest.x - origin[0]))
    dest_y = int(round(plan.dest.y - origin[1]))
    visible = _clip_box((dest_x, dest_y, dest_x + dest_w, dest_y + dest_h), canvas.size)
    if visible is None:
        return

    patch = _apply_alpha(_sample_source(image, plan.source, (dest_w, dest_h)), plan.alpha)
    left, top, right, bottom = visible
    if (left, top, right, bottom) != (dest_x, dest_y, dest_x + dest_w, dest_y + dest_h):
        patch = patch.crop((left - dest_x, top - dest_y, right - dest_x, bottom - dest_y))
    canvas.alpha_composite(patch, dest=(left, top))


def render_composite(canvas: Image.Image, image: Image.Image, plan: DrawPlan, origin: tuple[float, float] = (0.0, 0.0)) -> Image.Image:
    """Clear the mask (final renders only) and draw the patch onto ``canvas`` in place."""
    clear_mask(canvas, plan, origin)
    draw_patch(canvas, image, plan, origin)
    return canvas


def render_preview(
    image: Image.Image,
    patch: Rect,
    target: Rect,
    calibration: Calibration,
    offset: PatchOffset | None = None,
    opacity: float = 1.0,
) -> Image.Image:
    canvas = image.convert("RGBA") if image.mode != "RGBA" else image.copy()
    plan = compute_draw_plan(
        image.size,
        patch,
        target,
        calibration,
        offset,
        masking=False,
        preview=True,
        opacity=opacity,
    )
    return render_composite(canvas, image, plan)
