"""Brute-force template matching used to snap a patch onto the anchor region.

The anchor sub-rect of a patch (typically the eyes) is resampled to the
scale the patch will be rendered at, then slid over every integer offset of
the search window. Each placement is scored by the mean absolute RGB
difference over the opaque template pixels, both buffers sampled on a
stride-2 grid. The winning placement is reported as the displacement of the
patch origin relative to the search window origin.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Protocol

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from PIL import Image

from spritepatch.constants import ALPHA_THRESHOLD, SAMPLE_STRIDE, YIELD_EVERY_ROWS
from spritepatch.errors import AlignmentCancelled
from spritepatch.models import AlignmentResult, PixelRect

LOGGER = logging.getLogger(__name__)


class AbortFlag(Protocol):
    def is_set(self) -> bool: ...


def _infeasible(reason: str) -> AlignmentResult:
    LOGGER.warning("alignment infeasible: %s", reason)
    return AlignmentResult(dx=0.0, dy=0.0, score=None, feasible=False, reason=reason)


def _as_rgba(image: Image.Image) -> Image.Image:
    return image if image.mode == "RGBA" else image.convert("RGBA")


def extract_template(
    image: Image.Image,
    patch_region: PixelRect,
    anchor_sub_rect: PixelRect,
    target_scale: float,
) -> Image.Image:
    """Read the anchor crop of a patch at its rendered scale."""
    tpl_w = max(1, int(round(anchor_sub_rect.w * target_scale)))
    tpl_h = max(1, int(round(anchor_sub_rect.h * target_scale)))
    x0 = patch_region.x + anchor_sub_rect.x
    y0 = patch_region.y + anchor_sub_rect.y
    x1 = x0 + anchor_sub_rect.w
    y1 = y0 + anchor_sub_rect.h

    left, top = math.floor(x0), math.floor(y0)
    right, bottom = math.ceil(x1), math.ceil(y1)
    region = _as_rgba(image.crop((left, top, right, bottom)))
    if (x0, y0, x1, y1) == (left, top, right, bottom) and region.size == (tpl_w, tpl_h):
        return region
    return region.resize(
        (tpl_w, tpl_h),
        Image.Resampling.BILINEAR,
        box=(x0 - left, y0 - top, x1 - left, y1 - top),
    )


def extract_search_window(image: Image.Image, search_region: PixelRect) -> Image.Image:
    left = math.floor(search_region.x)
    top = math.floor(search_region.y)
    width = math.floor(search_region.w)
    height = math.floor(search_region.h)
    return _as_rgba(image.crop((left, top, left + width, top + height)))


def _score_row(
    search_rgb: np.ndarray,
    dy: int,
    tpl_w: int,
    tpl_h: int,
    mask: np.ndarray,
    tpl_rgb: np.ndarray,
    weight: int,
) -> np.ndarray:
    """Scores for every dx at one dy, in dx order."""
    rows = search_rgb[dy : dy + tpl_h : SAMPLE_STRIDE]
    # (sampled rows, dx, channel, tpl_w) -> (dx, sampled rows, sampled cols, channel)
    windows = sliding_window_view(rows, tpl_w, axis=1)[..., ::SAMPLE_STRIDE]
    windows = windows.transpose(1, 0, 3, 2)
    diff = np.abs(windows[:, mask] - tpl_rgb)
    return diff.sum(axis=(1, 2)) / float(weight)


async def match_template(
    image: Image.Image,
    patch_region: PixelRect,
    search_region: PixelRect,
    anchor_sub_rect: PixelRect,
    target_scale: float,
    *,
    abort: AbortFlag | None = None,
) -> AlignmentResult:
    """Find the integer translation that best places ``patch_region`` over ``search_region``.

    Returns a zero, non-feasible result instead of raising when the search
    window is smaller than the scaled template or the template has no opaque
    pixel. Yields to the event loop after every ``YIELD_EVERY_ROWS`` rows and
    raises ``AlignmentCancelled`` at a yield point once ``abort`` is set.
    """
    if not target_scale > 0 or not math.isfinite(target_scale):
        return _infeasible(f"invalid target scale {target_scale!r}")
    if anchor_sub_rect.w <= 0 or anchor_sub_rect.h <= 0:
        return _infeasible("anchor sub-rect is empty")

    template = extract_template(image, patch_region, anchor_sub_rect, target_scale)
    search = extract_search_window(image, search_region)
    tpl_w, tpl_h = template.size
    search_w, search_h = search.size

    limit_x = search_w - tpl_w
    limit_y = search_h - tpl_h
    if limit_x < 0 or limit_y < 0:
        return _infeasible(
            f"search region {search_w}x{search_h} is smaller than template {tpl_w}x{tpl_h}"
        )

    tpl = np.asarray(template, dtype=np.int16)[::SAMPLE_STRIDE, ::SAMPLE_STRIDE]
    mask = tpl[..., 3] > ALPHA_THRESHOLD
    weight = int(mask.sum())
    if weight == 0:
        return _infeasible("template has no opaque pixels")
    tpl_rgb = tpl[..., :3][mask]
    search_rgb = np.asarray(search, dtype=np.int16)[..., :3]

    best_score = math.inf
    best_x = 0
    best_y = 0
    for dy in range(limit_y + 1):
        scores = _score_row(search_rgb, dy, tpl_w, tpl_h, mask, tpl_rgb, weight)
        row_best = int(np.argmin(scores))
        row_score = float(scores[row_best])
        if row_score < best_score:
            best_score = row_score
            best_x = row_best
            best_y = dy
        if (dy + 1) % YIELD_EVERY_ROWS == 0:
            await asyncio.sleep(0)
            if abort is not None and abort.is_set():
                raise AlignmentCancelled("template matching aborted")

    result_dx = best_x - anchor_sub_rect.x * target_scale
    result_dy = best_y - anchor_sub_rect.y * target_scale
    LOGGER.debug(
        "template match at (%d, %d) score=%.3f -> offset (%.2f, %.2f)",
        best_x,
        best_y,
        best_score,
        result_dx,
        result_dy,
    )
    return AlignmentResult(dx=result_dx, dy=result_dy, score=best_score)
