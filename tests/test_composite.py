import pytest
from PIL import Image

from spritepatch.models import Calibration, PatchOffset, Rect
from spritepatch.render.composite import (
    clear_mask,
    compute_draw_plan,
    render_composite,
    render_preview,
)

BLUE = (0, 0, 255, 255)


def _sheet_with_blue_patch() -> Image.Image:
    # 100 px wide: 1 normalized unit == 0.1 px
    image = Image.new("RGBA", (100, 100), color=(0, 0, 0, 0))
    image.paste(BLUE, (0, 0, 10, 10))
    return image


def test_draw_plan_matches_calibrated_geometry() -> None:
    plan = compute_draw_plan(
        (1000, 1000),
        Rect(x=0, y=0, w=180, h=180),
        Rect(x=400, y=200, w=200, h=200),
        Calibration(offset_x=10, offset_y=-5, scale=1.1),
    )
    assert (plan.dest.w, plan.dest.h) == pytest.approx((198.0, 198.0))
    assert (plan.dest.x, plan.dest.y) == pytest.approx((411.0, 196.0))
    assert plan.alpha == 1.0
    assert plan.mask is not None
    assert plan.mask.box == pytest.approx((400.0, 200.0, 600.0, 400.0))


def test_draw_plan_adds_per_patch_offset() -> None:
    plan = compute_draw_plan(
        (1000, 1000),
        Rect(x=0, y=0, w=180, h=180),
        Rect(x=400, y=200, w=200, h=200),
        Calibration(offset_x=10, offset_y=-5, scale=1.1),
        PatchOffset(dx=-4, dy=7),
    )
    assert (plan.dest.x, plan.dest.y) == pytest.approx((407.0, 203.0))


def test_preview_plan_has_no_mask_and_clamped_alpha() -> None:
    target = Rect(x=400, y=200, w=200, h=200)
    plan = compute_draw_plan((1000, 1000), target, target, Calibration(), preview=True, opacity=1.7)
    assert plan.mask is None
    assert plan.alpha == 1.0

    plan = compute_draw_plan((1000, 1000), target, target, Calibration(), preview=True, opacity=0.25)
    assert plan.alpha == 0.25

    plan = compute_draw_plan((1000, 1000), target, target, Calibration(), masking=False)
    assert plan.mask is None


def test_mask_clears_original_target_rect() -> None:
    canvas = Image.new("RGBA", (1000, 1000), color=(255, 0, 0, 255))
    plan = compute_draw_plan(
        canvas.size,
        Rect(x=0, y=0, w=180, h=180),
        Rect(x=400, y=200, w=200, h=200),
        Calibration(offset_x=10, offset_y=-5, scale=1.1),
    )
    clear_mask(canvas, plan)

    for point in ((400, 200), (599, 200), (400, 399), (599, 399), (500, 300)):
        assert canvas.getpixel(point)[3] == 0
    # Outside the face box the base survives, even where the scaled patch will land.
    assert canvas.getpixel((398, 300)) == (255, 0, 0, 255)
    assert canvas.getpixel((300, 300)) == (255, 0, 0, 255)


def test_final_render_masks_target_and_draws_patch_at_destination() -> None:
    image = _sheet_with_blue_patch()
    image.paste((255, 0, 0, 255), (50, 50, 70, 70))
    canvas = image.copy()
    plan = compute_draw_plan(
        image.size,
        Rect(x=0, y=0, w=100, h=100),
        Rect(x=500, y=500, w=200, h=200),
        Calibration(),
    )
    render_composite(canvas, image, plan)

    assert canvas.getpixel((60, 60)) == BLUE
    assert canvas.getpixel((56, 56)) == BLUE
    # Masked but not covered by the 10 px patch.
    assert canvas.getpixel((52, 52))[3] == 0
    assert canvas.getpixel((68, 68))[3] == 0
    assert canvas.getpixel((5, 5)) == BLUE


def test_render_composite_honours_canvas_origin() -> None:
    image = _sheet_with_blue_patch()
    canvas = image.crop((40, 40, 90, 90))
    plan = compute_draw_plan(
        image.size,
        Rect(x=0, y=0, w=100, h=100),
        Rect(x=500, y=500, w=200, h=200),
        Calibration(),
    )
    render_composite(canvas, image, plan, origin=(40, 40))
    assert canvas.getpixel((20, 20)) == BLUE
    assert canvas.getpixel((12, 12))[3] == 0


def test_preview_blends_with_requested_opacity() -> None:
    image = _sheet_with_blue_patch()
    rendered = render_preview(
        image,
        Rect(x=0, y=0, w=100, h=100),
        Rect(x=500, y=500, w=200, h=200),
        Calibration(),
        opacity=0.5,
    )
    assert rendered.size == image.size
    r, g, b, a = rendered.getpixel((60, 60))
    assert (r, g) == (0, 0)
    assert b >= 250
    assert 126 <= a <= 129
    # The base image itself is untouched.
    assert image.getpixel((60, 60)) == (0, 0, 0, 0)


def test_degenerate_geometry_is_a_no_op() -> None:
    image = _sheet_with_blue_patch()
    canvas = image.copy()
    plan = compute_draw_plan(
        image.size,
        Rect(x=0, y=0, w=0, h=-5),
        Rect(x=5000, y=5000, w=200, h=200),
        Calibration(scale=1.0),
    )
    render_composite(canvas, image, plan)
    assert list(canvas.getdata()) == list(image.getdata())
