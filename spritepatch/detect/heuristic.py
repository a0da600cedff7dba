from __future__ import annotations

import logging
import math

import numpy as np
from PIL import Image

from spritepatch.constants import (
    DEFAULT_FACE_RECT,
    NORMALIZED_SPAN,
    SCAN_ALPHA_THRESHOLD,
    SCAN_BASE_WIDTH,
    SCAN_MIN_ROW_DENSITY,
    SCAN_TOP_FRACTION,
)
from spritepatch.models import AnalysisResult, Rect

LOGGER = logging.getLogger(__name__)


def _row_density(image: Image.Image) -> tuple[np.ndarray, int]:
    scale = SCAN_BASE_WIDTH / float(image.width)
    height = max(1, int(image.height * scale))
    resized = image.convert("RGBA").resize((SCAN_BASE_WIDTH, height), Image.Resampling.BILINEAR)
    alpha = np.asarray(resized.getchannel("A"))
    return (np.count_nonzero(alpha > SCAN_ALPHA_THRESHOLD, axis=1), height)


def scan_sprite_sheet(image: Image.Image) -> AnalysisResult:
    """Cheap local scan: find where the figure starts and propose a default face box.

    Works at a fixed 1000 px width so the returned rects are already in
    normalized units. No patches are proposed; use a grid or the AI detector.
    """
    density, height = _row_density(image)
    min_y = 0
    for y in range(math.ceil(height * SCAN_TOP_FRACTION)):
        if density[y] > SCAN_MIN_ROW_DENSITY:
            min_y = y
            break

    unit = NORMALIZED_SPAN / SCAN_BASE_WIDTH
    face_x, face_y, face_w, face_h = DEFAULT_FACE_RECT
    result = AnalysisResult(
        main_body=Rect(x=0.0, y=min_y * unit, w=NORMALIZED_SPAN, h=height * unit),
        main_face=Rect(x=face_x, y=face_y, w=face_w, h=face_h),
        patches=[],
    )
    LOGGER.debug("heuristic scan: body top=%d height=%d", min_y, height)
    return result
