from __future__ import annotations

import asyncio
import logging
from typing import Callable

from PIL import Image

from spritepatch.align.template_match import AbortFlag, match_template
from spritepatch.errors import AlignmentCancelled
from spritepatch.geometry import effective_patch, rect_to_raw, to_normalized
from spritepatch.models import AlignmentResult, PatchOffset, PixelRect, Rect, Session, ZERO_OFFSET

LOGGER = logging.getLogger(__name__)

ActiveCallback = Callable[[int, int], None]
ProgressCallback = Callable[[int, int, AlignmentResult], None]
CompleteCallback = Callable[[Session, bool], None]


class BatchAligner:
    """Run the template matcher over every patch, one at a time, in grid order.

    The aligner is the only writer of the session's patch offsets. Each run
    starts from the given session snapshot and returns a new one.
    """

    def __init__(
        self,
        *,
        on_active: ActiveCallback | None = None,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> None:
        self.on_active = on_active
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.active_index: int | None = None

    def _patch_region(
        self,
        image: Image.Image,
        session: Session,
        patch: Rect,
    ) -> PixelRect:
        resolved = effective_patch(patch, session.use_master_size, session.master_size)
        return rect_to_raw(resolved, image.width)

    async def run(
        self,
        image: Image.Image,
        session: Session,
        patches: list[Rect],
        target: Rect,
        anchor_sub_rect: PixelRect,
        *,
        abort: AbortFlag | None = None,
    ) -> Session:
        total = len(patches)
        search_region = rect_to_raw(target, image.width)
        target_scale = session.calibration.scale
        cancelled = False

        for index, patch in enumerate(patches):
            if abort is not None and abort.is_set():
                cancelled = True
                break
            self.active_index = index
            if self.on_active:
                self.on_active(index, total)

            patch_region = self._patch_region(image, session, patch)
            try:
                result = await match_template(
                    image,
                    patch_region,
                    search_region,
                    anchor_sub_rect,
                    target_scale,
                    abort=abort,
                )
            except AlignmentCancelled:
                LOGGER.info("batch alignment cancelled at patch %d/%d", index + 1, total)
                cancelled = True
                break

            if result.feasible:
                offset = PatchOffset(
                    dx=to_normalized(result.dx, image.width),
                    dy=to_normalized(result.dy, image.width),
                )
            else:
                LOGGER.warning("patch %d: %s, using zero offset", index + 1, result.reason)
                offset = ZERO_OFFSET
            session = session.with_offset(index, offset)
            LOGGER.debug("patch %d/%d offset=(%.3f, %.3f)", index + 1, total, offset.dx, offset.dy)
            if self.on_progress:
                self.on_progress(index, total, result)

        self.active_index = None
        if self.on_complete:
            self.on_complete(session, cancelled)
        return session


def align_batch(
    image: Image.Image,
    session: Session,
    patches: list[Rect],
    target: Rect,
    anchor_sub_rect: PixelRect,
    *,
    abort: AbortFlag | None = None,
    on_progress: ProgressCallback | None = None,
) -> Session:
    """Blocking wrapper for callers without an event loop, e.g. the CLI."""
    aligner = BatchAligner(on_progress=on_progress)
    return asyncio.run(aligner.run(image, session, patches, target, anchor_sub_rect, abort=abort))
