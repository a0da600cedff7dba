from __future__ import annotations

import io
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from PIL import Image

from spritepatch.constants import DEFAULT_EXPORT_DELAY_S, DEFAULT_EXPORT_PREFIX, EXPORT_FORMATS
from spritepatch.geometry import effective_patch, rect_to_raw
from spritepatch.models import AnalysisResult, Session
from spritepatch.naming import build_export_name
from spritepatch.render.composite import compute_draw_plan, render_composite

LOGGER = logging.getLogger(__name__)

Sink = Callable[[str, bytes], None]
ExportProgressCallback = Callable[[int, int, str], None]


@dataclass(slots=True)
class ExportItem:
    index: int
    name: str
    status: str          # ok | failed
    size: int = 0
    error: str | None = None


@dataclass(slots=True)
class ExportReport:
    items: list[ExportItem] = field(default_factory=list)

    @property
    def ok_count(self) -> int:
        return sum(1 for item in self.items if item.status == "ok")

    @property
    def failed(self) -> list[ExportItem]:
        return [item for item in self.items if item.status == "failed"]


def resolve_export_format(fmt: str) -> tuple[str, str]:
    ext = fmt.lower().lstrip(".")
    pil_format = EXPORT_FORMATS.get(ext)
    if pil_format is None:
        raise ValueError(f"export format must be one of {sorted(EXPORT_FORMATS)}, got: {fmt!r}")
    if ext == "jpeg":
        ext = "jpg"
    return ext, pil_format


def body_bounds(image: Image.Image, analysis: AnalysisResult) -> tuple[int, int, int, int]:
    body = rect_to_raw(analysis.main_body, image.width)
    left = int(round(body.x))
    top = int(round(body.y))
    width = max(1, int(round(body.w)))
    height = max(1, int(round(body.h)))
    return (left, top, left + width, top + height)


def render_export_frame(
    image: Image.Image,
    analysis: AnalysisResult,
    session: Session,
    index: int,
) -> Image.Image:
    """Base image clipped to mainBody with patch ``index`` composited at full opacity."""
    if not 0 <= index < len(analysis.patches):
        raise IndexError(f"patch index {index} out of range (0..{len(analysis.patches) - 1})")
    bounds = body_bounds(image, analysis)
    source = image if image.mode == "RGBA" else image.convert("RGBA")
    canvas = source.crop(bounds)

    patch = effective_patch(analysis.patches[index], session.use_master_size, session.master_size)
    plan = compute_draw_plan(
        image.size,
        patch,
        analysis.main_face,
        session.calibration,
        session.offset_for(index),
        masking=session.enable_mask,
        preview=False,
    )
    return render_composite(canvas, source, plan, origin=(bounds[0], bounds[1]))


def encode_image(image: Image.Image, fmt: str = "png", quality: int = 92, fill_color: str = "#FFFFFF") -> bytes:
    _ext, pil_format = resolve_export_format(fmt)
    buffer = io.BytesIO()
    if pil_format == "PNG":
        image.save(buffer, format="PNG", optimize=True)
    elif pil_format == "JPEG":
        flat = Image.new("RGB", image.size, color=fill_color)
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        flat.paste(rgba, mask=rgba.getchannel("A"))
        flat.save(buffer, format="JPEG", quality=max(1, min(100, quality)), optimize=True, progressive=True)
    else:
        image.save(buffer, format=pil_format, quality=max(1, min(100, quality)))
    return buffer.getvalue()


def directory_sink(out_dir: Path) -> Sink:
    def _write(name: str, data: bytes) -> None:
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / name).write_bytes(data)

    return _write


def export_single(
    image: Image.Image,
    analysis: AnalysisResult,
    session: Session,
    index: int,
    sink: Sink,
    *,
    prefix: str = DEFAULT_EXPORT_PREFIX,
    fmt: str = "png",
    quality: int = 92,
) -> ExportItem:
    ext, _pil_format = resolve_export_format(fmt)
    name = build_export_name(prefix, index, ext)
    frame = render_export_frame(image, analysis, session, index)
    data = encode_image(frame, fmt=ext, quality=quality)
    sink(name, data)
    LOGGER.info("exported %s (%d bytes)", name, len(data))
    return ExportItem(index=index, name=name, status="ok", size=len(data))


def export_all(
    image: Image.Image,
    analysis: AnalysisResult,
    session: Session,
    sink: Sink,
    *,
    prefix: str = DEFAULT_EXPORT_PREFIX,
    fmt: str = "png",
    quality: int = 92,
    delay: float = DEFAULT_EXPORT_DELAY_S,
    indices: Iterable[int] | None = None,
    on_progress: ExportProgressCallback | None = None,
) -> ExportReport:
    """Export every patch in order. Failures are collected, not raised."""
    ext, _pil_format = resolve_export_format(fmt)
    selected = list(indices) if indices is not None else list(range(len(analysis.patches)))
    report = ExportReport()
    total = len(selected)
    for position, index in enumerate(selected):
        if position > 0 and delay > 0:
            time.sleep(delay)
        try:
            item = export_single(image, analysis, session, index, sink, prefix=prefix, fmt=ext, quality=quality)
        except Exception as exc:
            name = build_export_name(prefix, index, ext) if index >= 0 else f"#{index}"
            LOGGER.error("FAIL %s  %s", name, exc)
            item = ExportItem(index=index, name=name, status="failed", error=str(exc))
        report.items.append(item)
        if on_progress:
            on_progress(position, total, item.name)
    return report
