from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import typer

from spritepatch.align.batch import align_batch
from spritepatch.config import load_config, normalize_anchor_dict, session_from_config, write_default_config
from spritepatch.constants import DEFAULT_DETECTOR_MODEL
from spritepatch.decoders.image_decoder import decode_sheet
from spritepatch.detect.gemini import GeminiRegionDetector
from spritepatch.detect.heuristic import scan_sprite_sheet
from spritepatch.errors import DetectorParseError, SpritePatchError
from spritepatch.export import directory_sink, export_all, resolve_export_format
from spritepatch.geometry import anchor_sub_rect, clamp_rect, effective_patch
from spritepatch.layout import generate_grid_patches
from spritepatch.models import AlignmentResult, AnalysisResult, Rect, Session
from spritepatch.preset_loader import list_builtin_presets, load_preset
from spritepatch.render.composite import render_preview

app = typer.Typer(add_completion=False, no_args_is_help=True, help="Sprite sheet expression patch aligner.")
LOGGER = logging.getLogger("spritepatch")


@dataclass(slots=True)
class _Workspace:
    cfg: dict[str, Any]
    session: Session
    anchor: Rect | None


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _fail(message: str) -> typer.Exit:
    typer.secho(message, err=True, fg=typer.colors.RED)
    return typer.Exit(1)


def _load_workspace(config_path: Path | None, preset: str | None) -> _Workspace:
    cfg = load_config(config_path)
    session = session_from_config(cfg)
    anchor = normalize_anchor_dict(cfg.get("anchor"))
    if preset:
        try:
            layout = load_preset(preset)
        except (FileNotFoundError, ValueError) as exc:
            raise _fail(f"Preset load failed: {exc}")
        session = replace(
            session,
            grid=layout.grid,
            master_size=layout.master_size,
            calibration=layout.calibration,
        )
        anchor = layout.anchor or anchor
        LOGGER.info("Preset: %s", layout.name)
    return _Workspace(cfg=cfg, session=session, anchor=anchor)


def _load_analysis(path: Path) -> AnalysisResult:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        analysis = AnalysisResult.from_dict(data)
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise DetectorParseError(f"analysis file is invalid: {path}: {exc}") from exc
    return AnalysisResult(
        main_body=clamp_rect(analysis.main_body),
        main_face=clamp_rect(analysis.main_face),
        patches=[clamp_rect(patch) for patch in analysis.patches],
    )


def _resolve_analysis(image, analysis_path: Path | None, session: Session, use_grid: bool) -> AnalysisResult:
    analysis = _load_analysis(analysis_path) if analysis_path else scan_sprite_sheet(image)
    if use_grid or not analysis.patches:
        analysis.patches = generate_grid_patches(session.grid)
    return analysis


@app.command()
def scan(
    image_path: Path = typer.Argument(..., exists=True, resolve_path=True, dir_okay=False),
    detector: str | None = typer.Option(None, "--detector", help="heuristic|gemini"),
    out: Path | None = typer.Option(None, "--out", help="Write the analysis JSON here."),
    config_path: Path | None = typer.Option(None, "--config", help="Config file (default: user config)."),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Detect mainBody / mainFace / patch regions on a sprite sheet."""
    _setup_logging(log_level)
    try:
        cfg = load_config(config_path)
        detector_cfg = cfg.get("detector") or {}
        backend = (detector or str(detector_cfg.get("backend") or "heuristic")).lower()
        image = decode_sheet(image_path)
        if backend == "heuristic":
            analysis = scan_sprite_sheet(image)
        elif backend == "gemini":
            region_detector = GeminiRegionDetector(
                api_key=detector_cfg.get("api_key"),
                model=str(detector_cfg.get("model") or DEFAULT_DETECTOR_MODEL),
            )
            analysis = region_detector.detect(image)
        else:
            raise _fail(f"unknown detector: {backend!r}")
    except SpritePatchError as exc:
        raise _fail(f"Scan failed: {exc}")

    payload = json.dumps(analysis.to_dict(), ensure_ascii=False, indent=2)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload, encoding="utf-8")
        LOGGER.info("analysis written to %s", out)
    else:
        typer.echo(payload)


@app.command()
def grid(
    preset: str | None = typer.Option(None, "--preset", help="Built-in preset name or preset file."),
    config_path: Path | None = typer.Option(None, "--config"),
) -> None:
    """Print the grid patch rects in export order."""
    try:
        workspace = _load_workspace(config_path, preset)
    except SpritePatchError as exc:
        raise _fail(str(exc))
    patches = generate_grid_patches(workspace.session.grid)
    typer.echo(json.dumps([patch.to_dict() for patch in patches], indent=2))


@app.command("presets")
def presets() -> None:
    for name in list_builtin_presets():
        typer.echo(name)


@app.command()
def preview(
    image_path: Path = typer.Argument(..., exists=True, resolve_path=True, dir_okay=False),
    index: int = typer.Option(0, "--index", min=0, help="Zero-based patch index."),
    out: Path = typer.Option(Path("preview.png"), "--out"),
    analysis_path: Path | None = typer.Option(None, "--analysis", exists=True, dir_okay=False),
    preset: str | None = typer.Option(None, "--preset"),
    use_grid: bool = typer.Option(False, "--use-grid/--no-use-grid", help="Replace detected patches with the grid."),
    opacity: float | None = typer.Option(None, "--opacity", min=0.0, max=1.0),
    config_path: Path | None = typer.Option(None, "--config"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Render one patch over the anchor region on the full sheet."""
    _setup_logging(log_level)
    try:
        workspace = _load_workspace(config_path, preset)
        image = decode_sheet(image_path)
        analysis = _resolve_analysis(image, analysis_path, workspace.session, use_grid)
    except SpritePatchError as exc:
        raise _fail(f"Preview failed: {exc}")
    if index >= len(analysis.patches):
        raise _fail(f"patch index {index} out of range, sheet has {len(analysis.patches)} patches")

    session = workspace.session
    patch = effective_patch(analysis.patches[index], session.use_master_size, session.master_size)
    rendered = render_preview(
        image,
        patch,
        analysis.main_face,
        session.calibration,
        session.offset_for(index),
        opacity=session.overlay_opacity if opacity is None else opacity,
    )
    out.parent.mkdir(parents=True, exist_ok=True)
    rendered.save(out, format="PNG")
    typer.echo(f"Preview written: {out}")


@app.command()
def export(
    image_path: Path = typer.Argument(..., exists=True, resolve_path=True, dir_okay=False),
    out: Path | None = typer.Option(None, "--out", help="Output directory."),
    analysis_path: Path | None = typer.Option(None, "--analysis", exists=True, dir_okay=False),
    preset: str | None = typer.Option(None, "--preset"),
    use_grid: bool = typer.Option(False, "--use-grid/--no-use-grid", help="Replace detected patches with the grid."),
    align: bool = typer.Option(True, "--align/--no-align", help="Run template alignment before export."),
    mask: bool | None = typer.Option(None, "--mask/--no-mask", help="Erase the face region before overlaying."),
    prefix: str | None = typer.Option(
        None,
        "--prefix",
        help="File name prefix. Whitespace and characters invalid in file names become '_'.",
    ),
    output_format: str | None = typer.Option(None, "--format", help="png|jpg|webp"),
    quality: int | None = typer.Option(None, "--quality", min=1, max=100),
    delay: float | None = typer.Option(None, "--delay", min=0.0, help="Pause between files, seconds."),
    config_path: Path | None = typer.Option(None, "--config"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Align every patch and export one image per patch."""
    _setup_logging(log_level)
    try:
        workspace = _load_workspace(config_path, preset)
        image = decode_sheet(image_path)
        analysis = _resolve_analysis(image, analysis_path, workspace.session, use_grid)
    except SpritePatchError as exc:
        raise _fail(f"Export failed: {exc}")

    export_cfg = workspace.cfg.get("export") or {}
    try:
        ext, _pil_format = resolve_export_format(output_format or str(export_cfg.get("format", "png")))
    except ValueError as exc:
        raise _fail(str(exc))

    session = workspace.session
    if mask is not None:
        session = replace(session, enable_mask=mask)

    if align and analysis.patches:
        first = effective_patch(analysis.patches[0], session.use_master_size, session.master_size)
        anchor_px = anchor_sub_rect(workspace.anchor, first, image.width)

        def _log_progress(index: int, total: int, result: AlignmentResult) -> None:
            if result.feasible:
                LOGGER.info("ALIGN %d/%d  dx=%.1f dy=%.1f score=%.2f", index + 1, total, result.dx, result.dy, result.score)
            else:
                LOGGER.warning("ALIGN %d/%d  skipped: %s", index + 1, total, result.reason)

        session = align_batch(image, session, analysis.patches, analysis.main_face, anchor_px, on_progress=_log_progress)

    out_dir = out or (image_path.parent / "output")
    report = export_all(
        image,
        analysis,
        session,
        directory_sink(out_dir),
        prefix=prefix or str(export_cfg.get("prefix") or image_path.stem),
        fmt=ext,
        quality=int(quality if quality is not None else export_cfg.get("quality", 92)),
        delay=float(delay if delay is not None else export_cfg.get("delay", 0.0)),
    )
    failed = report.failed
    typer.echo(f"Done. success={report.ok_count} failed={len(failed)} -> {out_dir}")
    if failed:
        typer.secho("Failures:", fg=typer.colors.RED)
        for item in failed:
            typer.secho(f"  {item.name}: {item.error}", fg=typer.colors.RED)
        raise typer.Exit(1)


@app.command("init-config")
def init_config(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config file."),
) -> None:
    path = write_default_config(force=force)
    typer.echo(f"Config initialized: {path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
