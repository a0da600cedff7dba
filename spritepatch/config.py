from __future__ import annotations

import copy
import math
import os
import platform
from pathlib import Path
from typing import Any

import yaml

from spritepatch.constants import DEFAULT_DETECTOR_MODEL, DEFAULT_EXPORT_DELAY_S, DEFAULT_EXPORT_PREFIX
from spritepatch.errors import ConfigurationError
from spritepatch.models import Calibration, GridConfig, MasterSize, Rect, Session

DEFAULT_CONFIG: dict[str, Any] = {
    "grid": {
        "origin_x": 200.0,
        "origin_y": 850.0,
        "spacing_x": 180.0,
        "spacing_y": 180.0,
        "patch_w": 180.0,
        "patch_h": 180.0,
        "cols": 4,
        "rows": 2,
    },
    "calibration": {"offset_x": 0.0, "offset_y": 0.0, "scale": 1.0},
    "use_master_size": True,
    "master_size": {"w": 100.0, "h": 100.0},
    "enable_mask": True,
    "overlay_opacity": 1.0,
    "anchor": None,
    "export": {
        "prefix": DEFAULT_EXPORT_PREFIX,
        "format": "png",
        "quality": 92,
        "delay": DEFAULT_EXPORT_DELAY_S,
    },
    "detector": {
        "backend": "heuristic",
        "model": DEFAULT_DETECTOR_MODEL,
        "api_key": None,
    },
    "log_level": "info",
}


def get_user_data_dir() -> Path:
    """Per-user writable data directory."""
    system_name = platform.system().lower()
    if system_name == "windows":
        base = (
            os.environ.get("APPDATA")
            or os.environ.get("LOCALAPPDATA")
            or str(Path.home() / "AppData" / "Roaming")
        )
        return Path(base) / "SpritePatch"
    if system_name == "darwin":
        return Path.home() / "Library" / "Application Support" / "SpritePatch"

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / "SpritePatch"
    return Path.home() / ".config" / "SpritePatch"


def get_config_path() -> Path:
    return get_user_data_dir() / "Config" / "config.yaml"


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    cfg_path = path or get_config_path()
    if not cfg_path.exists():
        return copy.deepcopy(DEFAULT_CONFIG)

    text = cfg_path.read_text(encoding="utf-8")
    try:
        loaded = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"config file is not valid YAML: {cfg_path}: {exc}") from exc
    if not isinstance(loaded, dict):
        loaded = {}
    return _deep_merge(DEFAULT_CONFIG, loaded)


def write_default_config(path: Path | None = None, force: bool = False) -> Path:
    cfg_path = path or get_config_path()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    if cfg_path.exists() and not force:
        return cfg_path
    cfg_path.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False, allow_unicode=True), encoding="utf-8")
    return cfg_path


def _number(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from exc
    if not math.isfinite(number):
        raise ConfigurationError(f"{key} must be finite, got {value!r}")
    return number


def normalize_grid_dict(data: dict[str, Any] | None) -> GridConfig:
    data = data or {}
    defaults = GridConfig()
    return GridConfig(
        origin_x=_number(data, "origin_x", defaults.origin_x),
        origin_y=_number(data, "origin_y", defaults.origin_y),
        spacing_x=_number(data, "spacing_x", defaults.spacing_x),
        spacing_y=_number(data, "spacing_y", defaults.spacing_y),
        patch_w=max(1.0, _number(data, "patch_w", defaults.patch_w)),
        patch_h=max(1.0, _number(data, "patch_h", defaults.patch_h)),
        cols=max(0, int(_number(data, "cols", defaults.cols))),
        rows=max(0, int(_number(data, "rows", defaults.rows))),
    )


def normalize_calibration_dict(data: dict[str, Any] | None) -> Calibration:
    data = data or {}
    scale = _number(data, "scale", 1.0)
    if scale <= 0:
        raise ConfigurationError(f"calibration scale must be > 0, got {scale}")
    return Calibration(
        offset_x=_number(data, "offset_x", 0.0),
        offset_y=_number(data, "offset_y", 0.0),
        scale=scale,
    )


def normalize_master_size_dict(data: dict[str, Any] | None) -> MasterSize:
    data = data or {}
    return MasterSize(
        w=max(1.0, _number(data, "w", 100.0)),
        h=max(1.0, _number(data, "h", 100.0)),
    )


def normalize_anchor_dict(data: dict[str, Any] | None) -> Rect | None:
    if not data:
        return None
    rect = Rect(
        x=max(0.0, _number(data, "x", 0.0)),
        y=max(0.0, _number(data, "y", 0.0)),
        w=_number(data, "w", 0.0),
        h=_number(data, "h", 0.0),
    )
    if rect.w <= 0 or rect.h <= 0:
        raise ConfigurationError(f"anchor must have a positive size, got {rect.w}x{rect.h}")
    return rect


def session_from_config(cfg: dict[str, Any]) -> Session:
    opacity = _number(cfg, "overlay_opacity", 1.0)
    return Session(
        grid=normalize_grid_dict(cfg.get("grid")),
        calibration=normalize_calibration_dict(cfg.get("calibration")),
        use_master_size=bool(cfg.get("use_master_size", True)),
        master_size=normalize_master_size_dict(cfg.get("master_size")),
        enable_mask=bool(cfg.get("enable_mask", True)),
        overlay_opacity=min(1.0, max(0.0, opacity)),
    )
