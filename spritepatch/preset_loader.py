from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from spritepatch.config import (
    normalize_anchor_dict,
    normalize_calibration_dict,
    normalize_grid_dict,
    normalize_master_size_dict,
)
from spritepatch.errors import ConfigurationError
from spritepatch.models import LayoutPreset


def list_builtin_presets() -> list[str]:
    files = resources.files("spritepatch.presets")
    names = []
    for item in files.iterdir():
        if item.name.endswith((".yaml", ".yml", ".json")):
            names.append(Path(item.name).stem)
    return sorted(set(names))


def _parse_text(text: str, suffix: str, source: str) -> Any:
    try:
        if suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"preset could not be parsed: {source}: {exc}") from exc


def _load_file(path: Path) -> dict[str, Any]:
    data = _parse_text(path.read_text(encoding="utf-8"), path.suffix.lower(), str(path))
    if not isinstance(data, dict):
        raise ValueError(f"preset file is not a dict: {path}")
    return data


def _load_builtin(name: str) -> dict[str, Any]:
    pkg = resources.files("spritepatch.presets")
    for suffix in (".yaml", ".yml", ".json"):
        candidate = pkg / f"{name}{suffix}"
        if candidate.is_file():
            data = _parse_text(candidate.read_text(encoding="utf-8"), suffix, name)
            if isinstance(data, dict):
                return data
    raise FileNotFoundError(f"built-in preset not found: {name}")


def normalize_preset_dict(data: dict[str, Any]) -> LayoutPreset:
    grid = normalize_grid_dict(data.get("grid"))
    master = data.get("master_size") or {"w": grid.patch_w, "h": grid.patch_h}
    return LayoutPreset(
        name=str(data.get("name") or "custom"),
        grid=grid,
        master_size=normalize_master_size_dict(master),
        calibration=normalize_calibration_dict(data.get("calibration")),
        anchor=normalize_anchor_dict(data.get("anchor")),
    )


def load_preset(name_or_path: str) -> LayoutPreset:
    path = Path(name_or_path)
    if path.exists():
        raw = _load_file(path)
    else:
        raw = _load_builtin(name_or_path)
    return normalize_preset_dict(raw)
