import json
from pathlib import Path

import pytest

from spritepatch.errors import ConfigurationError
from spritepatch.layout import generate_grid_patches
from spritepatch.models import Rect
from spritepatch.preset_loader import list_builtin_presets, load_preset, normalize_preset_dict


def test_builtin_presets_are_listed() -> None:
    names = list_builtin_presets()
    assert "default" in names
    assert "single_row" in names


def test_default_preset_yields_four_by_two_grid() -> None:
    preset = load_preset("default")
    assert preset.name == "default"
    patches = generate_grid_patches(preset.grid)
    assert len(patches) == 8
    assert patches[5] == Rect(x=290, y=940, w=180, h=180)
    assert preset.anchor is None


def test_single_row_preset_carries_anchor() -> None:
    preset = load_preset("single_row")
    assert preset.grid.rows == 1
    assert preset.anchor == Rect(x=30, y=40, w=90, h=45)


def test_normalize_preset_dict_clamps_values() -> None:
    preset = normalize_preset_dict({"grid": {"patch_w": 0, "patch_h": 40, "cols": -1, "rows": 2}})
    assert preset.name == "custom"
    assert preset.grid.patch_w == 1.0
    assert preset.grid.cols == 0
    # Master size falls back to the grid patch size.
    assert (preset.master_size.w, preset.master_size.h) == (1.0, 40.0)
    assert preset.calibration.scale == 1.0


def test_load_preset_from_json_file(tmp_path: Path) -> None:
    path = tmp_path / "mine.json"
    path.write_text(json.dumps({"name": "mine", "grid": {"cols": 3, "rows": 3}}), encoding="utf-8")
    preset = load_preset(str(path))
    assert preset.name == "mine"
    assert len(generate_grid_patches(preset.grid)) == 9


def test_unknown_preset_raises() -> None:
    with pytest.raises(FileNotFoundError):
        load_preset("does-not-exist")


def test_malformed_preset_file_is_a_configuration_error(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("grid: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_preset(str(path))
