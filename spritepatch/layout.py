from __future__ import annotations

from spritepatch.models import GridConfig, Rect


def grid_position(index: int, cols: int) -> tuple[int, int]:
    """Map a patch index in grid order to its (row, col)."""
    if cols <= 0:
        raise ValueError(f"grid must have at least one column, got {cols}")
    if index < 0:
        raise ValueError(f"patch index must be >= 0, got {index}")
    return (index // cols, index % cols)


def grid_center(grid: GridConfig, row: int, col: int) -> tuple[float, float]:
    return (grid.origin_x + col * grid.spacing_x, grid.origin_y + row * grid.spacing_y)


def generate_grid_patches(grid: GridConfig) -> list[Rect]:
    """Row-major patch rects. Stored patch offsets are indexed by this order."""
    patches: list[Rect] = []
    if grid.count == 0:
        return patches
    half_w = grid.patch_w / 2.0
    half_h = grid.patch_h / 2.0
    for row in range(grid.rows):
        for col in range(grid.cols):
            center_x, center_y = grid_center(grid, row, col)
            patches.append(Rect(x=center_x - half_w, y=center_y - half_h, w=grid.patch_w, h=grid.patch_h))
    return patches
