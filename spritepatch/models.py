from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(slots=True)
class Rect:
    """Normalized rectangle in [0, 1000] units, every field scaled by image width."""

    x: float
    y: float
    w: float
    h: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.w / 2.0, self.y + self.h / 2.0)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rect:
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            w=float(data["w"]),
            h=float(data["h"]),
        )


@dataclass(slots=True)
class PixelRect:
    """Raw pixel rectangle. Fractional values are kept until drawing."""

    x: float
    y: float
    w: float
    h: float

    @property
    def box(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.x + self.w, self.y + self.h)

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.w / 2.0, self.y + self.h / 2.0)


@dataclass(slots=True)
class GridConfig:
    origin_x: float = 200.0
    origin_y: float = 850.0
    spacing_x: float = 180.0
    spacing_y: float = 180.0
    patch_w: float = 180.0
    patch_h: float = 180.0
    cols: int = 4
    rows: int = 2

    @property
    def count(self) -> int:
        return max(0, self.cols) * max(0, self.rows)


@dataclass(slots=True)
class Calibration:
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0


@dataclass(frozen=True, slots=True)
class PatchOffset:
    dx: float = 0.0
    dy: float = 0.0


ZERO_OFFSET = PatchOffset()


@dataclass(slots=True)
class MasterSize:
    w: float = 100.0
    h: float = 100.0


@dataclass(slots=True)
class AnalysisResult:
    main_body: Rect
    main_face: Rect
    patches: list[Rect] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mainBody": self.main_body.to_dict(),
            "mainFace": self.main_face.to_dict(),
            "patches": [patch.to_dict() for patch in self.patches],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisResult:
        return cls(
            main_body=Rect.from_dict(data["mainBody"]),
            main_face=Rect.from_dict(data["mainFace"]),
            patches=[Rect.from_dict(item) for item in data.get("patches") or []],
        )


@dataclass(slots=True)
class AlignmentResult:
    dx: float
    dy: float
    score: float | None = None
    feasible: bool = True
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class Session:
    """Snapshot of the user-owned settings plus the aligned per-patch offsets.

    Never mutated in place: every change produces a new session so renderers
    always work from a consistent snapshot.
    """

    grid: GridConfig = field(default_factory=GridConfig)
    calibration: Calibration = field(default_factory=Calibration)
    offsets: tuple[PatchOffset, ...] = ()
    use_master_size: bool = True
    master_size: MasterSize = field(default_factory=MasterSize)
    enable_mask: bool = True
    overlay_opacity: float = 1.0

    def offset_for(self, index: int) -> PatchOffset:
        if 0 <= index < len(self.offsets):
            return self.offsets[index]
        return ZERO_OFFSET

    def with_offset(self, index: int, offset: PatchOffset) -> Session:
        if index < 0:
            raise ValueError(f"patch index must be >= 0, got {index}")
        offsets = list(self.offsets)
        if index >= len(offsets):
            offsets.extend([ZERO_OFFSET] * (index + 1 - len(offsets)))
        offsets[index] = offset
        return replace(self, offsets=tuple(offsets))

    def with_calibration(self, calibration: Calibration) -> Session:
        return replace(self, calibration=calibration)


@dataclass(slots=True)
class LayoutPreset:
    name: str
    grid: GridConfig
    master_size: MasterSize
    calibration: Calibration = field(default_factory=Calibration)
    anchor: Rect | None = None
