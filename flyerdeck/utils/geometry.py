"""
Bounding-box geometry for flyer region extraction.

Detectors report boxes as ``[y0, x0, y1, x1]`` in per-mille units (0-1000).
Everything here is pure: no image decoding and no I/O.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple

PER_MILLE = 1000.0


def clamp(value: float, minimum: float, maximum: float) -> float:
    return min(max(value, minimum), maximum)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box ``(y0, x0, y1, x1)`` in [0, 1000].

    Invalid geometry is rejected at construction; it is never clamped.
    """
    coordinates: Tuple[float, float, float, float]
    label: str = ""

    def __post_init__(self):
        if len(self.coordinates) != 4:
            raise ValueError(f"Bounding box needs 4 coordinates, got {len(self.coordinates)}")
        y0, x0, y1, x1 = self.coordinates
        for value in self.coordinates:
            if not 0 <= value <= PER_MILLE:
                raise ValueError(f"Coordinate {value} outside [0, 1000]")
        if not (y0 < y1 and x0 < x1):
            raise ValueError(f"Bounding box {list(self.coordinates)} is not ordered y0<y1, x0<x1")

    @property
    def area(self) -> float:
        y0, x0, y1, x1 = self.coordinates
        return (x1 - x0) * (y1 - y0)

    @classmethod
    def parse(cls, raw: Any) -> Optional["BoundingBox"]:
        """Build a box from a ``{"box_2d": [...], "label": ...}`` mapping, or None if invalid."""
        if not isinstance(raw, dict):
            return None
        coords = raw.get("box_2d")
        label = raw.get("label", "")
        if not isinstance(coords, (list, tuple)) or len(coords) != 4:
            return None
        if not all(isinstance(c, (int, float)) and not isinstance(c, bool) for c in coords):
            return None
        if not isinstance(label, str):
            return None
        try:
            return cls(coordinates=tuple(float(c) for c in coords), label=label)
        except ValueError:
            return None


@dataclass(frozen=True)
class NormalizedRegion:
    """Region in unit-square coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height


@dataclass(frozen=True)
class PixelRect:
    top: int
    left: int
    bottom: int
    right: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top


def to_absolute(coordinates: Sequence[float], image_width: int, image_height: int) -> PixelRect:
    """Scale per-mille ``[y0, x0, y1, x1]`` to pixels.

    Swapped endpoints are tolerated; results are clamped to the image.
    """
    y0, x0, y1, x1 = coordinates
    raw_y0 = (y0 / PER_MILLE) * image_height
    raw_x0 = (x0 / PER_MILLE) * image_width
    raw_y1 = (y1 / PER_MILLE) * image_height
    raw_x1 = (x1 / PER_MILLE) * image_width

    return PixelRect(
        top=int(clamp(round(min(raw_y0, raw_y1)), 0, image_height)),
        left=int(clamp(round(min(raw_x0, raw_x1)), 0, image_width)),
        bottom=int(clamp(round(max(raw_y0, raw_y1)), 0, image_height)),
        right=int(clamp(round(max(raw_x0, raw_x1)), 0, image_width)),
    )


def to_normalized_region(box: BoundingBox) -> NormalizedRegion:
    y0, x0, y1, x1 = box.coordinates
    return NormalizedRegion(
        x=x0 / PER_MILLE,
        y=y0 / PER_MILLE,
        width=(x1 - x0) / PER_MILLE,
        height=(y1 - y0) / PER_MILLE,
    )


def pad(region: NormalizedRegion, padding: float) -> NormalizedRegion:
    """Grow a region by ``padding`` on each side without leaving the unit square."""
    x = max(0.0, region.x - padding)
    y = max(0.0, region.y - padding)
    return NormalizedRegion(
        x=x,
        y=y,
        width=min(1.0 - x, region.width + 2 * padding),
        height=min(1.0 - y, region.height + 2 * padding),
    )


def region_to_pixels(region: NormalizedRegion, image_width: int, image_height: int) -> PixelRect:
    coords = (
        region.y * PER_MILLE,
        region.x * PER_MILLE,
        region.bottom * PER_MILLE,
        region.right * PER_MILLE,
    )
    return to_absolute(coords, image_width, image_height)


def crop_extent(rect: PixelRect) -> Tuple[int, int, int, int]:
    """``(left, top, width, height)`` with zero extents promoted to one pixel."""
    return rect.left, rect.top, max(1, rect.width), max(1, rect.height)


def select_best_box(boxes: Iterable[BoundingBox]) -> Optional[BoundingBox]:
    """Largest box by per-mille area; the first one wins ties."""
    best: Optional[BoundingBox] = None
    for box in boxes:
        if best is None or box.area > best.area:
            best = box
    return best
