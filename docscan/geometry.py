"""
Geometry utilities for detected quadrilaterals.
Points, sizes, rectangles and the immutable Quadrilateral passed between
the detector, the quality scorer and the display transform.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

Point = Tuple[float, float]


class CoordinateSpace(Enum):
    """Space a quadrilateral's points are expressed in."""
    DETECTOR = "detector"   # detector pixels, origin bottom-left
    PIXEL = "pixel"         # frame pixels
    DISPLAY = "display"     # presentation view points


@dataclass(frozen=True)
class Size:
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    def portrait(self) -> "Size":
        """Same size with the short side as width."""
        return Size(min(self.width, self.height), max(self.width, self.height))

    def as_tuple(self) -> Tuple[float, float]:
        return (self.width, self.height)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)


@dataclass(frozen=True)
class Quadrilateral:
    """
    Four ordered corners: top-left, top-right, bottom-right, bottom-left.
    Never mutated; every transform returns a new instance.
    """
    top_left: Point
    top_right: Point
    bottom_right: Point
    bottom_left: Point
    space: CoordinateSpace = CoordinateSpace.PIXEL

    @classmethod
    def from_points(cls, points: Sequence[Point], space: CoordinateSpace = CoordinateSpace.PIXEL) -> "Quadrilateral":
        if len(points) != 4:
            raise ValueError(f"A quadrilateral needs 4 points, got {len(points)}")
        tl, tr, br, bl = [(float(x), float(y)) for x, y in points]
        return cls(tl, tr, br, bl, space)

    @property
    def points(self) -> List[Point]:
        return [self.top_left, self.top_right, self.bottom_right, self.bottom_left]

    @property
    def perimeter(self) -> float:
        pts = self.points
        return sum(math.dist(pts[i], pts[(i + 1) % 4]) for i in range(4))

    def map_points(self, func, space: Optional[CoordinateSpace] = None) -> "Quadrilateral":
        """Apply `func(point) -> point` to every corner."""
        return Quadrilateral.from_points([func(p) for p in self.points], space or self.space)

    def scaled(self, sx: float, sy: float, space: Optional[CoordinateSpace] = None) -> "Quadrilateral":
        return self.map_points(lambda p: (p[0] * sx, p[1] * sy), space)

    def to_cartesian(self, height: float) -> "Quadrilateral":
        """Flip the y axis of a bottom-left origin quadrilateral inside a frame of `height`."""
        return self.map_points(lambda p: (p[0], height - p[1]), CoordinateSpace.PIXEL)

    def as_array(self) -> np.ndarray:
        return np.array(self.points, dtype=np.float64)

    def to_dict(self):
        return {
            'space': self.space.value,
            'points': [[round(x, 2), round(y, 2)] for x, y in self.points],
        }


def bounding_box(quad: Quadrilateral) -> Rect:
    """Axis-aligned bounding box of the four corners."""
    xs = [p[0] for p in quad.points]
    ys = [p[1] for p in quad.points]
    return Rect(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


def interior_angle(p1: Point, vertex: Point, p2: Point) -> float:
    """
    Angle in degrees [0, 180] between the edges vertex->p1 and vertex->p2.
    The sign of the turn is discarded.
    """
    v1 = (p1[0] - vertex[0], p1[1] - vertex[1])
    v2 = (p2[0] - vertex[0], p2[1] - vertex[1])
    dot = v1[0] * v2[0] + v1[1] * v2[1]
    det = v1[0] * v2[1] - v1[1] * v2[0]
    return abs(math.degrees(math.atan2(det, dot)))


def interior_angles(quad: Quadrilateral) -> List[float]:
    """Angle at each corner, starting with the top-right corner."""
    pts = quad.points
    return [interior_angle(pts[i], pts[(i + 1) % 4], pts[(i + 2) % 4]) for i in range(4)]


def biggest(quads: Iterable[Quadrilateral]) -> Optional[Quadrilateral]:
    """Quadrilateral with the largest perimeter, or None for an empty input."""
    return max(quads, key=lambda q: q.perimeter, default=None)


def order_corners(points) -> np.ndarray:
    """
    Order corners: top-left, top-right, bottom-right, bottom-left.
    """
    c = np.asarray(points, dtype='float64').reshape(4, 2)

    # Sort by y-coordinate
    c = c[c[:, 1].argsort()]

    # Top two and bottom two
    top = c[:2][c[:2, 0].argsort()]
    bottom = c[2:][c[2:, 0].argsort()]

    return np.array([top[0], top[1], bottom[1], bottom[0]], dtype='float64')
