"""
Affine transform pipeline.
Maps a pixel-space quadrilateral into display space (aspect-fill scale,
quarter-turn rotation, recentering) and onto captured photo sizes.

Transforms use the row-vector convention: [x', y', 1] = [x, y, 1] @ M.
"""
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .geometry import CoordinateSpace, Point, Quadrilateral, Rect, Size


@dataclass(frozen=True)
class AffineTransform:
    matrix: np.ndarray

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls(np.eye(3))

    @classmethod
    def scale(cls, sx: float, sy: float) -> "AffineTransform":
        return cls(np.array([[sx, 0.0, 0.0],
                             [0.0, sy, 0.0],
                             [0.0, 0.0, 1.0]]))

    @classmethod
    def rotation(cls, angle: float) -> "AffineTransform":
        """Rotation by `angle` radians (counter-clockwise in a y-up frame)."""
        c, s = math.cos(angle), math.sin(angle)
        return cls(np.array([[c, s, 0.0],
                             [-s, c, 0.0],
                             [0.0, 0.0, 1.0]]))

    @classmethod
    def translation(cls, tx: float, ty: float) -> "AffineTransform":
        return cls(np.array([[1.0, 0.0, 0.0],
                             [0.0, 1.0, 0.0],
                             [tx, ty, 1.0]]))

    def concat(self, other: "AffineTransform") -> "AffineTransform":
        """Transform applying self first, then other."""
        return AffineTransform(self.matrix @ other.matrix)

    def apply_point(self, point: Point) -> Point:
        x, y, _ = np.array([point[0], point[1], 1.0]) @ self.matrix
        return (float(x), float(y))

    def apply_size(self, size: Size) -> Size:
        """Apply the linear part to a size, as a vector."""
        m = self.matrix
        return Size(float(m[0, 0] * size.width + m[1, 0] * size.height),
                    float(m[0, 1] * size.width + m[1, 1] * size.height))

    def apply_rect(self, rect: Rect) -> Rect:
        """Bounding box of the transformed rect corners."""
        corners = [(rect.x, rect.y), (rect.x + rect.width, rect.y),
                   (rect.x + rect.width, rect.y + rect.height), (rect.x, rect.y + rect.height)]
        pts = [self.apply_point(p) for p in corners]
        xs = [p[0] for p in pts]
        ys = [p[1] for p in pts]
        return Rect(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


def aspect_fill_scale(size: Size, bounds: Size) -> AffineTransform:
    """Uniform scale that makes `size` cover `bounds`."""
    factor = max(bounds.width / size.width, bounds.height / size.height)
    return AffineTransform.scale(factor, factor)


def center_translation(from_rect: Rect, to_rect: Rect) -> AffineTransform:
    (fx, fy), (tx, ty) = from_rect.center, to_rect.center
    return AffineTransform.translation(tx - fx, ty - fy)


def apply_transforms(quad: Quadrilateral, transforms: Sequence[AffineTransform],
                     space: Optional[CoordinateSpace] = None) -> Quadrilateral:
    """Apply each transform in order to every corner."""
    combined = AffineTransform.identity()
    for transform in transforms:
        combined = combined.concat(transform)
    return quad.map_points(combined.apply_point, space)


def display_transforms(frame_size: Size, view_size: Size) -> List[AffineTransform]:
    """
    Scale, rotation and translation mapping frame pixels onto the view.

    Args:
        frame_size: Sensor frame size (landscape, as delivered by the camera)
        view_size: Presentation view size
    """
    scale = aspect_fill_scale(frame_size.portrait(), view_size)
    scaled_size = scale.apply_size(frame_size)

    rotation = AffineTransform.rotation(math.pi / 2.0)
    image_bounds = rotation.apply_rect(Rect(0.0, 0.0, scaled_size.width, scaled_size.height))

    translation = center_translation(image_bounds, Rect(0.0, 0.0, view_size.width, view_size.height))
    return [scale, rotation, translation]


def compose_display_transform(quad: Quadrilateral, frame_size: Size, view_size: Size) -> Quadrilateral:
    """Map a pixel-space quadrilateral into display space."""
    return apply_transforms(quad, display_transforms(frame_size, view_size), CoordinateSpace.DISPLAY)


def scale_to_image(quad: Quadrilateral, from_size: Size, to_size: Size,
                   rotation_angle: float = 0.0) -> Quadrilateral:
    """
    Map a quadrilateral detected in a frame of `from_size` onto an image of
    `to_size`, optionally rotated by `rotation_angle` radians.
    """
    rotated = rotation_angle != 0.0
    inverted_from = from_size
    if rotated and rotation_angle != math.pi:
        inverted_from = Size(from_size.height, from_size.width)

    width = inverted_from.width or np.finfo(float).tiny
    factor = to_size.width / width
    scale = AffineTransform.scale(factor, factor)
    result = quad.scaled(factor, factor, CoordinateSpace.PIXEL)

    if rotated:
        rotation = AffineTransform.rotation(rotation_angle)
        from_bounds = scale.concat(rotation).apply_rect(Rect(0.0, 0.0, from_size.width, from_size.height))
        translation = center_translation(from_bounds, Rect(0.0, 0.0, to_size.width, to_size.height))
        result = apply_transforms(result, [rotation, translation], CoordinateSpace.PIXEL)
    return result
