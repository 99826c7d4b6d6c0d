"""
SMARTCARE+ Physio Service - Geometry Utilities

Pure helpers shared by the feature extractor and the cones exercise engine.
All coordinates are normalized frame coordinates (0-1).
"""

import math
from typing import Optional, Sequence

import numpy as np

from .cones_types import NormalizedRect


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Euclidean distance between two points.

    Works for 2D or 3D points; a missing z is treated as 0.
    """
    pa = np.zeros(3)
    pb = np.zeros(3)
    pa[:len(a)] = a[:3]
    pb[:len(b)] = b[:3]
    return float(np.linalg.norm(pa - pb))


def angle_deg(
    p1: Sequence[float],
    vertex: Sequence[float],
    p2: Sequence[float],
    signed: bool = False
) -> float:
    """
    Angle at `vertex` formed by p1-vertex-p2, in the image (x, y) plane.

    Args:
        p1, vertex, p2: points as (x, y[, z]); z is ignored
        signed: if True, return the signed angle in (-180, 180]
                (positive = counter-clockwise from p1 to p2)

    Returns:
        Angle in degrees, 0-180 unless `signed` is set. Degenerate
        inputs (zero-length arms) return 0.
    """
    v1 = np.array([p1[0] - vertex[0], p1[1] - vertex[1]])
    v2 = np.array([p2[0] - vertex[0], p2[1] - vertex[1]])

    dot = float(np.dot(v1, v2))
    cross = float(v1[0] * v2[1] - v1[1] * v2[0])
    if dot == 0.0 and cross == 0.0:
        return 0.0

    if signed:
        return math.degrees(math.atan2(cross, dot))
    return math.degrees(math.atan2(abs(cross), dot))


def angle_3d(a: Sequence[float], b: Sequence[float], c: Sequence[float]) -> float:
    """
    Calculate angle at point b formed by points a-b-c using all three axes.

    Returns:
        Angle in degrees (0-180)
    """
    ba = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
    bc = np.asarray(c, dtype=float) - np.asarray(b, dtype=float)

    cosine_angle = np.dot(ba, bc) / (np.linalg.norm(ba) * np.linalg.norm(bc) + 1e-8)
    cosine_angle = np.clip(cosine_angle, -1.0, 1.0)
    return float(np.degrees(np.arccos(cosine_angle)))


def heading_deg(origin: Sequence[float], target: Sequence[float]) -> float:
    """Direction of the vector origin -> target, degrees in (-180, 180]."""
    return math.degrees(math.atan2(target[1] - origin[1], target[0] - origin[0]))


def point_in_rect(x: float, y: float, rect: Optional[NormalizedRect]) -> bool:
    """
    Inclusive point-in-rectangle test.

    Corners are min/max normalized first because a zone being dragged
    in the UI can temporarily have inverted corners.
    """
    if rect is None:
        return False
    x1, y1, x2, y2 = rect.normalized().as_tuple()
    return x1 <= x <= x2 and y1 <= y <= y2
