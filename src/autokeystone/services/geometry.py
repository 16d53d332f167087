"""Homogeneous 2D geometry helpers.

Points and lines are 3-vectors. A point ``P`` lies on a line ``L`` iff
``P . L == 0``; the line through two points and the intersection of two lines
are both cross products. All helpers accept single vectors or ``(N, 3)``
stacks and operate on the last axis.
"""

import numpy as np

# a vector with all components below this is considered null
NULL_EPSILON = 1e-10


def _safe_scale(norm: np.ndarray) -> np.ndarray:
    """Reciprocal of ``norm`` with zeros mapped to 1 (leave null vectors untouched)."""
    norm = np.asarray(norm, dtype=np.float64)
    return np.where(norm > 0.0, 1.0 / np.where(norm > 0.0, norm, 1.0), 1.0)


def homogeneous(x: float, y: float) -> np.ndarray:
    """Homogeneous point ``(x, y, 1)``."""
    return np.array([x, y, 1.0], dtype=np.float64)


def normalize(v: np.ndarray) -> np.ndarray:
    """Scale so that ``x^2 + y^2 + z^2 = 1``."""
    v = np.asarray(v, dtype=np.float64)
    norm = np.sqrt(np.sum(v * v, axis=-1))
    return v * _safe_scale(norm)[..., np.newaxis]


def line_normalize(v: np.ndarray) -> np.ndarray:
    """Scale so that ``x^2 + y^2 = 1``, the natural normalization for lines.

    With this normalization ``|P . L|`` is the euclidean distance of a
    normalized point ``P`` to ``L``.
    """
    v = np.asarray(v, dtype=np.float64)
    norm = np.sqrt(v[..., 0] ** 2 + v[..., 1] ** 2)
    return v * _safe_scale(norm)[..., np.newaxis]


def cross_normalized(v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
    """Normalized cross product: the line through two points, or the
    intersection of two lines."""
    return normalize(np.cross(v1, v2))


def is_null(v: np.ndarray) -> bool | np.ndarray:
    """True where every component is (very close to) zero."""
    return np.all(np.abs(np.asarray(v)) < NULL_EPSILON, axis=-1)


def dehomogenize(points: np.ndarray) -> np.ndarray:
    """Divide by the third component and return ``(..., 2)`` euclidean points."""
    points = np.asarray(points, dtype=np.float64)
    return points[..., :2] / points[..., 2:3]


def apply_homography(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 3x3 matrix to homogeneous points (rows of ``points``)."""
    return np.asarray(points, dtype=np.float64) @ np.asarray(matrix, dtype=np.float64).T
