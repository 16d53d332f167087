"""
Parametric Keystone Homography

Builds the 3x3 projective transform that maps input-image coordinates to
corrected-image coordinates from rotation, lens shift, shear and aspect.

The transform is a product of elementary steps. Vertical lens shift is
modeled directly; horizontal lens shift reuses the same warp on swapped
axes. Each step left-multiplies the accumulated matrix:

1. swap x and y
2. rotate around the image center
3. shear
4. vertical lens-shift warp
5. horizontal compression (lens dependence)
6. swap x and y back
7. horizontal lens-shift warp
8. vertical compression (lens dependence)
9. aspect scaling
10. translate so that no image corner lands at negative coordinates
"""

import logging
import math

import numpy as np

from autokeystone.constants import NEUTRAL_EPSILON
from autokeystone.services.correction_model import CropBox, HomographyDirection, ModelParameters
from autokeystone.services.geometry import apply_homography, dehomogenize

logger = logging.getLogger(__name__)

# lens shift angle is clamped to this (radians)
_MAX_SHIFT_ANGLE = 1.5
# lower bound for the lens dependent compression factor
_MIN_COMPRESSION = 0.1

_SWAP = np.array([[0.0, 1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])


def _compression(f_length_kb: float, exppa: float, long_side: float, short_side: float, fac: float) -> float:
    """Compression factor that counteracts the stretching of a lens shift."""
    fdb = f_length_kb / (14.4 + (long_side / short_side - 1.0) * 7.2)
    rad = fdb * (exppa - 1.0) / (exppa + 1.0)
    alpha = min(max(math.atan(rad), -_MAX_SHIFT_ANGLE), _MAX_SHIFT_ANGLE)
    rt = math.sin(0.5 * alpha)
    return max(_MIN_COMPRESSION, 2.0 * (fac - 1.0) * rt * rt + 1.0)


def _lens_warp(exppa: float, u: float, v: float) -> np.ndarray:
    """Projective warp of a lens shift along the (swapped) first axis."""
    return np.array(
        [
            [exppa, 0.0, 0.0],
            [0.5 * ((exppa - 1.0) * u) / v, 2.0 * exppa / (exppa + 1.0), -0.5 * ((exppa - 1.0) * u) / (exppa + 1.0)],
            [(exppa - 1.0) / v, 0.0, 1.0],
        ]
    )


def corner_points(width: float, height: float) -> np.ndarray:
    """Homogeneous pixel-center corners ``(0|w-1, 0|h-1)`` of an image."""
    xs = (0.0, max(width - 1.0, 0.0))
    ys = (0.0, max(height - 1.0, 0.0))
    return np.array([[x, y, 1.0] for y in ys for x in xs])


def build_homography(
    params: ModelParameters,
    width: float,
    height: float,
    direction: HomographyDirection = HomographyDirection.FORWARD,
    *,
    rotation: float | None = None,
    lensshift_v: float | None = None,
    lensshift_h: float | None = None,
    shear: float | None = None,
) -> np.ndarray:
    """Build the keystone homography for an image of the given size.

    The keyword overrides replace the corresponding fields of ``params``
    without copying it; the optimizer evaluates many candidates this way.

    Args:
        params: Correction parameters (lens constants are taken in effective form)
        width: Image width in pixels
        height: Image height in pixels
        direction: FORWARD maps input to corrected coordinates, INVERTED the reverse

    Returns:
        3x3 float64 matrix. If the inverse is requested but the forward
        matrix is singular, the identity is returned.
    """
    rotation = params.rotation if rotation is None else rotation
    lensshift_v = params.lensshift_v if lensshift_v is None else lensshift_v
    lensshift_h = params.lensshift_h if lensshift_h is None else lensshift_h
    shear = params.shear if shear is None else shear

    u = float(width)
    v = float(height)
    f_length_kb = params.f_length_kb
    fac = 1.0 - params.effective_orthocorr / 100.0
    ascale = math.sqrt(params.effective_aspect)

    phi = math.radians(rotation)
    cosi = math.cos(phi)
    sini = math.sin(phi)

    exppa_v = math.exp(lensshift_v)
    exppa_h = math.exp(lensshift_h)
    r_v = _compression(f_length_kb, exppa_v, v, u, fac)
    r_h = _compression(f_length_kb, exppa_h, u, v, fac)

    rotate = np.array(
        [
            [cosi, -sini, -0.5 * v * cosi + 0.5 * u * sini + 0.5 * v],
            [sini, cosi, -0.5 * v * sini - 0.5 * u * cosi + 0.5 * u],
            [0.0, 0.0, 1.0],
        ]
    )
    shear_m = np.array([[1.0, shear, 0.0], [shear, 1.0, 0.0], [0.0, 0.0, 1.0]])
    compress_h = np.array([[1.0, 0.0, 0.0], [0.0, r_v, 0.5 * u * (1.0 - r_v)], [0.0, 0.0, 1.0]])
    compress_v = np.array([[1.0, 0.0, 0.0], [0.0, r_h, 0.5 * v * (1.0 - r_h)], [0.0, 0.0, 1.0]])
    aspect_m = np.diag([ascale, 1.0 / ascale, 1.0])

    steps = (
        _SWAP,
        rotate,
        shear_m,
        _lens_warp(exppa_v, u, v),
        compress_h,
        _SWAP,
        _lens_warp(exppa_h, v, u),
        compress_v,
        aspect_m,
    )

    matrix = np.eye(3)
    for step in steps:
        matrix = step @ matrix

    # shift so that all corners have positive coordinates
    corners = dehomogenize(apply_homography(matrix, corner_points(u, v)))
    umin, vmin = corners.min(axis=0)
    translate = np.array([[1.0, 0.0, -umin], [0.0, 1.0, -vmin], [0.0, 0.0, 1.0]])
    matrix = translate @ matrix

    if direction is HomographyDirection.FORWARD:
        return matrix

    try:
        inverse = np.linalg.inv(matrix)
    except np.linalg.LinAlgError:
        logger.debug("Singular homography, falling back to identity")
        return np.eye(3)
    if not np.all(np.isfinite(inverse)):
        logger.debug("Non-finite inverse homography, falling back to identity")
        return np.eye(3)
    return inverse


def is_neutral(params: ModelParameters, eps: float = NEUTRAL_EPSILON) -> bool:
    """True if the parameters have no visible effect on the image."""
    return (
        abs(params.rotation) < eps
        and abs(params.lensshift_v) < eps
        and abs(params.lensshift_h) < eps
        and abs(params.shear) < eps
        and abs(params.effective_aspect - 1.0) < eps
        and params.crop.is_full_frame(eps)
    )


def output_bounds(matrix: np.ndarray, width: float, height: float) -> tuple[float, float, float, float]:
    """Bounding box ``(xmin, xmax, ymin, ymax)`` of the transformed image corners."""
    corners = dehomogenize(apply_homography(matrix, corner_points(width, height)))
    xmin, ymin = corners.min(axis=0)
    xmax, ymax = corners.max(axis=0)
    return float(xmin), float(xmax), float(ymin), float(ymax)


def area_growth(params: ModelParameters, width: float, height: float, **overrides) -> float:
    """Ratio of the corrected bounding box area to the input image area."""
    matrix = build_homography(params, width, height, HomographyDirection.FORWARD, **overrides)
    xmin, xmax, ymin, ymax = output_bounds(matrix, width, height)
    return (xmax - xmin) * (ymax - ymin) / (float(width) * float(height))


def output_size(params: ModelParameters, width: int, height: int) -> tuple[int, int]:
    """Size of the corrected and cropped output image."""
    if is_neutral(params):
        return width, height

    matrix = build_homography(params, width, height)
    xmin, xmax, ymin, ymax = output_bounds(matrix, width, height)
    crop = params.crop
    out_w = int(math.floor((xmax - xmin + 1.0) * (crop.cr - crop.cl)))
    out_h = int(math.floor((ymax - ymin + 1.0) * (crop.cb - crop.ct)))
    return out_w, out_h


def _crop_offset(crop: CropBox, out_w: int, out_h: int) -> tuple[float, float]:
    full_w = out_w / (crop.cr - crop.cl)
    full_h = out_h / (crop.cb - crop.ct)
    return full_w * crop.cl, full_h * crop.ct


def transform_points(params: ModelParameters, width: int, height: int, points: np.ndarray) -> np.ndarray:
    """Map input-image points to cropped output coordinates.

    Args:
        params: Correction parameters including the crop box
        width: Input image width
        height: Input image height
        points: ``(N, 2)`` array of euclidean points

    Returns:
        ``(N, 2)`` array of output points
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if is_neutral(params):
        return points.copy()

    matrix = build_homography(params, width, height, HomographyDirection.FORWARD)
    cx, cy = _crop_offset(params.crop, *output_size(params, width, height))
    hom = np.column_stack([points, np.ones(len(points))])
    out = dehomogenize(apply_homography(matrix, hom))
    return out - np.array([cx, cy])


def backtransform_points(params: ModelParameters, width: int, height: int, points: np.ndarray) -> np.ndarray:
    """Map cropped output points back to input-image coordinates.

    Inverse of :func:`transform_points`.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if is_neutral(params):
        return points.copy()

    matrix = build_homography(params, width, height, HomographyDirection.INVERTED)
    cx, cy = _crop_offset(params.crop, *output_size(params, width, height))
    shifted = points + np.array([cx, cy])
    hom = np.column_stack([shifted, np.ones(len(shifted))])
    return dehomogenize(apply_homography(matrix, hom))
