"""
Automatic Cropping

Finds the largest rectangle that fits inside the corrected image.

For a candidate rectangle center and aspect angle ``alpha`` (the angle of
the rectangle's diagonal) the two diagonals through the center are
intersected with the four image edges. The closest intersection bounds the
half diagonal ``d`` and therefore the area ``A = 2 d^2 sin(2 alpha)``. A
simplex then searches for the center (and optionally the angle) with the
largest area.

The center is expressed in input-image fractions, so it always lies inside
the photograph whatever the correction does to the image outline.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from autokeystone.constants import CROP_DIAGONAL_PROBE_PX, MIN_CROP_AREA_FRACTION
from autokeystone.services.correction_config import CorrectionConfig
from autokeystone.services.correction_model import CropBox, CropMode, ModelParameters
from autokeystone.services.geometry import apply_homography, cross_normalized, dehomogenize, is_null
from autokeystone.services.homography import build_homography
from autokeystone.services.simplex import simplex
from autokeystone.utils.exceptions import CropFitFailureError

logger = logging.getLogger(__name__)

_HALF_PI = 0.5 * math.pi


@dataclass
class CropGeometry:
    """Outline of the corrected image.

    Attributes:
        matrix: Forward homography
        width, height: Input image size
        edges: ``(4, 3)`` homogeneous lines along the corrected image outline
        out_width, out_height: Size of the corrected image's bounding box
    """

    matrix: np.ndarray
    width: float
    height: float
    edges: np.ndarray
    out_width: float
    out_height: float

    @classmethod
    def from_params(cls, params: ModelParameters, width: float, height: float) -> "CropGeometry":
        matrix = build_homography(params, width, height)
        wd = float(width)
        ht = float(height)
        corners = np.array([[0.0, 0.0, 1.0], [0.0, ht, 1.0], [wd, ht, 1.0], [wd, 0.0, 1.0]])
        v = dehomogenize(apply_homography(matrix, corners))
        vh = np.column_stack([v, np.ones(4)])
        edges = cross_normalized(vh, np.roll(vh, -1, axis=0))
        xmin, ymin = v.min(axis=0)
        xmax, ymax = v.max(axis=0)
        return cls(
            matrix=matrix,
            width=wd,
            height=ht,
            edges=edges,
            out_width=float(xmax - xmin),
            out_height=float(ymax - ymin),
        )

    def to_output(self, x: float, y: float) -> np.ndarray:
        """Map an input-image fraction to output coordinates."""
        p = apply_homography(self.matrix, np.array([x * self.width, y * self.height, 1.0]))
        return p[:2] / p[2]

    def half_diagonal_sq(self, center: np.ndarray, alpha: float) -> float:
        """Squared half diagonal of the largest rectangle around ``center`` with angle ``alpha``."""
        p = np.array([center[0], center[1], 1.0])
        dx = CROP_DIAGONAL_PROBE_PX * math.cos(alpha)
        dy = CROP_DIAGONAL_PROBE_PX * math.sin(alpha)
        aux = np.array([[p[0] + dx, p[1] + dy, 1.0], [p[0] + dx, p[1] - dy, 1.0]])
        diagonals = cross_normalized(p, aux)

        # every edge against every diagonal
        points = cross_normalized(np.repeat(self.edges, 2, axis=0), np.tile(diagonals, (4, 1)))

        # a null intersection means the center lies on an edge
        if np.any(is_null(points)):
            return 0.0

        finite = points[:, 2] != 0.0
        if not np.any(finite):
            return 0.0
        xy = points[finite, :2] / points[finite, 2:3]
        d2 = np.sum((xy - p[:2]) ** 2, axis=1)
        return float(np.min(d2))

    def area(self, center: np.ndarray, alpha: float) -> float:
        return 2.0 * self.half_diagonal_sq(center, alpha) * math.sin(2.0 * alpha)

    def margins(self, center: np.ndarray, d: float, alpha: float) -> CropBox:
        """Crop margins of a rectangle, clamped to the output bounding box."""
        def clamp(value: float) -> float:
            return float(min(max(value, 0.0), 1.0))

        return CropBox(
            cl=clamp((center[0] - d * math.cos(alpha)) / self.out_width),
            cr=clamp((center[0] + d * math.cos(alpha)) / self.out_width),
            ct=clamp((center[1] - d * math.sin(alpha)) / self.out_height),
            cb=clamp((center[1] + d * math.sin(alpha)) / self.out_height),
        )


def _reflect(value: float, upper: float) -> float:
    value = abs(value)
    if value > upper:
        value = 2.0 * upper - value
    return min(max(value, 0.0), upper)


def crop_constraint(x: np.ndarray) -> np.ndarray:
    """Reflect excursions back into ``[0, 1] x [0, 1] x [0, pi/2]``."""
    x = np.array(x, dtype=np.float64)
    for k in range(min(len(x), 2)):
        x[k] = _reflect(x[k], 1.0)
    if len(x) > 2:
        x[2] = _reflect(x[2], _HALF_PI)
    return x


def fit_crop(
    params: ModelParameters,
    width: int,
    height: int,
    config: CorrectionConfig | None = None,
) -> CropBox:
    """Find the largest crop box for the current correction.

    LARGEST fits the rectangle center and its aspect angle; ASPECT keeps the
    angle of the original image.

    Args:
        params: Correction parameters; ``crop_mode`` selects the variant
        width: Input image width
        height: Input image height
        config: Algorithm configuration

    Returns:
        The fitted CropBox

    Raises:
        CropFitFailureError: If the fit does not converge or yields no area
    """
    config = config or CorrectionConfig()

    if params.crop_mode is CropMode.OFF:
        return CropBox.full_frame()

    geometry = CropGeometry.from_params(params, width, height)
    aspect_alpha = math.atan2(float(height), float(width))

    if params.crop_mode is CropMode.LARGEST:
        x0 = np.array([0.5, 0.5, aspect_alpha])

        def unpack(x: np.ndarray) -> tuple[float, float, float]:
            return x[0], x[1], x[2]

    else:
        x0 = np.array([0.5, 0.5])

        def unpack(x: np.ndarray) -> tuple[float, float, float]:
            return x[0], x[1], aspect_alpha

    def fitness(x: np.ndarray) -> float:
        cx, cy, alpha = unpack(x)
        return -geometry.area(geometry.to_output(cx, cy), alpha)

    result = simplex(fitness, x0, config.crop_epsilon, config.crop_scale, config.crop_iterations, crop_constraint)
    if not result.converged:
        raise CropFitFailureError(f"no convergence after {result.nit} iterations")

    cx, cy, alpha = unpack(result.x)
    center = geometry.to_output(cx, cy)
    area = abs(geometry.area(center, alpha))
    if area == 0.0:
        raise CropFitFailureError("zero area")

    d = math.sqrt(area / (2.0 * math.sin(2.0 * alpha)))
    box = geometry.margins(center, d, alpha)
    if box.cr - box.cl <= 0.0 or box.cb - box.ct <= 0.0:
        raise CropFitFailureError("degenerate margins")

    logger.debug(
        f"Margins after crop fitting: iter {result.nit}, x {cx:.4f}, y {cy:.4f}, angle {alpha:.4f}, "
        f"crop area ({box.cl:.4f} {box.cr:.4f} {box.ct:.4f} {box.cb:.4f})"
    )
    return box


def adjust_crop(
    params: ModelParameters,
    width: int,
    height: int,
    x: float,
    y: float,
    min_fraction: float = MIN_CROP_AREA_FRACTION,
) -> CropBox | None:
    """Largest box of the original aspect centered at an output-image fraction.

    Args:
        params: Correction parameters
        width: Input image width
        height: Input image height
        x: Horizontal center as a fraction of the corrected image width
        y: Vertical center as a fraction of the corrected image height
        min_fraction: Smallest accepted box area relative to the image area

    Returns:
        The new CropBox, or None if the box would cover less than
        ``min_fraction`` of the image area
    """
    geometry = CropGeometry.from_params(params, width, height)
    alpha = math.atan2(float(height), float(width))
    center = np.array([x * geometry.out_width, y * geometry.out_height])

    d = math.sqrt(geometry.half_diagonal_sq(center, alpha))
    area = 2.0 * d * d * math.sin(2.0 * alpha)
    if area < min_fraction * float(width) * float(height):
        logger.debug(f"Crop adjustment ignored: area {area:.1f} below {min_fraction:.0%} of the image")
        return None

    return geometry.margins(center, d, alpha)
