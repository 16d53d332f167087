"""
Parameter Fit

Fits rotation, lens shift and shear so that the selected lines become
exactly vertical or horizontal after correction.

Each free parameter lives in a bounded range and is optimized in logit
space, so the unconstrained simplex can roam freely while every evaluated
value stays inside its range.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from autokeystone.constants import FITNESS_SCALE
from autokeystone.services.correction_config import CorrectionConfig
from autokeystone.services.correction_model import (
    FitAxis,
    FitStatus,
    LineOrientation,
    LineSet,
    ModelParameters,
)
from autokeystone.services.geometry import apply_homography, line_normalize
from autokeystone.services.homography import area_growth, build_homography
from autokeystone.services.simplex import ilogit, logit, simplex
from autokeystone.utils.exceptions import InsaneResultError, InsufficientDataError, NonConvergenceError

logger = logging.getLogger(__name__)

# fitted parameters in the order they appear in the simplex vector
_FIT_ORDER = (
    (FitAxis.ROTATION, "rotation", "rotation_range"),
    (FitAxis.LENS_VERT, "lensshift_v", "lensshift_v_range"),
    (FitAxis.LENS_HOR, "lensshift_h", "lensshift_h_range"),
    (FitAxis.SHEAR, "shear", "shear_range"),
)


@dataclass
class FitResult:
    """Outcome of a parameter fit.

    Attributes:
        status: Result code
        params: Fitted parameters on success, otherwise an unchanged copy of the input
        iterations: Simplex iterations performed
        fitness: Final fitness value (NaN if no fit was run)
        growth: Area growth factor of the fitted warp (NaN if not checked)
        short_direction: Line direction that had too few lines ("vertical", "horizontal")
        available: Number of selected lines in that direction
    """

    status: FitStatus
    params: ModelParameters
    iterations: int = 0
    fitness: float = math.nan
    growth: float = math.nan
    short_direction: str | None = None
    available: int | None = None

    @property
    def success(self) -> bool:
        return self.status is FitStatus.SUCCESS

    def raise_for_status(self, config: CorrectionConfig | None = None) -> None:
        """Raise the exception corresponding to a non-success status."""
        config = config or CorrectionConfig()
        if self.status is FitStatus.NOT_ENOUGH_LINES:
            raise InsufficientDataError(self.short_direction, config.minimum_fitlines, self.available)
        if self.status is FitStatus.DID_NOT_CONVERGE:
            raise NonConvergenceError(self.iterations)
        if self.status is FitStatus.INSANE:
            raise InsaneResultError(self.growth, config.max_area_growth)


def effective_axis(axis: FitAxis, flipped: bool) -> FitAxis:
    """Swap fit directions for images stored rotated by 90 degrees.

    Only applies when exactly one lens shift direction is requested.
    """
    lens = axis & FitAxis.LENS_BOTH
    if lens not in (FitAxis.NONE, FitAxis.LENS_BOTH):
        if flipped:
            axis ^= FitAxis.FLIP
        if not axis & FitAxis.LINES_BOTH:
            axis |= FitAxis.LINES_BOTH
    return axis


def line_mask(line_set: LineSet, axis: FitAxis) -> np.ndarray:
    """Lines taking part in a fit along ``axis``."""
    use_vertical = bool(axis & FitAxis.LINES_VERT)
    use_horizontal = bool(axis & FitAxis.LINES_HOR)
    return np.array(
        [
            line.relevant
            and line.selected
            and (
                (use_vertical and line.orientation is LineOrientation.VERTICAL)
                or (use_horizontal and line.orientation is LineOrientation.HORIZONTAL)
            )
            for line in line_set.lines
        ],
        dtype=bool,
    )


class _FitnessModel:
    """Vectorized fitness of a fixed set of lines under a candidate warp."""

    def __init__(self, line_set: LineSet, params: ModelParameters, mask: np.ndarray, free: list[tuple[str, str]]):
        lines = [line for line, keep in zip(line_set.lines, mask) if keep]
        self.params = params
        self.width = line_set.width
        self.height = line_set.height
        self.free = free
        self.p1 = np.array([line.p1 for line in lines]).reshape(-1, 3)
        self.p2 = np.array([line.p2 for line in lines]).reshape(-1, 3)
        self.weights = np.array([line.weight for line in lines])
        self.vertical = np.array([line.is_vertical for line in lines], dtype=bool)

    def overrides(self, x: np.ndarray) -> dict[str, float]:
        return {
            name: ilogit(float(value), -getattr(self.params, range_name), getattr(self.params, range_name))
            for (name, range_name), value in zip(self.free, x)
        }

    def evaluate(self, **overrides) -> float:
        if len(self.weights) == 0:
            return 0.0

        matrix = build_homography(self.params, self.width, self.height, **overrides)
        lines = line_normalize(np.cross(apply_homography(matrix, self.p1), apply_homography(matrix, self.p2)))

        # a vertical line has no y component, a horizontal one no x component
        s = np.where(self.vertical, lines[:, 1], lines[:, 0])
        sq = s * s * self.weights

        count = len(self.weights)
        count_v = int(np.count_nonzero(self.vertical))
        count_h = count - count_v
        weight_v = float(np.sum(self.weights[self.vertical]))
        weight_h = float(np.sum(self.weights[~self.vertical]))

        v = float(np.sum(sq[self.vertical])) / weight_v * count_v / count if weight_v > 0.0 else 0.0
        h = float(np.sum(sq[~self.vertical])) / weight_h * count_h / count if weight_h > 0.0 else 0.0
        return math.sqrt(max(0.0, 1.0 - (1.0 - v) * (1.0 - h))) * FITNESS_SCALE

    def __call__(self, x: np.ndarray) -> float:
        return self.evaluate(**self.overrides(x))


def _prepare(
    line_set: LineSet, params: ModelParameters, axis: FitAxis, flipped: bool
) -> tuple[FitAxis, list[tuple[str, str]], _FitnessModel]:
    axis = effective_axis(axis, flipped)
    free = [(name, range_name) for flag, name, range_name in _FIT_ORDER if axis & flag]
    return axis, free, _FitnessModel(line_set, params, line_mask(line_set, axis), free)


def model_probe(
    line_set: LineSet, params: ModelParameters, axis: FitAxis = FitAxis.BOTH, flipped: bool = False
) -> float:
    """Fitness of the current parameters, for diagnostics."""
    _, _, model = _prepare(line_set, params, axis, flipped)
    fitness = model.evaluate()
    logger.debug(
        f"Model fitness {fitness:.8f} (rotation {params.rotation:.4f}, lensshift_v {params.lensshift_v:.4f}, "
        f"lensshift_h {params.lensshift_h:.4f}, shear {params.shear:.4f})"
    )
    return fitness


def fit_parameters(
    line_set: LineSet | None,
    params: ModelParameters,
    axis: FitAxis,
    config: CorrectionConfig | None = None,
    flipped: bool = False,
) -> FitResult:
    """Fit the parameters selected by ``axis`` to the selected lines.

    The caller's ``params`` is never modified; on success the fitted values
    are returned in a new object.

    Args:
        line_set: Classified (and usually outlier-filtered) lines
        params: Starting parameters; unfitted values are held constant
        axis: Parameters to fit and line directions to fit them on
        config: Algorithm configuration
        flipped: Image is stored rotated by 90 degrees

    Returns:
        FitResult with the result code and parameters
    """
    config = config or CorrectionConfig()
    unchanged = params.copy()

    if line_set is None or len(line_set) == 0:
        return FitResult(FitStatus.NOT_ENOUGH_LINES, unchanged, available=0)
    if axis == FitAxis.NONE:
        return FitResult(FitStatus.SUCCESS, unchanged)

    axis, free, model = _prepare(line_set, params, axis, flipped)

    counts = []
    if axis & FitAxis.LINES_VERT:
        counts.append(("vertical", line_set.vertical_count))
    if axis & FitAxis.LINES_HOR:
        counts.append(("horizontal", line_set.horizontal_count))
    for direction, count in counts:
        if count < config.minimum_fitlines:
            logger.info(
                f"Fit not possible: {count} {direction} lines selected, {config.minimum_fitlines} required"
            )
            return FitResult(FitStatus.NOT_ENOUGH_LINES, unchanged, short_direction=direction, available=count)

    x0 = np.array(
        [
            logit(getattr(params, name), -getattr(params, range_name), getattr(params, range_name))
            for name, range_name in free
        ]
    )
    result = simplex(model, x0, config.nms_epsilon, config.nms_scale, config.nms_iterations)

    if not result.converged:
        logger.info(f"Fit did not converge after {result.nit} iterations")
        return FitResult(FitStatus.DID_NOT_CONVERGE, unchanged, iterations=result.nit, fitness=result.fun)

    fitted = params.copy(**model.overrides(result.x))
    logger.debug(
        f"Parameters after {result.nit} iterations: rotation {fitted.rotation:.4f}, "
        f"lensshift_v {fitted.lensshift_v:.4f}, lensshift_h {fitted.lensshift_h:.4f}, shear {fitted.shear:.4f}"
    )

    growth = area_growth(fitted, line_set.width, line_set.height)
    if growth > config.max_area_growth:
        logger.info(f"Fit rejected: area growth factor {growth:.2f} exceeds {config.max_area_growth:.2f}")
        return FitResult(
            FitStatus.INSANE, unchanged, iterations=result.nit, fitness=result.fun, growth=growth
        )

    return FitResult(FitStatus.SUCCESS, fitted, iterations=result.nit, fitness=result.fun, growth=growth)
