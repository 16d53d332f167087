"""
Vanishing-point consensus filter.

Lines that are vertical (or horizontal) in the real world converge toward one
vanishing point after projection. A pseudo-RANSAC samples pairs of lines,
takes their intersection as candidate vanishing point and scores how well
the remaining lines pass through it. The partition of the best-scoring
candidate replaces the lines' selection flags.

The inlier threshold epsilon tunes itself in a series of dry runs so that,
on average, a target percentage of lines would be eliminated. The final
elimination is lower than that target because the real runs pick the best
model, and its quality also rewards the number of lines it keeps.
"""

import logging
import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from autokeystone.services.correction_config import CorrectionConfig
from autokeystone.services.correction_model import Line, LineOrientation, LineSet
from autokeystone.services.geometry import cross_normalized, is_null

logger = logging.getLogger(__name__)

# each of the three quality terms contributes this share
_QUALITY_SHARE = 0.33


@dataclass(frozen=True)
class Frame:
    """Visible image area; vanishing points inside it are rejected."""

    xmin: float
    xmax: float
    ymin: float
    ymax: float

    def contains(self, v: np.ndarray) -> bool:
        if v[2] == 0.0:
            return False
        x = v[0] / v[2]
        y = v[1] / v[2]
        return self.xmin <= x <= self.xmax and self.ymin <= y <= self.ymax


@dataclass
class RansacResult:
    """Outcome of one consensus search.

    Attributes:
        inliers: Inlier flag per input index, in input order
        epsilon: Tuned inlier threshold
        quality: Quality of the winning model (0 if none was valid)
    """

    inliers: np.ndarray
    epsilon: float
    quality: float

    @property
    def eliminated(self) -> int:
        return int(np.count_nonzero(~self.inliers))


def quickperm(items: Sequence) -> Iterator[list]:
    """Yield all permutations of ``items``, each differing by a single swap."""
    a = list(items)
    n = len(a)
    p = list(range(n + 1))
    yield list(a)

    i = 1
    while i < n:
        p[i] -= 1
        j = p[i] if i % 2 == 1 else 0
        a[j], a[i] = a[i], a[j]
        yield list(a)
        i = 1
        while p[i] == 0:
            p[i] = i
            i += 1


def _evaluate(
    order: np.ndarray,
    coeffs: np.ndarray,
    weights: np.ndarray,
    total_weight: float,
    epsilon: float,
    frame: Frame,
) -> tuple[bool, float, np.ndarray]:
    """Score the model built from the first two lines of ``order``.

    Returns:
        Tuple of (valid, quality, inout) where ``inout`` is aligned to ``order``
    """
    n = len(order)
    inout = np.zeros(n, dtype=bool)

    v = cross_normalized(coeffs[order[0]], coeffs[order[1]])
    # identical lines, or a vantage point inside the frame that no correction could remove
    if is_null(v) or frame.contains(v):
        return False, 0.0, inout

    inout[:2] = True
    rest = order[2:]
    d = np.abs(coeffs[rest] @ v)
    inside = d < epsilon
    inout[2:] = inside

    w = weights[rest][inside] / total_weight
    q = (
        _QUALITY_SHARE / n
        + _QUALITY_SHARE * w
        + _QUALITY_SHARE * (1.0 - d[inside] / epsilon) * n * w
    )
    return True, float(np.sum(q)), inout


def ransac(
    lines: Sequence[Line],
    indices: Sequence[int],
    total_weight: float,
    frame: Frame,
    config: CorrectionConfig | None = None,
    rng: np.random.Generator | None = None,
) -> RansacResult:
    """Find the largest consistent subset of lines sharing one vanishing point.

    Args:
        lines: All lines; only ``indices`` are considered
        indices: Indices of the subset (one orientation)
        total_weight: Weight the per-line weights are normalized by
        frame: Visible image area
        config: Algorithm configuration
        rng: Random generator for sampling

    Returns:
        RansacResult with inlier flags aligned to ``indices``. Subsets below
        the minimum size are returned with every line kept.
    """
    config = config or CorrectionConfig()
    rng = rng if rng is not None else np.random.default_rng(config.seed)

    set_count = len(indices)
    if set_count < config.ransac_min_lines:
        return RansacResult(inliers=np.ones(set_count, dtype=bool), epsilon=0.0, quality=0.0)

    index_set = np.array(indices, dtype=np.intp)
    coeffs = np.array([line.coeffs for line in lines])
    weights = np.array([line.weight for line in lines])
    total_weight = total_weight if total_weight > 0.0 else float(np.sum(weights[index_set]))

    epsilon = 10.0 ** (-config.ransac_epsilon)
    epsilon_step = config.ransac_epsilon_step

    # self-tuning dry runs
    optiruns = config.ransac_optimization_steps * config.ransac_optimization_dry_runs
    lines_eliminated = 0
    valid_runs = 0
    for r in range(optiruns):
        rng.shuffle(index_set)
        valid, _, inout = _evaluate(index_set, coeffs, weights, total_weight, epsilon, frame)
        if valid:
            valid_runs += 1
            lines_eliminated += int(np.count_nonzero(~inout))

        if r % config.ransac_optimization_dry_runs == config.ransac_optimization_dry_runs - 1 and valid_runs > 0:
            ratio = 100.0 * lines_eliminated / (set_count * valid_runs)
            old_epsilon = epsilon
            if ratio < config.ransac_elimination_ratio:
                epsilon = 10.0 ** (math.log10(epsilon) - epsilon_step)
            elif ratio > config.ransac_elimination_ratio:
                epsilon = 10.0 ** (math.log10(epsilon) + epsilon_step)
            logger.debug(
                f"RANSAC self-tuning (run {r}): epsilon {old_epsilon:.3g} "
                f"(elimination ratio {ratio:.1f}%) -> {epsilon:.3g}"
            )
            epsilon_step /= 2.0
            lines_eliminated = 0
            valid_runs = 0

    # real runs: exhaustive on small sets, random sampling otherwise
    if set_count > config.ransac_hurdle:
        orders: Iterator = (rng.permutation(index_set) for _ in range(config.ransac_runs))
    else:
        orders = (np.asarray(order, dtype=np.intp) for order in quickperm(index_set))

    best_quality = 0.0
    best_order = index_set.copy()
    best_inout = np.zeros(set_count, dtype=bool)
    for order in orders:
        valid, quality, inout = _evaluate(order, coeffs, weights, total_weight, epsilon, frame)
        if valid and quality > best_quality:
            best_quality = quality
            best_order = order.copy()
            best_inout = inout

    # map the winning partition back to the caller's index order
    position = {int(idx): k for k, idx in enumerate(indices)}
    inliers = np.zeros(set_count, dtype=bool)
    for idx, keep in zip(best_order, best_inout):
        inliers[position[int(idx)]] = keep

    logger.debug(
        f"RANSAC kept {int(np.count_nonzero(inliers))} of {set_count} lines "
        f"(quality {best_quality:.5f}, epsilon {epsilon:.3g})"
    )
    return RansacResult(inliers=inliers, epsilon=epsilon, quality=best_quality)


def remove_outliers(
    line_set: LineSet,
    config: CorrectionConfig | None = None,
    rng: np.random.Generator | None = None,
) -> tuple[int, int]:
    """Deselect lines that do not share the dominant vanishing point.

    Runs the consensus search separately for vertical and horizontal lines
    and updates the set's counts.

    Args:
        line_set: Lines to filter (modified in place)
        config: Algorithm configuration
        rng: Random generator for sampling

    Returns:
        Number of eliminated (vertical, horizontal) lines
    """
    config = config or CorrectionConfig()
    rng = rng if rng is not None else np.random.default_rng(config.seed)

    frame = Frame(
        xmin=line_set.x_off,
        xmax=line_set.x_off + line_set.width,
        ymin=line_set.y_off,
        ymax=line_set.y_off + line_set.height,
    )

    eliminated = []
    for orientation, total_weight in (
        (LineOrientation.VERTICAL, line_set.vertical_weight),
        (LineOrientation.HORIZONTAL, line_set.horizontal_weight),
    ):
        indices = line_set.indices(orientation)
        result = ransac(line_set.lines, indices, total_weight, frame, config, rng)
        for idx, keep in zip(indices, result.inliers):
            line_set.lines[idx].selected = bool(keep)
        eliminated.append(result.eliminated)

    line_set.update_counts()
    logger.info(
        f"Outlier removal: {line_set.vertical_count} vertical and "
        f"{line_set.horizontal_count} horizontal lines remain "
        f"({eliminated[0]} + {eliminated[1]} eliminated)"
    )
    return eliminated[0], eliminated[1]
