"""
Tunable algorithm configuration for the correction engine.
"""

from dataclasses import dataclass

from autokeystone.constants import (
    LSD_GAMMA,
    MAX_AREA_GROWTH,
    MIN_CROP_AREA_FRACTION,
    MINIMUM_FITLINES,
    NMS_CROP_EPSILON,
    NMS_CROP_ITERATIONS,
    NMS_CROP_SCALE,
    NMS_EPSILON,
    NMS_ITERATIONS,
    NMS_SCALE,
    RANSAC_ELIMINATION_RATIO,
    RANSAC_EPSILON,
    RANSAC_EPSILON_STEP,
    RANSAC_HURDLE,
    RANSAC_MIN_LINES,
    RANSAC_OPTIMIZATION_DRY_RUNS,
    RANSAC_OPTIMIZATION_STEPS,
    RANSAC_RUNS,
)


@dataclass
class CorrectionConfig:
    """Configuration for line filtering, parameter fitting and cropping.

    Attributes:
        ransac_runs: Number of real RANSAC runs on large line sets
        ransac_epsilon: Starting inlier threshold as ``-log10(epsilon)``
        ransac_epsilon_step: Initial step of the epsilon search (log10 units)
        ransac_elimination_ratio: Target percentage of eliminated lines
        ransac_optimization_steps: Number of epsilon tuning steps
        ransac_optimization_dry_runs: Dry runs per tuning step
        ransac_hurdle: Sets up to this size are permuted exhaustively
        ransac_min_lines: Smaller subsets are left untouched
        minimum_fitlines: Selected lines required per fitted direction
        nms_epsilon: Convergence threshold of the parameter fit
        nms_scale: Initial simplex size of the parameter fit
        nms_iterations: Iteration cap of the parameter fit
        crop_epsilon: Convergence threshold of the crop fit
        crop_scale: Initial simplex size of the crop fit
        crop_iterations: Iteration cap of the crop fit
        max_area_growth: Fits growing the image area beyond this factor are rejected
        min_crop_area_fraction: Manual crops below this fraction of the image area are ignored
        lsd_gamma: Gamma applied to linear input before line detection
        seed: Seed for the RANSAC random generator (None for entropy)
    """

    ransac_runs: int = RANSAC_RUNS
    ransac_epsilon: float = RANSAC_EPSILON
    ransac_epsilon_step: float = RANSAC_EPSILON_STEP
    ransac_elimination_ratio: float = RANSAC_ELIMINATION_RATIO
    ransac_optimization_steps: int = RANSAC_OPTIMIZATION_STEPS
    ransac_optimization_dry_runs: int = RANSAC_OPTIMIZATION_DRY_RUNS
    ransac_hurdle: int = RANSAC_HURDLE
    ransac_min_lines: int = RANSAC_MIN_LINES

    minimum_fitlines: int = MINIMUM_FITLINES
    nms_epsilon: float = NMS_EPSILON
    nms_scale: float = NMS_SCALE
    nms_iterations: int = NMS_ITERATIONS

    crop_epsilon: float = NMS_CROP_EPSILON
    crop_scale: float = NMS_CROP_SCALE
    crop_iterations: int = NMS_CROP_ITERATIONS

    max_area_growth: float = MAX_AREA_GROWTH
    min_crop_area_fraction: float = MIN_CROP_AREA_FRACTION
    lsd_gamma: float = LSD_GAMMA
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.ransac_min_lines < 2:
            raise ValueError("ransac_min_lines must be at least 2")
        if self.max_area_growth <= 0:
            raise ValueError("max_area_growth must be positive")
        if not 0 < self.ransac_elimination_ratio < 100:
            raise ValueError("ransac_elimination_ratio must be a percentage between 0 and 100")
