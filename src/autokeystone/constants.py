"""
AutoKeystone - Numeric Constants

Simple numeric constants with ZERO internal imports to avoid circular dependencies.
For application-level constants (logging, names), use config.py.
"""

from typing import Final

# ============================================================================
# Parameter Ranges
# ============================================================================

ROTATION_RANGE: Final[float] = 10.0  # default min/max range for rotation (degrees)
LENSSHIFT_RANGE: Final[float] = 1.0
SHEAR_RANGE: Final[float] = 0.2

# ============================================================================
# Lens Model
# ============================================================================

DEFAULT_F_LENGTH: Final[float] = 28.0  # focal length assumed without EXIF data (mm)
DEFAULT_CROP_FACTOR: Final[float] = 1.0
DEFAULT_ORTHOCORR: Final[float] = 100.0
NEUTRAL_EPSILON: Final[float] = 1.0e-4  # values lower than this have no visible effect

# ============================================================================
# Line Classification
# ============================================================================

MIN_LINE_LENGTH: Final[float] = 5.0  # pixels
MAX_TANGENTIAL_DEVIATION: Final[float] = 30.0  # degrees off +/-90 or 0/180
BORDER_TOLERANCE_PX: Final[float] = 2.0

# ============================================================================
# Line Detection (LSD)
# ============================================================================

LSD_SCALE: Final[float] = 0.99
LSD_SIGMA_SCALE: Final[float] = 0.6
LSD_QUANT: Final[float] = 2.0
LSD_ANG_TH: Final[float] = 22.5
LSD_LOG_EPS: Final[float] = 0.0
LSD_DENSITY_TH: Final[float] = 0.7
LSD_N_BINS: Final[int] = 1024
LSD_GAMMA: Final[float] = 0.45  # applied to linear (raw) input before detection

# ============================================================================
# RANSAC
# ============================================================================

RANSAC_RUNS: Final[int] = 400
RANSAC_EPSILON: Final[float] = 2.0  # starting epsilon in -log10 units
RANSAC_EPSILON_STEP: Final[float] = 1.0  # log10 units
RANSAC_ELIMINATION_RATIO: Final[float] = 60.0  # percent
RANSAC_OPTIMIZATION_STEPS: Final[int] = 5
RANSAC_OPTIMIZATION_DRY_RUNS: Final[int] = 50
RANSAC_HURDLE: Final[int] = 5  # set sizes up to this are permuted exhaustively
RANSAC_MIN_LINES: Final[int] = 3

# ============================================================================
# Nelder-Mead Simplex
# ============================================================================

MINIMUM_FITLINES: Final[int] = 4
NMS_EPSILON: Final[float] = 1.0e-3
NMS_SCALE: Final[float] = 1.0
NMS_ITERATIONS: Final[int] = 400
NMS_CROP_EPSILON: Final[float] = 100.0
NMS_CROP_SCALE: Final[float] = 0.5
NMS_CROP_ITERATIONS: Final[int] = 100
FITNESS_SCALE: Final[float] = 1.0e6

# ============================================================================
# Sanity Checks
# ============================================================================

MAX_AREA_GROWTH: Final[float] = 4.0
MIN_CROP_AREA_FRACTION: Final[float] = 0.01
CROP_DIAGONAL_PROBE_PX: Final[float] = 10.0

# ============================================================================
# Persistence
# ============================================================================

PARAMS_VERSION: Final[int] = 4
