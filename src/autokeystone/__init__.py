"""
AutoKeystone - automatic perspective correction

Detects near-straight edges that should be vertical or horizontal in the
real world, fits a projective keystone correction that makes them so and
computes the largest crop inside the corrected image.
"""

__version__ = "1.0.0"
__license__ = "GPL-3.0"

from autokeystone.services.correction_config import CorrectionConfig
from autokeystone.services.correction_model import (
    CropBox,
    CropMode,
    Enhance,
    FitAxis,
    FitStatus,
    LensMode,
    ModelParameters,
)
from autokeystone.services.perspective_correction import (
    CorrectionResult,
    CorrectionSession,
    ErrorCode,
    PerspectiveCorrector,
)

__all__ = [
    "CorrectionConfig",
    "CorrectionResult",
    "CorrectionSession",
    "CropBox",
    "CropMode",
    "Enhance",
    "ErrorCode",
    "FitAxis",
    "FitStatus",
    "LensMode",
    "ModelParameters",
    "PerspectiveCorrector",
]
