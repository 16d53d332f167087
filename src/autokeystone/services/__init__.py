"""
AutoKeystone - Services Package

Correction model, line handling, fitting and cropping stages.
"""

from autokeystone.services.perspective_correction import CorrectionSession, PerspectiveCorrector

__all__ = ["CorrectionSession", "PerspectiveCorrector"]
