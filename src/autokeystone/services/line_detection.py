"""Line detection front end.

Preprocessing of the detection buffer (greyscale conversion, gamma, optional
edge and detail enhancement) and an adapter around OpenCV's Line Segment
Detector. Detectors are pluggable through :class:`LineDetector`.
"""

import hashlib
import logging
from abc import ABC, abstractmethod

import cv2
import numpy as np

from autokeystone.constants import (
    LSD_ANG_TH,
    LSD_DENSITY_TH,
    LSD_GAMMA,
    LSD_LOG_EPS,
    LSD_N_BINS,
    LSD_QUANT,
    LSD_SCALE,
    LSD_SIGMA_SCALE,
)
from autokeystone.services.correction_model import Enhance, RawSegment

logger = logging.getLogger(__name__)

# luminance weights of the greyscale conversion
_GREY_WEIGHTS = np.array([0.3, 0.59, 0.11])
_GREY_SCALE = 256.0

# detail enhancement: range sigma in Lab L units, spatial sigma relative to the short side
_DETAIL_SIGMA_R = 5.0
_DETAIL_SIGMA_S_FRACTION = 0.02
_DETAIL_AMOUNT = 1.0


def buffer_hash(image: np.ndarray) -> str:
    """Content hash of a detection buffer, used to detect stale line sets."""
    data = np.ascontiguousarray(image)
    hasher = hashlib.sha256()
    hasher.update(str((data.shape, data.dtype.str)).encode())
    hasher.update(data.tobytes())
    return hasher.hexdigest()


def to_float_rgb(image: np.ndarray) -> np.ndarray:
    """Convert an RGB(A) or grey buffer to float32 RGB in [0, 1]."""
    img = np.asarray(image)
    if img.dtype == np.uint8:
        img = img.astype(np.float32) / 255.0
    elif img.dtype == np.uint16:
        img = img.astype(np.float32) / 65535.0
    else:
        img = img.astype(np.float32)

    if img.ndim == 2:
        img = np.repeat(img[:, :, np.newaxis], 3, axis=2)
    elif img.shape[2] == 4:
        img = img[:, :, :3]
    elif img.shape[2] != 3:
        raise ValueError(f"Unsupported channel count: {img.shape[2]}")
    return np.ascontiguousarray(img)


def gamma_correct(rgb: np.ndarray, gamma: float = LSD_GAMMA) -> np.ndarray:
    """Lift linear (raw) data so that edges in dark regions become detectable."""
    return np.power(np.clip(rgb, 0.0, None), gamma).astype(np.float32)


def rgb_to_grey256(rgb: np.ndarray) -> np.ndarray:
    """Greyscale in [0, 256) as expected by the line detector."""
    return (rgb[:, :, :3].astype(np.float64) @ _GREY_WEIGHTS) * _GREY_SCALE


def edge_enhance(grey: np.ndarray) -> np.ndarray:
    """Sobel gradient magnitude; mirrored borders avoid pseudo lines at the frame."""
    gx = cv2.Sobel(grey, cv2.CV_64F, 1, 0, ksize=3, borderType=cv2.BORDER_REFLECT_101)
    gy = cv2.Sobel(grey, cv2.CV_64F, 0, 1, ksize=3, borderType=cv2.BORDER_REFLECT_101)
    return np.sqrt(gx * gx + gy * gy)


def detail_enhance(rgb: np.ndarray) -> np.ndarray:
    """Boost local contrast of the lightness channel with an edge-preserving filter.

    Args:
        rgb: Float32 RGB image in [0, 1]

    Returns:
        Float32 RGB image of the same shape
    """
    h, w = rgb.shape[:2]
    sigma_s = max(1.0, min(w, h) * _DETAIL_SIGMA_S_FRACTION)

    lab = cv2.cvtColor(np.clip(rgb, 0.0, 1.0).astype(np.float32), cv2.COLOR_RGB2Lab)
    lightness = np.ascontiguousarray(lab[:, :, 0])
    base = cv2.bilateralFilter(lightness, -1, _DETAIL_SIGMA_R, sigma_s)
    lab[:, :, 0] = np.clip(lightness + _DETAIL_AMOUNT * (lightness - base), 0.0, 100.0)
    return cv2.cvtColor(lab, cv2.COLOR_Lab2RGB)


def preprocess(
    image: np.ndarray,
    enhance: Enhance = Enhance.NONE,
    is_raw: bool = False,
    gamma: float = LSD_GAMMA,
) -> np.ndarray:
    """Prepare a detection buffer for the line detector.

    Args:
        image: RGB(A) buffer (float in [0, 1], uint8 or uint16)
        enhance: Optional enhancement steps
        is_raw: Apply gamma to linear raw data
        gamma: Gamma used for raw data

    Returns:
        Float64 greyscale image in [0, 256)
    """
    rgb = to_float_rgb(image)

    if is_raw:
        rgb = gamma_correct(rgb, gamma)

    if Enhance.DETAIL in enhance:
        rgb = detail_enhance(rgb)

    grey = rgb_to_grey256(rgb)

    if Enhance.EDGES in enhance:
        grey = edge_enhance(grey)

    return grey


class LineDetector(ABC):
    """Source of raw line segments for a greyscale buffer."""

    @abstractmethod
    def detect(self, grey: np.ndarray) -> list[RawSegment]:
        """Detect segments in a greyscale image in [0, 256).

        Args:
            grey: 2D float array

        Returns:
            Segments in buffer pixel coordinates
        """


class LsdLineDetector(LineDetector):
    """Line Segment Detector (von Gioi et al.) via OpenCV.

    OpenCV's detector works on 8-bit input, so the greyscale buffer is
    clipped and quantized first. Edge-enhanced buffers are rescaled to the
    full 8-bit range.
    """

    def __init__(
        self,
        scale: float = LSD_SCALE,
        sigma_scale: float = LSD_SIGMA_SCALE,
        quant: float = LSD_QUANT,
        ang_th: float = LSD_ANG_TH,
        log_eps: float = LSD_LOG_EPS,
        density_th: float = LSD_DENSITY_TH,
        n_bins: int = LSD_N_BINS,
    ):
        self._lsd = cv2.createLineSegmentDetector(
            cv2.LSD_REFINE_STD, scale, sigma_scale, quant, ang_th, log_eps, density_th, n_bins
        )

    @staticmethod
    def _to_uint8(grey: np.ndarray) -> np.ndarray:
        grey = np.asarray(grey, dtype=np.float64)
        peak = float(grey.max()) if grey.size else 0.0
        if peak > _GREY_SCALE:
            grey = grey * (255.0 / peak)
        return np.clip(grey, 0.0, 255.0).astype(np.uint8)

    def detect(self, grey: np.ndarray) -> list[RawSegment]:
        lines, widths, precisions, _ = self._lsd.detect(self._to_uint8(grey))
        if lines is None:
            logger.debug("LSD detected no lines")
            return []

        lines = lines.reshape(-1, 4)
        widths = np.ones(len(lines)) if widths is None else widths.reshape(-1)
        precisions = np.ones(len(lines)) if precisions is None else precisions.reshape(-1)

        segments = [
            RawSegment(
                x1=float(x1),
                y1=float(y1),
                x2=float(x2),
                y2=float(y2),
                width=float(w),
                precision=float(p),
            )
            for (x1, y1, x2, y2), w, p in zip(lines, widths, precisions)
        ]
        logger.debug(f"LSD detected {len(segments)} lines")
        return segments
