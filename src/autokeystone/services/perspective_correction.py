"""
Automatic Perspective Correction

Sequences the correction stages on a caller-owned session:

1. Structure: preprocess the detection buffer, detect line segments,
   classify them and remove outliers
2. Fit: fit rotation, lens shift and shear to the selected lines
3. Crop: find the largest crop box inside the corrected image

Each stage can be invoked on its own as long as its input exists. Line sets
are tied to the content hash of the buffer they were detected in and are
re-detected automatically once that buffer changes.

No stage raises to the caller. Every operation returns a CorrectionResult;
on failure the previous parameters and crop box are left untouched and a
single translated message describes the problem.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum, auto

import numpy as np

from autokeystone.services.correction_config import CorrectionConfig
from autokeystone.services.correction_model import (
    CropBox,
    CropMode,
    Enhance,
    FitAxis,
    FitStatus,
    LineSet,
    ModelParameters,
)
from autokeystone.services.crop_fit import adjust_crop, fit_crop
from autokeystone.services.line_classifier import classify_segments
from autokeystone.services.line_detection import LineDetector, LsdLineDetector, buffer_hash, preprocess
from autokeystone.services.outlier_filter import remove_outliers
from autokeystone.services.parameter_fit import fit_parameters
from autokeystone.utils.exceptions import (
    CropFitFailureError,
    DataPendingError,
    InsaneResultError,
    InsufficientDataError,
    KeystoneError,
    NonConvergenceError,
    StructureDetectionError,
)
from autokeystone.utils.i18n import _

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Error classification for correction operations."""

    NONE = auto()
    BUSY = auto()
    DATA_PENDING = auto()
    NO_STRUCTURE = auto()
    NOT_ENOUGH_LINES = auto()
    FIT_FAILED = auto()
    CROP_FAILED = auto()
    UNKNOWN = auto()


def _classify_error(e: Exception) -> ErrorCode:
    """Classify an exception into an ErrorCode."""
    if isinstance(e, DataPendingError):
        return ErrorCode.DATA_PENDING
    if isinstance(e, StructureDetectionError):
        return ErrorCode.NO_STRUCTURE
    if isinstance(e, InsufficientDataError):
        return ErrorCode.NOT_ENOUGH_LINES
    if isinstance(e, (NonConvergenceError, InsaneResultError)):
        return ErrorCode.FIT_FAILED
    if isinstance(e, CropFitFailureError):
        return ErrorCode.CROP_FAILED
    return ErrorCode.UNKNOWN


def _friendly_error(e: Exception) -> str:
    """Map engine exceptions to the message shown to the user."""
    if isinstance(e, DataPendingError):
        return _("data pending - please repeat")
    if isinstance(e, StructureDetectionError):
        return _("could not detect structural data in image")
    if isinstance(e, InsufficientDataError):
        return _("not enough structure for automatic correction")
    if isinstance(e, (NonConvergenceError, InsaneResultError)):
        return _("automatic correction failed, please correct manually")
    if isinstance(e, CropFitFailureError):
        return _("automatic cropping failed")
    return str(e)


def _fail(e: Exception, status: FitStatus | None = None) -> "CorrectionResult":
    """Create a failed CorrectionResult from an exception."""
    return CorrectionResult(
        success=False,
        message=_friendly_error(e),
        error_code=_classify_error(e),
        status=status,
    )


def is_flipped(in_vec: tuple[float, float], out_vec: tuple[float, float]) -> bool:
    """True if the final image is turned by roughly 90 degrees against the buffer.

    Args:
        in_vec: Image diagonal in buffer orientation
        out_vec: The same diagonal after all later orientation changes
    """
    in_len = math.hypot(*in_vec)
    out_len = math.hypot(*out_vec)
    if in_len == 0.0 or out_len == 0.0:
        return False
    cos_alpha = (in_vec[0] * out_vec[0] + in_vec[1] * out_vec[1]) / (in_len * out_len)
    alpha = math.acos(min(max(cos_alpha, -1.0), 1.0))
    return abs(math.fmod(alpha + math.pi, math.pi) - math.pi / 2.0) < math.pi / 4.0


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class CorrectionResult:
    """Result of a correction operation."""

    success: bool
    message: str = ""
    error_code: ErrorCode = ErrorCode.NONE
    status: FitStatus | None = None


@dataclass
class CorrectionSession:
    """State shared between correction operations on one image.

    Owned by the caller and passed into every operation.

    Attributes:
        buffer: Detection buffer (RGB(A) image), None until provided
        buffer_width, buffer_height: Buffer size in pixels
        x_off, y_off: Offset of the buffer inside the full image
        scale: Scale of the buffer relative to the full image
        is_raw: Buffer holds linear raw data
        buffer_hash: Content hash of the buffer
        flipped: Final image is turned by 90 degrees against the buffer
        line_set: Detected lines, None until structure was acquired
        lines_hash: Content hash of the buffer the lines were detected in
        fitting: Guard against re-entrant operations
        crop_key: Hash of the inputs the last crop fit depended on
        crop_box: Crop box of the last fit, valid while crop_key matches
    """

    buffer: np.ndarray | None = None
    buffer_width: int = 0
    buffer_height: int = 0
    x_off: float = 0.0
    y_off: float = 0.0
    scale: float = 1.0
    is_raw: bool = False
    buffer_hash: str | None = None
    flipped: bool = False
    line_set: LineSet | None = None
    lines_hash: str | None = None
    fitting: bool = False
    crop_key: int | None = None
    crop_box: CropBox | None = None

    @property
    def ready(self) -> bool:
        return self.buffer is not None

    @property
    def has_lines(self) -> bool:
        return self.line_set is not None and len(self.line_set) > 0

    @property
    def lines_stale(self) -> bool:
        return self.has_lines and self.lines_hash != self.buffer_hash


def _busy() -> CorrectionResult:
    return CorrectionResult(success=False, error_code=ErrorCode.BUSY)


class PerspectiveCorrector:
    """
    Automatic keystone corrector.

    Detects structure in a detection buffer, fits the correction parameters
    and computes the automatic crop. Parameters are owned by the caller and
    only written on success.

    Example:
        corrector = PerspectiveCorrector()
        session = CorrectionSession()
        corrector.set_buffer(session, preview)
        result = corrector.fit(session, params, FitAxis.BOTH)
    """

    def __init__(self, detector: LineDetector | None = None, config: CorrectionConfig | None = None):
        """
        Initialize perspective corrector.

        Args:
            detector: Line segment detector. Defaults to OpenCV's LSD.
            config: Algorithm configuration. The seed, if any, makes
                    outlier removal reproducible.
        """
        self.detector = detector if detector is not None else LsdLineDetector()
        self.config = config or CorrectionConfig()
        self._rng = np.random.default_rng(self.config.seed)

    # -----------------------------------------------------------------------
    # Buffer and structure
    # -----------------------------------------------------------------------

    def set_buffer(
        self,
        session: CorrectionSession,
        image: np.ndarray,
        x_off: float = 0.0,
        y_off: float = 0.0,
        scale: float = 1.0,
        is_raw: bool = False,
        flipped: bool = False,
    ) -> CorrectionResult:
        """Provide a new detection buffer.

        Lines detected in an earlier buffer with different content become
        stale and are re-detected by the next fit.
        """
        image = np.asarray(image)
        if image.ndim not in (2, 3) or image.shape[0] == 0 or image.shape[1] == 0:
            return _fail(DataPendingError(f"unusable buffer of shape {image.shape}"))

        session.buffer = image
        session.buffer_height, session.buffer_width = image.shape[:2]
        session.x_off = x_off
        session.y_off = y_off
        session.scale = scale
        session.is_raw = is_raw
        session.flipped = flipped
        session.buffer_hash = buffer_hash(image)
        logger.debug(
            f"New detection buffer {session.buffer_width}x{session.buffer_height} "
            f"(offset {x_off}, {y_off}, scale {scale}, flipped {flipped})"
        )
        return CorrectionResult(success=True)

    def _acquire_structure(self, session: CorrectionSession, enhance: Enhance) -> None:
        """Detect, classify and filter lines. Raises on failure."""
        if session.buffer is None:
            raise DataPendingError("no detection buffer")

        # get rid of old structural data
        session.line_set = None
        session.lines_hash = None

        grey = preprocess(session.buffer, enhance, is_raw=session.is_raw, gamma=self.config.lsd_gamma)
        segments = self.detector.detect(grey)
        line_set = classify_segments(
            segments,
            session.buffer_width,
            session.buffer_height,
            x_off=session.x_off,
            y_off=session.y_off,
            scale=session.scale,
        )
        if len(line_set) == 0:
            raise StructureDetectionError(
                f"{len(segments)} segments in {session.buffer_width}x{session.buffer_height} buffer"
            )

        remove_outliers(line_set, self.config, self._rng)

        session.line_set = line_set
        session.lines_hash = session.buffer_hash
        logger.info(
            f"Structure acquired: {len(line_set)} lines, {line_set.vertical_count} vertical "
            f"and {line_set.horizontal_count} horizontal selected"
        )

    def get_structure(self, session: CorrectionSession, enhance: Enhance = Enhance.NONE) -> CorrectionResult:
        """Detect structure in the current buffer and remove outliers."""
        if session.fitting:
            return _busy()

        session.fitting = True
        try:
            self._acquire_structure(session, enhance)
        except KeystoneError as e:
            logger.warning(f"Structure detection failed: {e}")
            return _fail(e)
        finally:
            session.fitting = False
        return CorrectionResult(success=True)

    def clean_structure(self, session: CorrectionSession) -> CorrectionResult:
        """Discard detected lines."""
        if session.fitting:
            return _busy()

        session.line_set = None
        session.lines_hash = None
        logger.debug("Structure cleared")
        return CorrectionResult(success=True)

    def remove_outliers(self, session: CorrectionSession) -> CorrectionResult:
        """Re-run outlier removal on the existing lines."""
        if session.fitting:
            return _busy()
        if not session.has_lines:
            return _fail(StructureDetectionError("no lines to filter"))

        session.fitting = True
        try:
            remove_outliers(session.line_set, self.config, self._rng)
        finally:
            session.fitting = False
        return CorrectionResult(success=True)

    # -----------------------------------------------------------------------
    # Fitting
    # -----------------------------------------------------------------------

    def fit(self, session: CorrectionSession, params: ModelParameters, axis: FitAxis) -> CorrectionResult:
        """Fit the parameters selected by ``axis`` and re-crop.

        Structure is (re-)acquired first if it is missing or stale. On
        success ``params`` is updated in place; on failure it is left as is.
        """
        if session.fitting:
            return _busy()

        status = None
        session.fitting = True
        try:
            if not session.has_lines or session.lines_stale:
                self._acquire_structure(session, Enhance.NONE)

            result = fit_parameters(session.line_set, params, axis, self.config, flipped=session.flipped)
            status = result.status
            result.raise_for_status(self.config)
        except KeystoneError as e:
            logger.warning(f"Automatic correction failed: {e}")
            return _fail(e, status=status)
        finally:
            session.fitting = False

        params.update_from(result.params)
        logger.info(
            f"Correction fitted: rotation {params.rotation:.3f}, lensshift_v {params.lensshift_v:.4f}, "
            f"lensshift_h {params.lensshift_h:.4f}, shear {params.shear:.4f}"
        )

        crop_result = self.crop(session, params)
        return CorrectionResult(
            success=True,
            message=crop_result.message,
            error_code=crop_result.error_code,
            status=FitStatus.SUCCESS,
        )

    # -----------------------------------------------------------------------
    # Cropping
    # -----------------------------------------------------------------------

    def crop(self, session: CorrectionSession, params: ModelParameters) -> CorrectionResult:
        """Apply automatic cropping according to ``params.crop_mode``.

        A failed fit switches automatic cropping off and restores the full frame.
        """
        if session.fitting:
            return _busy()

        if params.crop_mode is CropMode.OFF:
            params.crop = CropBox.full_frame()
            return CorrectionResult(success=True)

        if not session.ready:
            return _fail(DataPendingError("no detection buffer"))

        key = params.crop_key(session.buffer_width, session.buffer_height)
        if session.crop_box is not None and session.crop_key == key:
            params.crop = session.crop_box
            return CorrectionResult(success=True)

        session.fitting = True
        try:
            box = fit_crop(params, session.buffer_width, session.buffer_height, self.config)
        except CropFitFailureError as e:
            logger.warning(f"{e}")
            params.crop_mode = CropMode.OFF
            params.crop = CropBox.full_frame()
            return _fail(e)
        finally:
            session.fitting = False

        session.crop_key = key
        session.crop_box = box
        params.crop = box
        return CorrectionResult(success=True)

    def adjust_crop(self, session: CorrectionSession, params: ModelParameters, x: float, y: float) -> CorrectionResult:
        """Move the crop box center to ``(x, y)`` in corrected-image fractions.

        The move is ignored if the resulting box would be too small.
        """
        if session.fitting:
            return _busy()
        if not session.ready:
            return _fail(DataPendingError("no detection buffer"))

        box = adjust_crop(
            params,
            session.buffer_width,
            session.buffer_height,
            x,
            y,
            min_fraction=self.config.min_crop_area_fraction,
        )
        if box is None:
            return CorrectionResult(success=False, error_code=ErrorCode.CROP_FAILED)

        params.crop = box
        return CorrectionResult(success=True)
