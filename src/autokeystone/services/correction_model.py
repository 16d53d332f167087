"""Data model of the perspective correction engine.

Lines detected in the image, the correction parameters owned by the caller,
and the crop box derived from them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum, Flag, auto

import numpy as np

from autokeystone.constants import (
    DEFAULT_CROP_FACTOR,
    DEFAULT_F_LENGTH,
    DEFAULT_ORTHOCORR,
    LENSSHIFT_RANGE,
    PARAMS_VERSION,
    ROTATION_RANGE,
    SHEAR_RANGE,
)
from autokeystone.services.geometry import cross_normalized, homogeneous, line_normalize
from autokeystone.utils.exceptions import DegenerateGeometryError

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class LineOrientation(Enum):
    """Axis a line is closest to."""

    VERTICAL = auto()
    HORIZONTAL = auto()


class LensMode(Enum):
    """Lens model used to build the homography."""

    GENERIC = 0
    SPECIFIC = 1


class CropMode(Enum):
    """Automatic cropping mode."""

    OFF = 0
    LARGEST = 1  # largest area
    ASPECT = 2  # original format


class HomographyDirection(Enum):
    """Direction of a homography: input->corrected or corrected->input."""

    FORWARD = auto()
    INVERTED = auto()


class FitStatus(Enum):
    """Outcome of a parameter fit."""

    SUCCESS = 0
    NOT_ENOUGH_LINES = 1
    DID_NOT_CONVERGE = 2
    INSANE = 3


class Enhance(Flag):
    """Optional preprocessing applied before line detection."""

    NONE = 0
    EDGES = 1 << 0
    DETAIL = 1 << 1


class FitAxis(Flag):
    """Which parameters to fit and which line directions to fit them on."""

    NONE = 0
    ROTATION = 1 << 0
    LENS_VERT = 1 << 1
    LENS_HOR = 1 << 2
    SHEAR = 1 << 3
    LINES_VERT = 1 << 4
    LINES_HOR = 1 << 5

    LENS_BOTH = LENS_VERT | LENS_HOR
    LINES_BOTH = LINES_VERT | LINES_HOR
    VERTICALLY = ROTATION | LENS_VERT | LINES_VERT
    HORIZONTALLY = ROTATION | LENS_HOR | LINES_HOR
    BOTH = ROTATION | LENS_VERT | LENS_HOR | LINES_VERT | LINES_HOR
    VERTICALLY_NO_ROTATION = LENS_VERT | LINES_VERT
    HORIZONTALLY_NO_ROTATION = LENS_HOR | LINES_HOR
    BOTH_NO_ROTATION = LENS_VERT | LENS_HOR | LINES_VERT | LINES_HOR
    BOTH_SHEAR = ROTATION | LENS_VERT | LENS_HOR | SHEAR | LINES_VERT | LINES_HOR
    ROTATION_VERTICAL_LINES = ROTATION | LINES_VERT
    ROTATION_HORIZONTAL_LINES = ROTATION | LINES_HOR
    ROTATION_BOTH_LINES = ROTATION | LINES_VERT | LINES_HOR
    FLIP = LENS_VERT | LENS_HOR | LINES_VERT | LINES_HOR


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawSegment:
    """A segment as reported by the external line detector.

    Attributes:
        x1, y1, x2, y2: Endpoints in detection-buffer pixel coordinates
        width: Lateral uncertainty of the segment (pixels)
        precision: Angle precision reported by the detector
    """

    x1: float
    y1: float
    x2: float
    y2: float
    width: float = 1.0
    precision: float = 1.0


@dataclass
class Line:
    """A detected line segment in input-image coordinates.

    Attributes:
        p1, p2: Homogeneous endpoints ``(x, y, 1)``
        length: Euclidean length of the segment
        width: Detector-reported lateral uncertainty
        weight: ``length * width * precision``
        orientation: Axis the segment is closest to
        relevant: Long enough and close enough to an axis to be used
        selected: Currently selected for fitting
        coeffs: Homogeneous line through p1 and p2 with ``x^2 + y^2 = 1``
    """

    p1: np.ndarray
    p2: np.ndarray
    length: float
    width: float
    weight: float
    orientation: LineOrientation
    relevant: bool = False
    selected: bool = False
    coeffs: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.p1 = np.asarray(self.p1, dtype=np.float64)
        self.p2 = np.asarray(self.p2, dtype=np.float64)
        self.update_coeffs()

    @classmethod
    def from_points(
        cls,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        width: float = 1.0,
        precision: float = 1.0,
        orientation: LineOrientation | None = None,
        relevant: bool = True,
        selected: bool = True,
    ) -> Line:
        """Build a line from two euclidean endpoints.

        The orientation defaults to the axis the segment is closest to.

        Raises:
            DegenerateGeometryError: If the endpoints coincide
        """
        length = math.hypot(x2 - x1, y2 - y1)
        if length <= 0.0:
            raise DegenerateGeometryError("coincident line endpoints", details=f"({x1}, {y1})")
        if orientation is None:
            orientation = (
                LineOrientation.VERTICAL if abs(y2 - y1) > abs(x2 - x1) else LineOrientation.HORIZONTAL
            )
        return cls(
            p1=homogeneous(x1, y1),
            p2=homogeneous(x2, y2),
            length=length,
            width=width,
            weight=length * width * precision,
            orientation=orientation,
            relevant=relevant,
            selected=selected,
        )

    @property
    def is_vertical(self) -> bool:
        return self.orientation is LineOrientation.VERTICAL

    def update_coeffs(self) -> None:
        """Recompute ``coeffs`` from the endpoints."""
        self.coeffs = line_normalize(cross_normalized(self.p1, self.p2))


@dataclass
class LineSet:
    """Lines from one structure acquisition plus their bookkeeping.

    Attributes:
        lines: All detected lines (relevant or not)
        width, height: Size of the image the coordinates refer to
        x_off, y_off: Offset of the detection buffer inside that image
        vertical_count, horizontal_count: Selected relevant lines per direction
        vertical_weight, horizontal_weight: Total weight of relevant lines per direction
        version: Bumped whenever the selection changes
    """

    lines: list[Line] = field(default_factory=list)
    width: int = 0
    height: int = 0
    x_off: float = 0.0
    y_off: float = 0.0
    vertical_count: int = 0
    horizontal_count: int = 0
    vertical_weight: float = 0.0
    horizontal_weight: float = 0.0
    version: int = 0

    def __len__(self) -> int:
        return len(self.lines)

    def indices(self, orientation: LineOrientation, selected_only: bool = True) -> list[int]:
        """Indices of relevant lines with the given orientation."""
        return [
            n
            for n, line in enumerate(self.lines)
            if line.relevant and line.orientation is orientation and (line.selected or not selected_only)
        ]

    def update_counts(self) -> None:
        """Recount selected lines per direction and bump the version."""
        self.vertical_count = len(self.indices(LineOrientation.VERTICAL))
        self.horizontal_count = len(self.indices(LineOrientation.HORIZONTAL))
        self.version += 1


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CropBox:
    """Crop margins relative to the corrected image's bounding box.

    Attributes:
        cl, cr: Left and right margin (``0 <= cl < cr <= 1``)
        ct, cb: Top and bottom margin (``0 <= ct < cb <= 1``)
    """

    cl: float = 0.0
    cr: float = 1.0
    ct: float = 0.0
    cb: float = 1.0

    @classmethod
    def full_frame(cls) -> CropBox:
        return cls()

    @property
    def is_valid(self) -> bool:
        return (
            0.0 <= self.cl <= 1.0
            and 0.0 <= self.cr <= 1.0
            and 0.0 <= self.ct <= 1.0
            and 0.0 <= self.cb <= 1.0
            and self.cr - self.cl > 0.0
            and self.cb - self.ct > 0.0
        )

    def is_full_frame(self, eps: float) -> bool:
        return self.cl < eps and 1.0 - self.cr < eps and self.ct < eps and 1.0 - self.cb < eps


@dataclass
class ModelParameters:
    """Correction parameters owned by the caller.

    Attributes:
        rotation: Rotation in degrees
        lensshift_v, lensshift_h: Vertical and horizontal lens shift strength
        shear: Shear strength
        f_length: Focal length in mm (SPECIFIC mode only)
        crop_factor: Sensor crop factor (SPECIFIC mode only)
        orthocorr: Lens dependence in percent, 0-100 (SPECIFIC mode only)
        aspect: Aspect adjustment, 0.5-2 (SPECIFIC mode only)
        mode: Lens model
        rotation_range, lensshift_v_range, lensshift_h_range, shear_range:
            Soft bounds for the fitted variables
        crop_mode: Automatic cropping mode
        crop: Current crop margins
    """

    rotation: float = 0.0
    lensshift_v: float = 0.0
    lensshift_h: float = 0.0
    shear: float = 0.0
    f_length: float = DEFAULT_F_LENGTH
    crop_factor: float = DEFAULT_CROP_FACTOR
    orthocorr: float = DEFAULT_ORTHOCORR
    aspect: float = 1.0
    mode: LensMode = LensMode.GENERIC
    rotation_range: float = ROTATION_RANGE
    lensshift_v_range: float = LENSSHIFT_RANGE
    lensshift_h_range: float = LENSSHIFT_RANGE
    shear_range: float = SHEAR_RANGE
    crop_mode: CropMode = CropMode.OFF
    crop: CropBox = field(default_factory=CropBox)

    @property
    def f_length_kb(self) -> float:
        """Focal length in 35mm equivalent as used by the lens model."""
        if self.mode is LensMode.GENERIC:
            return DEFAULT_F_LENGTH
        return self.f_length * self.crop_factor

    @property
    def effective_orthocorr(self) -> float:
        return 0.0 if self.mode is LensMode.GENERIC else self.orthocorr

    @property
    def effective_aspect(self) -> float:
        return 1.0 if self.mode is LensMode.GENERIC else self.aspect

    def copy(self, **changes) -> ModelParameters:
        """Return a modified copy; the original is left untouched."""
        return replace(self, **changes)

    def update_from(self, other: ModelParameters) -> None:
        """Overwrite all fields in place with the values of ``other``."""
        for f in fields(self):
            setattr(self, f.name, getattr(other, f.name))

    def crop_key(self, width: int, height: int) -> int:
        """Hash of everything the crop fit depends on."""
        return hash(
            (
                round(self.rotation, 6),
                round(self.lensshift_v, 6),
                round(self.lensshift_h, 6),
                round(self.shear, 6),
                round(self.f_length_kb, 6),
                round(self.effective_orthocorr, 6),
                round(self.effective_aspect, 6),
                self.crop_mode,
                width,
                height,
            )
        )

    def to_dict(self) -> dict:
        """Convert to a flat dictionary for persistence.

        Returns:
            Dictionary with an explicit ``version`` tag
        """
        return {
            "version": PARAMS_VERSION,
            "rotation": self.rotation,
            "lensshift_v": self.lensshift_v,
            "lensshift_h": self.lensshift_h,
            "shear": self.shear,
            "f_length": self.f_length,
            "crop_factor": self.crop_factor,
            "orthocorr": self.orthocorr,
            "aspect": self.aspect,
            "mode": self.mode.value,
            "cropmode": self.crop_mode.value,
            "cl": self.crop.cl,
            "cr": self.crop.cr,
            "ct": self.crop.ct,
            "cb": self.crop.cb,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ModelParameters:
        """Create from a dictionary produced by ``to_dict``.

        Raises:
            ValueError: If the version tag is not the current one
        """
        version = data.get("version", PARAMS_VERSION)
        if version != PARAMS_VERSION:
            raise ValueError(f"Unsupported parameter version {version}, expected {PARAMS_VERSION}")

        return cls(
            rotation=float(data.get("rotation", 0.0)),
            lensshift_v=float(data.get("lensshift_v", 0.0)),
            lensshift_h=float(data.get("lensshift_h", 0.0)),
            shear=float(data.get("shear", 0.0)),
            f_length=float(data.get("f_length", DEFAULT_F_LENGTH)),
            crop_factor=float(data.get("crop_factor", DEFAULT_CROP_FACTOR)),
            orthocorr=float(data.get("orthocorr", DEFAULT_ORTHOCORR)),
            aspect=float(data.get("aspect", 1.0)),
            mode=LensMode(data.get("mode", LensMode.GENERIC.value)),
            crop_mode=CropMode(data.get("cropmode", CropMode.OFF.value)),
            crop=CropBox(
                cl=float(data.get("cl", 0.0)),
                cr=float(data.get("cr", 1.0)),
                ct=float(data.get("ct", 0.0)),
                cb=float(data.get("cb", 1.0)),
            ),
        )
