"""Tests for the perspective correction orchestrator."""

from unittest.mock import patch

import numpy as np
import pytest

from autokeystone.services.correction_config import CorrectionConfig
from autokeystone.services.correction_model import (
    CropBox,
    CropMode,
    FitAxis,
    FitStatus,
    ModelParameters,
    RawSegment,
)
from autokeystone.services.line_detection import LineDetector
from autokeystone.services.perspective_correction import (
    CorrectionSession,
    ErrorCode,
    PerspectiveCorrector,
    is_flipped,
)
from autokeystone.utils.exceptions import CropFitFailureError

VERTICAL_SEGMENTS = [RawSegment(x, 100.0, x, 700.0) for x in (100.0, 300.0, 500.0, 700.0, 900.0)]
HORIZONTAL_SEGMENTS = [RawSegment(100.0, y, 900.0, y) for y in (100.0, 250.0, 400.0, 550.0, 700.0)]


class FakeDetector(LineDetector):
    """Detector returning a fixed list of segments."""

    def __init__(self, segments):
        self.segments = list(segments)
        self.calls = 0

    def detect(self, grey):
        self.calls += 1
        return list(self.segments)


@pytest.fixture
def buffer():
    return np.zeros((800, 1000, 3), dtype=np.uint8)


@pytest.fixture
def detector():
    return FakeDetector(VERTICAL_SEGMENTS + HORIZONTAL_SEGMENTS)


@pytest.fixture
def corrector(detector):
    return PerspectiveCorrector(detector=detector, config=CorrectionConfig(seed=1))


@pytest.fixture
def session(corrector, buffer):
    session = CorrectionSession()
    corrector.set_buffer(session, buffer)
    return session


class TestIsFlipped:
    """Tests for is_flipped."""

    def test_same_orientation(self):
        assert not is_flipped((4.0, 3.0), (4.0, 3.0))

    def test_quarter_turn(self):
        assert is_flipped((4.0, 3.0), (-3.0, 4.0))

    def test_half_turn(self):
        assert not is_flipped((4.0, 3.0), (-4.0, -3.0))

    def test_null_vector(self):
        assert not is_flipped((0.0, 0.0), (4.0, 3.0))


class TestBuffer:
    """Tests for buffer handling and structure acquisition."""

    def test_set_buffer(self, corrector, buffer):
        session = CorrectionSession()
        result = corrector.set_buffer(session, buffer, x_off=5.0, scale=0.5, flipped=True)
        assert result.success
        assert session.ready
        assert (session.buffer_width, session.buffer_height) == (1000, 800)
        assert session.x_off == 5.0
        assert session.flipped
        assert session.buffer_hash is not None

    def test_unusable_buffer(self, corrector):
        session = CorrectionSession()
        result = corrector.set_buffer(session, np.zeros((0, 10)))
        assert not result.success
        assert result.error_code == ErrorCode.DATA_PENDING
        assert not session.ready

    def test_get_structure(self, corrector, session, detector):
        result = corrector.get_structure(session)
        assert result.success
        assert detector.calls == 1
        assert session.has_lines
        assert session.line_set.vertical_count == 5
        assert session.line_set.horizontal_count == 5
        assert not session.lines_stale

    def test_get_structure_without_buffer(self, corrector):
        result = corrector.get_structure(CorrectionSession())
        assert not result.success
        assert result.error_code == ErrorCode.DATA_PENDING
        assert result.message == "data pending - please repeat"

    def test_no_structure(self, buffer):
        corrector = PerspectiveCorrector(detector=FakeDetector([]))
        session = CorrectionSession()
        corrector.set_buffer(session, buffer)

        result = corrector.get_structure(session)

        assert not result.success
        assert result.error_code == ErrorCode.NO_STRUCTURE
        assert result.message == "could not detect structural data in image"
        assert not session.has_lines
        assert not session.fitting

    def test_clean_structure(self, corrector, session):
        corrector.get_structure(session)
        assert corrector.clean_structure(session).success
        assert session.line_set is None
        assert not session.has_lines

    def test_remove_outliers_needs_lines(self, corrector, session):
        result = corrector.remove_outliers(session)
        assert result.error_code == ErrorCode.NO_STRUCTURE

    def test_remove_outliers(self, corrector, session):
        corrector.get_structure(session)
        version = session.line_set.version
        assert corrector.remove_outliers(session).success
        assert session.line_set.version > version

    def test_new_content_makes_lines_stale(self, corrector, session, buffer):
        corrector.get_structure(session)
        changed = buffer.copy()
        changed[0, 0, 0] = 1
        corrector.set_buffer(session, changed)
        assert session.lines_stale

    def test_busy_guard(self, corrector, session):
        session.fitting = True
        for result in (
            corrector.get_structure(session),
            corrector.clean_structure(session),
            corrector.remove_outliers(session),
            corrector.fit(session, ModelParameters(), FitAxis.BOTH),
            corrector.crop(session, ModelParameters(crop_mode=CropMode.ASPECT)),
            corrector.adjust_crop(session, ModelParameters(), 0.5, 0.5),
        ):
            assert not result.success
            assert result.error_code == ErrorCode.BUSY


class TestFit:
    """Tests for PerspectiveCorrector.fit."""

    def test_fit_updates_params(self, corrector, session):
        params = ModelParameters(rotation=2.0, lensshift_v=0.1)

        result = corrector.fit(session, params, FitAxis.VERTICALLY)

        assert result.success
        assert result.status is FitStatus.SUCCESS
        assert result.error_code == ErrorCode.NONE
        assert params.rotation == pytest.approx(0.0, abs=0.1)
        assert params.lensshift_v == pytest.approx(0.0, abs=0.01)
        assert not session.fitting

    def test_fit_detects_structure_once(self, corrector, session, detector):
        corrector.fit(session, ModelParameters(rotation=1.0), FitAxis.VERTICALLY)
        corrector.fit(session, ModelParameters(rotation=1.0), FitAxis.HORIZONTALLY)
        assert detector.calls == 1

    def test_fit_redetects_stale_lines(self, corrector, session, detector, buffer):
        corrector.fit(session, ModelParameters(rotation=1.0), FitAxis.VERTICALLY)
        changed = buffer.copy()
        changed[10, 10] = 255
        corrector.set_buffer(session, changed)

        corrector.fit(session, ModelParameters(rotation=1.0), FitAxis.VERTICALLY)

        assert detector.calls == 2
        assert not session.lines_stale

    def test_not_enough_lines_leaves_params(self, buffer):
        corrector = PerspectiveCorrector(detector=FakeDetector(VERTICAL_SEGMENTS[:2]))
        session = CorrectionSession()
        corrector.set_buffer(session, buffer)
        params = ModelParameters(rotation=2.0)

        result = corrector.fit(session, params, FitAxis.VERTICALLY)

        assert not result.success
        assert result.error_code == ErrorCode.NOT_ENOUGH_LINES
        assert result.status is FitStatus.NOT_ENOUGH_LINES
        assert result.message == "not enough structure for automatic correction"
        assert params.rotation == 2.0
        assert not session.fitting

    def test_implausible_fit_fails(self, detector, session):
        corrector = PerspectiveCorrector(detector=detector, config=CorrectionConfig(max_area_growth=0.5, seed=1))
        params = ModelParameters(rotation=2.0)

        result = corrector.fit(session, params, FitAxis.ROTATION_VERTICAL_LINES)

        assert result.error_code == ErrorCode.FIT_FAILED
        assert result.status is FitStatus.INSANE
        assert result.message == "automatic correction failed, please correct manually"
        assert params.rotation == 2.0

    def test_fit_crops(self, corrector, session):
        params = ModelParameters(rotation=2.0, crop_mode=CropMode.ASPECT)
        result = corrector.fit(session, params, FitAxis.VERTICALLY)
        assert result.success
        assert params.crop.is_valid
        assert params.crop_mode is CropMode.ASPECT


class TestCrop:
    """Tests for PerspectiveCorrector.crop and adjust_crop."""

    def test_crop_off_resets_box(self, corrector, session):
        params = ModelParameters(crop=CropBox(0.1, 0.9, 0.1, 0.9))
        assert corrector.crop(session, params).success
        assert params.crop == CropBox.full_frame()

    def test_crop_needs_buffer(self, corrector):
        result = corrector.crop(CorrectionSession(), ModelParameters(crop_mode=CropMode.LARGEST))
        assert result.error_code == ErrorCode.DATA_PENDING

    def test_crop_failure_switches_cropping_off(self, corrector, session):
        params = ModelParameters(rotation=3.0, crop_mode=CropMode.LARGEST, crop=CropBox(0.1, 0.9, 0.1, 0.9))
        with patch(
            "autokeystone.services.perspective_correction.fit_crop",
            side_effect=CropFitFailureError("zero area"),
        ):
            result = corrector.crop(session, params)

        assert not result.success
        assert result.error_code == ErrorCode.CROP_FAILED
        assert result.message == "automatic cropping failed"
        assert params.crop_mode is CropMode.OFF
        assert params.crop == CropBox.full_frame()
        assert not session.fitting

    def test_crop_is_cached(self, corrector, session):
        box = CropBox(0.1, 0.9, 0.05, 0.95)
        params = ModelParameters(rotation=3.0, crop_mode=CropMode.ASPECT)
        with patch("autokeystone.services.perspective_correction.fit_crop", return_value=box) as fit_crop:
            corrector.crop(session, params)
            corrector.crop(session, params.copy())
            assert fit_crop.call_count == 1

            corrector.crop(session, params.copy(rotation=4.0))
            assert fit_crop.call_count == 2
        assert params.crop == box

    def test_only_last_crop_is_kept(self, corrector, session):
        params = ModelParameters(crop_mode=CropMode.ASPECT)
        boxes = [CropBox(0.01 * n, 1.0 - 0.01 * n, 0.0, 1.0) for n in range(1, 32)]
        with patch("autokeystone.services.perspective_correction.fit_crop", side_effect=boxes) as fit_crop:
            for n in range(30):
                corrector.crop(session, params.copy(rotation=0.1 * n))
            assert fit_crop.call_count == 30
            assert session.crop_box == boxes[-1]
            assert session.crop_key == params.copy(rotation=2.9).crop_key(1000, 800)

            # an earlier parameter set is fitted again
            corrector.crop(session, params.copy(rotation=0.0))
            assert fit_crop.call_count == 31

    def test_adjust_crop(self, corrector, session):
        params = ModelParameters()
        result = corrector.adjust_crop(session, params, 0.25, 0.5)
        assert result.success
        assert params.crop.cr == pytest.approx(0.5)

    def test_adjust_crop_too_small(self, corrector, session):
        params = ModelParameters(crop=CropBox(0.1, 0.9, 0.1, 0.9))
        result = corrector.adjust_crop(session, params, 0.001, 0.001)
        assert not result.success
        assert result.error_code == ErrorCode.CROP_FAILED
        assert params.crop == CropBox(0.1, 0.9, 0.1, 0.9)
