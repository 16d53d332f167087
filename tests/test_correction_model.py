"""Tests for the correction data model."""

import numpy as np
import pytest

from autokeystone.services.correction_model import (
    CropBox,
    CropMode,
    FitAxis,
    LensMode,
    Line,
    LineOrientation,
    LineSet,
    ModelParameters,
)
from autokeystone.utils.exceptions import DegenerateGeometryError


class TestLine:
    """Tests for Line."""

    def test_from_points(self):
        line = Line.from_points(0.0, 0.0, 3.0, 4.0, width=2.0, precision=0.5)
        assert line.length == pytest.approx(5.0)
        assert line.weight == pytest.approx(5.0)
        assert line.orientation is LineOrientation.VERTICAL
        assert line.relevant and line.selected

    def test_orientation_from_direction(self):
        assert Line.from_points(0.0, 0.0, 10.0, 1.0).orientation is LineOrientation.HORIZONTAL

    def test_coincident_points(self):
        with pytest.raises(DegenerateGeometryError):
            Line.from_points(1.0, 1.0, 1.0, 1.0)

    def test_coeffs_follow_endpoints(self):
        line = Line.from_points(0.0, 0.0, 0.0, 10.0)
        line.p2 = np.array([10.0, 10.0, 1.0])
        line.update_coeffs()
        assert float(line.p2 @ line.coeffs) == pytest.approx(0.0, abs=1e-12)


class TestLineSet:
    """Tests for LineSet bookkeeping."""

    def test_indices_and_counts(self, line_set_factory):
        segments = [(100.0, 100.0, 100.0, 700.0), (200.0, 100.0, 200.0, 700.0), (100.0, 50.0, 900.0, 50.0)]
        line_set = line_set_factory(segments, 1000, 800)
        line_set.lines[1].selected = False
        line_set.update_counts()

        assert line_set.indices(LineOrientation.VERTICAL) == [0]
        assert line_set.indices(LineOrientation.VERTICAL, selected_only=False) == [0, 1]
        assert line_set.vertical_count == 1
        assert line_set.horizontal_count == 1

    def test_irrelevant_lines_are_never_indexed(self, line_set_factory):
        line_set = line_set_factory([(100.0, 100.0, 100.0, 700.0)], 1000, 800)
        line_set.lines[0].relevant = False
        assert line_set.indices(LineOrientation.VERTICAL, selected_only=False) == []

    def test_update_counts_bumps_version(self):
        line_set = LineSet()
        line_set.update_counts()
        line_set.update_counts()
        assert line_set.version == 2


class TestCropBox:
    """Tests for CropBox."""

    def test_full_frame(self):
        box = CropBox.full_frame()
        assert box.is_valid
        assert box.is_full_frame(1e-4)

    def test_partial(self):
        box = CropBox(0.1, 0.9, 0.0, 1.0)
        assert box.is_valid
        assert not box.is_full_frame(1e-4)

    @pytest.mark.parametrize(
        "box",
        [CropBox(0.5, 0.5, 0.0, 1.0), CropBox(0.0, 1.2, 0.0, 1.0), CropBox(0.0, 1.0, 0.8, 0.2)],
    )
    def test_invalid(self, box):
        assert not box.is_valid


class TestModelParameters:
    """Tests for ModelParameters."""

    def test_generic_mode_overrides_lens(self):
        params = ModelParameters(f_length=50.0, crop_factor=1.5, orthocorr=40.0, aspect=1.3)
        assert params.f_length_kb == 28.0
        assert params.effective_orthocorr == 0.0
        assert params.effective_aspect == 1.0

    def test_specific_mode_uses_lens(self):
        params = ModelParameters(f_length=50.0, crop_factor=1.5, orthocorr=40.0, aspect=1.3, mode=LensMode.SPECIFIC)
        assert params.f_length_kb == pytest.approx(75.0)
        assert params.effective_orthocorr == 40.0
        assert params.effective_aspect == 1.3

    def test_copy_is_independent(self):
        params = ModelParameters(rotation=1.0)
        other = params.copy(rotation=2.0)
        assert params.rotation == 1.0
        assert other.rotation == 2.0

    def test_update_from(self):
        params = ModelParameters()
        params.update_from(ModelParameters(shear=0.1, crop_mode=CropMode.LARGEST, crop=CropBox(0.1, 0.9, 0.2, 0.8)))
        assert params.shear == 0.1
        assert params.crop_mode is CropMode.LARGEST
        assert params.crop == CropBox(0.1, 0.9, 0.2, 0.8)

    def test_crop_key_ignores_crop_box(self):
        params = ModelParameters(rotation=1.0, crop_mode=CropMode.ASPECT)
        cropped = params.copy(crop=CropBox(0.1, 0.9, 0.1, 0.9))
        assert params.crop_key(100, 80) == cropped.crop_key(100, 80)
        assert params.crop_key(100, 80) != params.crop_key(80, 100)
        assert params.crop_key(100, 80) != params.copy(crop_mode=CropMode.LARGEST).crop_key(100, 80)

    def test_to_dict(self):
        data = ModelParameters(rotation=1.5, mode=LensMode.SPECIFIC, crop_mode=CropMode.ASPECT).to_dict()
        assert data["version"] == 4
        assert data["rotation"] == 1.5
        assert data["mode"] == 1
        assert data["cropmode"] == 2
        assert (data["cl"], data["cr"], data["ct"], data["cb"]) == (0.0, 1.0, 0.0, 1.0)

    def test_from_dict_restores_values(self):
        params = ModelParameters(
            rotation=-2.0,
            lensshift_v=0.3,
            shear=0.01,
            mode=LensMode.SPECIFIC,
            crop_mode=CropMode.LARGEST,
            crop=CropBox(0.05, 0.95, 0.1, 0.9),
        )
        assert ModelParameters.from_dict(params.to_dict()) == params

    def test_from_dict_defaults(self):
        params = ModelParameters.from_dict({"rotation": 3})
        assert params.rotation == 3.0
        assert params.crop == CropBox.full_frame()
        assert params.mode is LensMode.GENERIC

    def test_from_dict_rejects_other_version(self):
        with pytest.raises(ValueError, match="version"):
            ModelParameters.from_dict({"version": 3})


class TestFitAxis:
    """Tests for the FitAxis combinations."""

    def test_combinations(self):
        assert FitAxis.VERTICALLY | FitAxis.HORIZONTALLY == FitAxis.BOTH
        assert FitAxis.BOTH | FitAxis.SHEAR == FitAxis.BOTH_SHEAR
        assert FitAxis.ROTATION not in FitAxis.BOTH_NO_ROTATION
        assert FitAxis.LINES_BOTH in FitAxis.FLIP
