"""Pytest configuration for autokeystone tests.

Provides synthetic line sets and parameter objects shared by the test
modules. Line sets are built directly from endpoint coordinates so tests do
not depend on the line detector.
"""

import numpy as np
import pytest

from autokeystone.services.correction_model import Line, LineOrientation, LineSet, ModelParameters


def build_line_set(
    segments: list[tuple[float, float, float, float]],
    width: int,
    height: int,
    orientation: LineOrientation | None = None,
) -> LineSet:
    """Create a LineSet of relevant, selected lines with counts and weights filled in."""
    lines = [Line.from_points(x1, y1, x2, y2, orientation=orientation) for x1, y1, x2, y2 in segments]
    line_set = LineSet(lines=lines, width=width, height=height)
    line_set.vertical_weight = sum(line.weight for line in lines if line.is_vertical)
    line_set.horizontal_weight = sum(line.weight for line in lines if not line.is_vertical)
    line_set.update_counts()
    return line_set


def line_through(vantage: tuple[float, float], x_at: float, y_at: float, y_other: float) -> tuple:
    """Segment on the line through ``vantage`` and ``(x_at, y_at)``, ending at ``y_other``."""
    vx, vy = vantage
    t = (y_other - vy) / (y_at - vy)
    return (vx + (x_at - vx) * t, y_other, x_at, y_at)


@pytest.fixture
def line_set_factory():
    """Factory for synthetic line sets."""
    return build_line_set


@pytest.fixture
def vantage_segment():
    """Factory for segments through a given vanishing point."""
    return line_through


@pytest.fixture
def converging_segments():
    """Four segments meeting exactly in (0.5, -5), outside the unit frame."""
    return [line_through((0.5, -5.0), x, 1.0, 0.2) for x in (0.1, 0.3, 0.7, 0.9)]


@pytest.fixture
def vertical_line_set():
    """Four perfectly vertical lines in a 1000x800 image."""
    segments = [(x, 100.0, x, 700.0) for x in (100.0, 300.0, 700.0, 900.0)]
    return build_line_set(segments, 1000, 800)


@pytest.fixture
def neutral_params():
    return ModelParameters()


@pytest.fixture
def rng():
    """Seeded random generator for reproducible outlier removal."""
    return np.random.default_rng(42)
