"""
Line Classification

Turns raw detector segments into typed, weighted homogeneous lines in
input-image coordinates.
"""

import logging
import math
from collections.abc import Iterable

from autokeystone.constants import BORDER_TOLERANCE_PX, MAX_TANGENTIAL_DEVIATION, MIN_LINE_LENGTH
from autokeystone.services.correction_model import Line, LineOrientation, LineSet, RawSegment
from autokeystone.utils.exceptions import DegenerateGeometryError

logger = logging.getLogger(__name__)


def _runs_along_border(seg: RawSegment, width: float, height: float) -> bool:
    """Segments hugging the buffer border are processing artifacts."""
    lo = BORDER_TOLERANCE_PX
    hi_x = width - BORDER_TOLERANCE_PX - 1.0
    hi_y = height - BORDER_TOLERANCE_PX - 1.0
    if abs(seg.x1 - seg.x2) < 1.0 and (max(seg.x1, seg.x2) < lo or min(seg.x1, seg.x2) > hi_x):
        return True
    if abs(seg.y1 - seg.y2) < 1.0 and (max(seg.y1, seg.y2) < lo or min(seg.y1, seg.y2) > hi_y):
        return True
    return False


def segment_angle(x1: float, y1: float, x2: float, y2: float) -> float:
    """Angle of a segment in degrees, in ``(-180, 180]``."""
    return math.degrees(math.atan2(y2 - y1, x2 - x1))


def is_near_vertical(angle: float, tolerance: float = MAX_TANGENTIAL_DEVIATION) -> bool:
    return abs(abs(angle) - 90.0) < tolerance


def is_near_horizontal(angle: float, tolerance: float = MAX_TANGENTIAL_DEVIATION) -> bool:
    return abs(abs(abs(angle) - 90.0) - 90.0) < tolerance


def classify_segments(
    segments: Iterable[RawSegment],
    width: int,
    height: int,
    x_off: float = 0.0,
    y_off: float = 0.0,
    scale: float = 1.0,
) -> LineSet:
    """Classify detector output into a line set.

    Args:
        segments: Raw segments in detection-buffer pixel coordinates
        width: Detection buffer width (for border rejection)
        height: Detection buffer height
        x_off: Buffer offset inside the full image
        y_off: Buffer offset inside the full image
        scale: Buffer scale relative to the full image

    Returns:
        LineSet with relevant lines selected and per-direction counts/weights
    """
    line_set = LineSet(width=width, height=height, x_off=x_off, y_off=y_off)
    skipped_border = 0
    skipped_degenerate = 0

    for seg in segments:
        if _runs_along_border(seg, width, height):
            skipped_border += 1
            continue

        px1 = (x_off + seg.x1) / scale
        py1 = (y_off + seg.y1) / scale
        px2 = (x_off + seg.x2) / scale
        py2 = (y_off + seg.y2) / scale

        angle = segment_angle(px1, py1, px2, py2)
        vertical = is_near_vertical(angle)
        horizontal = is_near_horizontal(angle)
        orientation = LineOrientation.VERTICAL if abs(abs(angle) - 90.0) < 45.0 else LineOrientation.HORIZONTAL

        try:
            line = Line.from_points(
                px1,
                py1,
                px2,
                py2,
                width=seg.width / scale,
                precision=seg.precision,
                orientation=orientation,
                relevant=False,
                selected=False,
            )
        except DegenerateGeometryError as e:
            logger.debug(f"Skipping segment: {e}")
            skipped_degenerate += 1
            continue

        if line.length > MIN_LINE_LENGTH and (vertical or horizontal):
            line.relevant = True
            line.selected = True
            if vertical:
                line.orientation = LineOrientation.VERTICAL
                line_set.vertical_count += 1
                line_set.vertical_weight += line.weight
            else:
                line.orientation = LineOrientation.HORIZONTAL
                line_set.horizontal_count += 1
                line_set.horizontal_weight += line.weight

        line_set.lines.append(line)

    logger.debug(
        f"{len(line_set)} lines (vertical {line_set.vertical_count}, "
        f"horizontal {line_set.horizontal_count}, "
        f"not relevant {len(line_set) - line_set.vertical_count - line_set.horizontal_count}), "
        f"skipped {skipped_border} border and {skipped_degenerate} degenerate segments"
    )
    line_set.version += 1
    return line_set
