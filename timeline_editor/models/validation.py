"""
Validation and clamping helpers for timeline values.

Numeric fields are stored as given and clamped where they are used,
so these helpers are shared by the edit commands and the export
graph builder.
"""

import math
from typing import Any

# Shortest clip the timeline allows, in seconds
MIN_CLIP_DURATION = 0.1

# Slack for float drift when comparing stored trim points
TIME_TOLERANCE = 1e-6

PERCENT_MIN = 0.0
PERCENT_MAX = 100.0
OPACITY_MIN = 0.0
OPACITY_MAX = 1.0


def is_finite_number(value: Any) -> bool:
    """Check that a value is a real, finite number (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def clamp(value: float, minimum: float, maximum: float) -> float:
    """
    Clamp a value into [minimum, maximum].

    Raises:
        ValueError: If the value is NaN (it has no place in the range)
    """
    if isinstance(value, float) and math.isnan(value):
        raise ValueError("Cannot clamp NaN")
    return max(minimum, min(maximum, value))


def clamp_percent(value: float) -> float:
    """Clamp a frame-relative percentage to [0, 100]."""
    return clamp(value, PERCENT_MIN, PERCENT_MAX)


def clamp_opacity(value: float) -> float:
    """Clamp an opacity to [0, 1]."""
    return clamp(value, OPACITY_MIN, OPACITY_MAX)
