# ABOUTME: Numeric guards used to keep probabilities, Q-values and scores in range.
# ABOUTME: Drift is repaired by clamping before values leave an engine.

from __future__ import annotations

import math
from typing import Optional


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]; NaN collapses to low."""
    if math.isnan(value):
        return low
    return max(low, min(float(value), high))


def require_probability(name: str, value: Optional[float]) -> float:
    """Validate a caller-supplied probability."""
    if value is None or isinstance(value, bool):
        raise ValueError(f"{name} must be a number in [0, 1], got {value!r}.")
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number in [0, 1], got {value!r}.") from exc
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}.")
    return value
