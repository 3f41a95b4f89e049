from __future__ import annotations

import math


def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x


def clamp01(x: float) -> float:
    return clamp(x, 0.0, 1.0)


def lerp(a: float, b: float, t: float) -> float:
    """Linear interpolation with t clamped to [0, 1]."""
    return a + (b - a) * clamp01(t)


def is_finite(x: float) -> bool:
    return not (math.isnan(x) or math.isinf(x))
