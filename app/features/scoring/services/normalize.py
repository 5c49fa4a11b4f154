import math


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def norm_linear(value: float, low: float, high: float) -> float:
    """Position of value between low and high, clamped to [0, 1]."""
    if high <= low:
        return 0.0
    return clamp01((value - low) / (high - low))


def norm_log(value: float, baseline: float, scale: float = 1.0) -> float:
    """Log-scaled ratio against a baseline, clamped to [0, 1]."""
    if value <= 0 or baseline <= 0:
        return 0.0
    ratio = value / baseline
    return clamp01(math.log(ratio * scale + 1) / math.log(scale + 1))


def pct_change(current: float, previous: float) -> float:
    if previous == 0:
        return 1.0 if current > 0 else 0.0
    return (current - previous) / previous
