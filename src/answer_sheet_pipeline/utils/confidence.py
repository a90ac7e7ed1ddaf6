"""Helpers for keeping confidences and factor-scale scores in range."""


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamps a value into [low, high]."""
    return max(low, min(high, value))


def clamp_score(value: float) -> float:
    """Clamps a factor-scale score into [0, 100]."""
    return clamp(value, 0.0, 100.0)
