import math

def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))

def round_half_up(value: float) -> int:
    """Round .5 away from zero on the positive side (``Math.round`` semantics)."""
    return int(math.floor(value + 0.5))

def is_finite_number(value) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False
