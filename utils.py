# utils.py
import math


def safe_div(numerator, denominator, default=0.0):
    """Divide, returning `default` when the denominator is zero, missing or not finite."""
    if not denominator or not math.isfinite(denominator):
        return default
    return (numerator or 0) / denominator


def ceil_to_multiple(value, step):
    """Round value up to the next multiple of step (step > 0)."""
    return math.ceil(value / step) * step


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into a copy of base."""
    merged = dict(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
