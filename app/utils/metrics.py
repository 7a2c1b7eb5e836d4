"""Pure metric math helpers used by the criterion evaluator and progress calculator."""
from __future__ import annotations

from typing import Iterable


def safe_div(numerator: float | int, denominator: float | int) -> float:
    if denominator in (0, 0.0):
        return 0.0
    return float(numerator) / float(denominator)


def pct_of_target(current: float | int, target: float | int) -> float:
    """Percentage of ``target`` reached; 0 when the target is not positive."""
    if target is None or target <= 0:
        return 0.0
    return safe_div(current, target) * 100.0


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))


def mean(values: Iterable[float]) -> float:
    items = list(values)
    if not items:
        return 0.0
    return sum(items) / len(items)


__all__ = ["safe_div", "pct_of_target", "clamp", "mean"]
