"""
Score primitives shared by the deterministic detectors and the
self-consistency aggregator.

Rounding is half away from zero so that penalties such as 25 * 2.5
land on 63, not on Python's banker's-rounded 62.
"""

from __future__ import annotations

import math
from statistics import fmean, pstdev
from typing import Iterable

# Dimension status thresholds, shared by generative dimension arrays
# and the consensus re-derivation.
STATUS_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (85, "✅"),
    (60, "⚠️"),
)
STATUS_FALLBACK = "❌"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def clamp_score(value: float) -> int:
    """Clamp to the 0-100 score range and round."""
    return round_half_up(clamp(value, 0, 100))


def score_to_status(score: float) -> str:
    for threshold, status in STATUS_THRESHOLDS:
        if score >= threshold:
            return status
    return STATUS_FALLBACK


def average(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return fmean(values)


def spread(values: Iterable[float]) -> float:
    """Population standard deviation; 0.0 for fewer than two values."""
    values = list(values)
    if len(values) < 2:
        return 0.0
    return pstdev(values)


def max_deviation(values: Iterable[float]) -> float:
    """Largest absolute distance from the mean; 0.0 for fewer than two values."""
    values = list(values)
    if len(values) < 2:
        return 0.0
    mean = fmean(values)
    return max(abs(v - mean) for v in values)


def normalize_score(value: object) -> int:
    """Normalize a self-reported score to a 0-100 integer.

    Accepts either a 0.0-1.0 fraction or a 0-100 number (numeric strings
    included). Anything unparseable counts as 0.
    """
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    if number <= 1.0:
        number *= 100
    return clamp_score(number)


# Keys tried, in order, when reading a generative result's own score
SCORE_PATHS: tuple[tuple[str, ...], ...] = (
    ("overall_score",),
    ("metadata", "conformidade_geral_percent"),
    ("score",),
)


def extract_score(result: object) -> int:
    """Self-reported 0-100 score of a generative result, 0 when absent."""
    if not isinstance(result, dict):
        return 0
    for path in SCORE_PATHS:
        node: object = result
        for key in path:
            if not isinstance(node, dict) or node.get(key) is None:
                node = None
                break
            node = node[key]
        if node is not None:
            return normalize_score(node)
    return 0
