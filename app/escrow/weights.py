"""Pure weight and money helpers. Math only, never raises."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def round2(value: Decimal) -> Decimal:
    """Round to currency precision, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def total_percentage(percentages: list[float]) -> float:
    return sum(percentages)


def deviates(percentages: list[float], tolerance: float) -> bool:
    """True when the weights sum to more than `tolerance` points away from 100."""
    return abs(total_percentage(percentages) - 100.0) > tolerance


def rescale(percentages: list[float]) -> list[float]:
    """Scale weights by 100/total, rounding each to two decimals.

    The result may still sum to 100 ± a few hundredths. A non-positive or
    non-finite total leaves the input unchanged.
    """
    total = total_percentage(percentages)
    if total <= 0 or not math.isfinite(total):
        return list(percentages)
    factor = 100.0 / total
    return [round(p * factor, 2) for p in percentages]


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def release_amount(deposit: Decimal, percentage: float) -> Decimal:
    """round2(deposit × percentage / 100)."""
    return round2(deposit * Decimal(str(percentage)) / Decimal(100))


def truncate(text: str, max_length: int, marker: str = "...") -> str:
    """Cut `text` to `max_length` characters, ending in `marker` when cut."""
    if len(text) <= max_length:
        return text
    keep = max(max_length - len(marker), 0)
    return text[:keep].rstrip() + marker
