"""Robust order statistics over ``Decimal`` samples.

All functions are pure and return ``None`` for empty input instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from decimal import Decimal


def median(values: Iterable[Decimal]) -> Decimal | None:
    ordered = sorted(values)
    if not ordered:
        return None
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / Decimal("2")
    return ordered[mid]


def quantile(values: Iterable[Decimal], q: float) -> Decimal | None:
    """Quantile with linear interpolation between the closest ranks at ``(n - 1) * q``."""
    ordered = sorted(values)
    if not ordered:
        return None
    if q <= 0:
        return ordered[0]
    if q >= 1:
        return ordered[-1]

    position = (len(ordered) - 1) * q
    lower_index = math.floor(position)
    upper_index = math.ceil(position)
    if lower_index == upper_index:
        return ordered[lower_index]

    weight = Decimal(str(position - lower_index))
    return ordered[lower_index] + (ordered[upper_index] - ordered[lower_index]) * weight


def mad(values: Iterable[Decimal], center: Decimal) -> Decimal | None:
    """Median absolute deviation around ``center``."""
    return median(abs(value - center) for value in values)
