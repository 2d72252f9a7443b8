from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from finhealth.services.statistics import median, quantile
from finhealth.utils.decimal_math import clamp


STATUS_GOOD = "good"
STATUS_AVERAGE = "average"
STATUS_POOR = "poor"

ACTION_BY_STATUS = {
    STATUS_GOOD: "keep_routine",
    STATUS_AVERAGE: "smooth_spikes",
    STATUS_POOR: "cap_impulse_spend",
}


@dataclass(frozen=True)
class Stability:
    index: Decimal
    score: Decimal
    status: str
    action_code: str


def compute_stability_index(daily_totals: Iterable[Decimal], *, min_days: int = 4) -> Decimal | None:
    """IQR of the positive daily totals divided by their median.

    ``None`` when fewer than ``min_days`` positive days exist.
    """
    positive = [value for value in daily_totals if value > 0]
    if len(positive) < min_days:
        return None

    center = median(positive)
    if center is None or center <= 0:
        return None
    q1 = quantile(positive, 0.25)
    q3 = quantile(positive, 0.75)
    if q1 is None or q3 is None:
        return None
    return (q3 - q1) / center


def compute_stability_score(index: Decimal | None) -> Decimal | None:
    if index is None:
        return None
    if index <= Decimal("1.0"):
        score = Decimal("100") - Decimal("30") * index
    elif index <= Decimal("2.0"):
        score = Decimal("70") - Decimal("30") * (index - Decimal("1"))
    elif index <= Decimal("4.0"):
        score = Decimal("40") - Decimal("20") * (index - Decimal("2"))
    else:
        score = Decimal("0")
    return clamp(score, Decimal("0"), Decimal("100"))


def resolve_stability_status(index: Decimal | None) -> str | None:
    if index is None:
        return None
    if index <= Decimal("1.0"):
        return STATUS_GOOD
    if index <= Decimal("2.0"):
        return STATUS_AVERAGE
    return STATUS_POOR


def resolve_stability_action_code(status: str | None) -> str | None:
    if status is None:
        return None
    return ACTION_BY_STATUS.get(status)


def compute_stability(daily_totals: Iterable[Decimal], *, min_days: int = 4) -> Stability | None:
    index = compute_stability_index(daily_totals, min_days=min_days)
    if index is None:
        return None
    status = resolve_stability_status(index)
    return Stability(
        index=index,
        score=compute_stability_score(index),
        status=status,
        action_code=resolve_stability_action_code(status),
    )
