"""Peak ("anomalously expensive") day detection over daily expense totals."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from finhealth.services.statistics import mad, median, quantile
from finhealth.utils.decimal_math import money


@dataclass(frozen=True)
class PeakDay:
    day: date
    amount: Decimal
    share_percent: Decimal | None


@dataclass(frozen=True)
class PeakSummary:
    count: int
    total: Decimal
    share_percent: Decimal | None
    month_total: Decimal


@dataclass(frozen=True)
class PeakMetrics:
    summary: PeakSummary
    days: list[PeakDay] = field(default_factory=list)
    peak_spend_share_percent: Decimal | None = None
    peak_day_ratio_percent: Decimal | None = None


def compute_peak_threshold(
    positive_daily_totals: list[Decimal],
    median_daily: Decimal,
    *,
    min_samples: int = 10,
    mad_multiplier: Decimal = Decimal("1.2"),
) -> Decimal:
    if len(positive_daily_totals) < min_samples:
        return median_daily * 2

    p90 = quantile(positive_daily_totals, 0.90)
    if p90 is None:
        p90 = median_daily * 2
    deviation = mad(positive_daily_totals, median_daily) or Decimal("0")
    return max(p90, median_daily + mad_multiplier * deviation)


def detect_peak_values(
    daily_totals: Iterable[Decimal],
    *,
    min_samples: int = 10,
    mad_multiplier: Decimal = Decimal("1.2"),
) -> list[Decimal]:
    """Values at or above the robust threshold of the positive subset."""
    positive = [value for value in daily_totals if value > 0]
    center = median(positive)
    if center is None or center <= 0:
        return []
    threshold = compute_peak_threshold(positive, center, min_samples=min_samples, mad_multiplier=mad_multiplier)
    return [value for value in positive if value >= threshold]


def _empty(month_total: Decimal) -> PeakMetrics:
    return PeakMetrics(summary=PeakSummary(count=0, total=Decimal("0"), share_percent=None, month_total=month_total))


def compute_peak_metrics(
    daily_totals: Mapping[date, Decimal],
    month_total: Decimal,
    days_in_month: int,
    *,
    min_samples: int = 10,
    mad_multiplier: Decimal = Decimal("1.2"),
) -> PeakMetrics:
    if month_total <= 0 or not daily_totals:
        return _empty(month_total)

    positive = [value for value in daily_totals.values() if value > 0]
    center = median(positive)
    if center is None or center <= 0:
        return _empty(month_total)

    threshold = compute_peak_threshold(positive, center, min_samples=min_samples, mad_multiplier=mad_multiplier)
    days = sorted(
        (
            PeakDay(day=day, amount=money(amount), share_percent=amount / month_total * 100)
            for day, amount in daily_totals.items()
            if amount >= threshold
        ),
        key=lambda row: row.amount,
        reverse=True,
    )

    total_peak = sum((row.amount for row in days), Decimal("0"))
    share = total_peak / month_total * 100 if total_peak > 0 else None
    ratio = money(Decimal(len(days)) / Decimal(days_in_month) * 100) if days_in_month > 0 else None

    return PeakMetrics(
        summary=PeakSummary(count=len(days), total=total_peak, share_percent=share, month_total=month_total),
        days=days,
        peak_spend_share_percent=share,
        peak_day_ratio_percent=ratio,
    )
