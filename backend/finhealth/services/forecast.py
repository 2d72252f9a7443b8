"""Month-end spend forecast by weighted bootstrap over trailing daily expenses.

Recent days are sampled more often (exponential decay, lambda 0.02 is a ~35 day
half-life). The generator is seeded from the inputs, so identical inputs always
produce identical scenarios.
"""

from __future__ import annotations

import calendar
import hashlib
import math
import random
from bisect import bisect_left
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from finhealth.core.cancellation import CancelEvent, raise_if_cancelled
from finhealth.utils.decimal_math import round2, to_cents


SEED_BASE = 42


@dataclass(frozen=True)
class ScenarioTotals:
    optimistic_total: Decimal
    risk_total: Decimal
    optimistic_daily: Decimal
    risk_daily: Decimal


@dataclass(frozen=True)
class ForecastSummary:
    optimistic_total: Decimal | None
    risk_total: Decimal | None
    current_spent: Decimal | None
    baseline_limit: Decimal | None


@dataclass(frozen=True)
class ForecastSeries:
    days: list[int]
    actual: list[Decimal | None]
    optimistic: list[Decimal | None]
    risk: list[Decimal | None]
    baseline: Decimal | None


@dataclass(frozen=True)
class ForecastResult:
    summary: ForecastSummary
    series: ForecastSeries


@dataclass(frozen=True)
class ForecastWindow:
    is_current_month: bool
    last_date: date
    window_start: date
    pool_end: date
    days_in_month: int
    observed_days: int
    remaining_days: int

    @property
    def history_from_utc(self) -> datetime:
        return datetime.combine(self.window_start, time.min, tzinfo=timezone.utc)

    @property
    def history_to_utc(self) -> datetime:
        return datetime.combine(self.pool_end + timedelta(days=1), time.min, tzinfo=timezone.utc)


def resolve_forecast_window(year: int, month: int, now_utc: datetime, *, window_days: int = 180) -> ForecastWindow:
    days_in_month = calendar.monthrange(year, month)[1]
    is_current = now_utc.year == year and now_utc.month == month
    last_date = now_utc.date() if is_current else date(year, month, days_in_month)
    # today is still in progress, so the pool stops at yesterday
    pool_end = last_date - timedelta(days=1) if is_current else last_date
    observed_days = min(now_utc.day, days_in_month) if is_current else days_in_month
    if is_current and now_utc.day == days_in_month:
        remaining_days = 1
    else:
        remaining_days = max(days_in_month - observed_days, 0)

    return ForecastWindow(
        is_current_month=is_current,
        last_date=last_date,
        window_start=last_date - timedelta(days=window_days),
        pool_end=pool_end,
        days_in_month=days_in_month,
        observed_days=observed_days,
        remaining_days=remaining_days,
    )


def build_expense_pool(
    daily_totals: Mapping[date, Decimal],
    window_start: date,
    pool_end: date,
    *,
    max_days: int = 180,
) -> list[Decimal]:
    """Daily totals oldest to newest, zero-filled, starting no earlier than the first expense."""
    if not daily_totals:
        return []
    start = max(window_start, min(daily_totals))

    pool_days = max(0, min((pool_end - start).days + 1, max_days))
    return [daily_totals.get(start + timedelta(days=offset), Decimal("0")) for offset in range(pool_days)]


def build_sampling_cdf(pool_length: int, *, decay_lambda: float = 0.02) -> list[float]:
    weights_total = 0.0
    cdf: list[float] = []
    for position in range(pool_length):
        age = pool_length - 1 - position
        weights_total += math.exp(-decay_lambda * age)
        cdf.append(weights_total)
    return [value / weights_total for value in cdf]


def forecast_seed(
    year: int,
    month: int,
    observed_days: int,
    remaining_days: int,
    observed_cumulative_actual: Decimal,
    pool: Sequence[Decimal],
) -> int:
    parts = [SEED_BASE, year, month, observed_days, remaining_days, to_cents(observed_cumulative_actual)]
    parts.extend(to_cents(value) for value in pool)
    digest = hashlib.sha256("|".join(str(part) for part in parts).encode("ascii")).digest()
    return int.from_bytes(digest[:8], "big")


def _percentile_index(simulations: int, q: float) -> int:
    return max(0, min(simulations - 1, int(round(simulations * q))))


def simulate_month_end(
    pool: Sequence[Decimal],
    *,
    year: int,
    month: int,
    observed_days: int,
    remaining_days: int,
    observed_cumulative_actual: Decimal,
    simulations: int = 10_000,
    decay_lambda: float = 0.02,
    optimistic_quantile: float = 0.35,
    risk_quantile: float = 0.85,
    min_pool_days: int = 10,
    cancel_event: CancelEvent | None = None,
) -> ScenarioTotals | None:
    """Optimistic (P35) and risk (P85) month-end totals, or ``None`` when there is nothing to forecast."""
    if remaining_days <= 0 or len(pool) < min_pool_days:
        return None

    cdf = build_sampling_cdf(len(pool), decay_lambda=decay_lambda)
    rng = random.Random(
        forecast_seed(year, month, observed_days, remaining_days, observed_cumulative_actual, pool)
    )
    last_index = len(pool) - 1

    totals: list[Decimal] = []
    for run in range(simulations):
        if run % 1000 == 0:
            raise_if_cancelled(cancel_event)
        total = observed_cumulative_actual
        for _ in range(remaining_days):
            index = bisect_left(cdf, rng.random())
            total += pool[min(index, last_index)]
        totals.append(total)

    totals.sort()
    optimistic_total = totals[_percentile_index(simulations, optimistic_quantile)]
    risk_total = totals[_percentile_index(simulations, risk_quantile)]
    return ScenarioTotals(
        optimistic_total=optimistic_total,
        risk_total=risk_total,
        optimistic_daily=(optimistic_total - observed_cumulative_actual) / remaining_days,
        risk_daily=(risk_total - observed_cumulative_actual) / remaining_days,
    )


def _scenario_point(
    daily_rate: Decimal | None,
    day: int,
    observed_days: int,
    cumulative: Decimal,
    observed_cumulative: Decimal,
) -> Decimal | None:
    if daily_rate is None:
        return None
    if day <= observed_days:
        return round2(cumulative)
    return round2(observed_cumulative + daily_rate * (day - observed_days))


def build_forecast_series(
    year: int,
    month: int,
    month_daily_totals: Mapping[date, Decimal],
    window: ForecastWindow,
    scenarios: ScenarioTotals | None,
    baseline_limit: Decimal | None,
) -> tuple[ForecastSeries, Decimal]:
    """Cumulative actual/optimistic/risk series plus the spend counted as "current"."""
    optimistic_daily = scenarios.optimistic_daily if scenarios else None
    risk_daily = scenarios.risk_daily if scenarios else None

    days: list[int] = []
    actual: list[Decimal | None] = []
    optimistic: list[Decimal | None] = []
    risk: list[Decimal | None] = []
    cumulative = Decimal("0")
    observed_cumulative = Decimal("0")
    for day in range(1, window.days_in_month + 1):
        days.append(day)
        cumulative += month_daily_totals.get(date(year, month, day), Decimal("0"))
        if day <= window.observed_days:
            observed_cumulative = cumulative

        if window.is_current_month and day > window.observed_days:
            actual.append(None)
        else:
            actual.append(round2(cumulative))
        optimistic.append(_scenario_point(optimistic_daily, day, window.observed_days, cumulative, observed_cumulative))
        risk.append(_scenario_point(risk_daily, day, window.observed_days, cumulative, observed_cumulative))

    current_spent = observed_cumulative if window.is_current_month else cumulative
    series = ForecastSeries(days=days, actual=actual, optimistic=optimistic, risk=risk, baseline=baseline_limit)
    return series, current_spent


def forecast_month(
    *,
    year: int,
    month: int,
    month_daily_totals: Mapping[date, Decimal],
    history_daily_totals: Mapping[date, Decimal],
    now_utc: datetime,
    baseline_daily_rate: Decimal = Decimal("0"),
    average_days_in_month: Decimal = Decimal("30.44"),
    window_days: int = 180,
    simulations: int = 10_000,
    decay_lambda: float = 0.02,
    optimistic_quantile: float = 0.35,
    risk_quantile: float = 0.85,
    min_pool_days: int = 10,
    cancel_event: CancelEvent | None = None,
) -> ForecastResult:
    window = resolve_forecast_window(year, month, now_utc, window_days=window_days)
    pool = build_expense_pool(history_daily_totals, window.window_start, window.pool_end, max_days=window_days)

    observed_cumulative_actual = sum(
        (month_daily_totals.get(date(year, month, day), Decimal("0")) for day in range(1, window.observed_days + 1)),
        Decimal("0"),
    )

    scenarios = simulate_month_end(
        pool,
        year=year,
        month=month,
        observed_days=window.observed_days,
        remaining_days=window.remaining_days,
        observed_cumulative_actual=observed_cumulative_actual,
        simulations=simulations,
        decay_lambda=decay_lambda,
        optimistic_quantile=optimistic_quantile,
        risk_quantile=risk_quantile,
        min_pool_days=min_pool_days,
        cancel_event=cancel_event,
    )

    baseline_limit = baseline_daily_rate * average_days_in_month if baseline_daily_rate > 0 else None
    series, current_spent = build_forecast_series(year, month, month_daily_totals, window, scenarios, baseline_limit)

    summary = ForecastSummary(
        optimistic_total=scenarios.optimistic_total if scenarios else None,
        risk_total=scenarios.risk_total if scenarios else None,
        current_spent=current_spent,
        baseline_limit=baseline_limit,
    )
    return ForecastResult(summary=summary, series=series)
