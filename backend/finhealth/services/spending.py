"""Expense totals bucketed by day, ISO week and month for the dashboard charts."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from finhealth.services.aggregation import add_months, days_in_month, iter_months
from finhealth.utils.decimal_math import money


@dataclass(frozen=True)
class SpendingPoint:
    year: int
    month: int
    day: int | None
    week: int | None
    amount: Decimal


@dataclass(frozen=True)
class SpendingBreakdown:
    days: list[SpendingPoint] = field(default_factory=list)
    weeks: list[SpendingPoint] = field(default_factory=list)
    months: list[SpendingPoint] = field(default_factory=list)


def spending_window_start(year: int, month: int, *, months: int = 12) -> tuple[int, int]:
    return add_months(year, month, -(months - 1))


def _day_points(totals: Mapping[date, Decimal], first_day: date, month_start: date, month_end: date) -> list[SpendingPoint]:
    points: list[SpendingPoint] = []
    cursor = max(first_day, month_start)
    while cursor <= month_end:
        points.append(SpendingPoint(cursor.year, cursor.month, cursor.day, None, money(totals.get(cursor, Decimal("0")))))
        cursor += timedelta(days=1)
    return points


def _week_points(totals: Mapping[date, Decimal], start: date, end_exclusive: date) -> list[SpendingPoint]:
    weeks: dict[tuple[int, int], Decimal] = {}
    cursor = start
    while cursor < end_exclusive:
        iso_year, iso_week, _ = cursor.isocalendar()
        key = (iso_year, iso_week)
        weeks[key] = weeks.get(key, Decimal("0")) + totals.get(cursor, Decimal("0"))
        cursor += timedelta(days=1)

    points: list[SpendingPoint] = []
    for (iso_year, iso_week), amount in sorted(weeks.items()):
        monday = date.fromisocalendar(iso_year, iso_week, 1)
        points.append(SpendingPoint(iso_year, monday.month, None, iso_week, money(amount)))
    return points


def _month_points(totals: Mapping[date, Decimal], first_day: date, window_start: tuple[int, int], selected: tuple[int, int]) -> list[SpendingPoint]:
    by_month: dict[tuple[int, int], Decimal] = {}
    for day, amount in totals.items():
        key = (day.year, day.month)
        by_month[key] = by_month.get(key, Decimal("0")) + amount

    start = max((first_day.year, first_day.month), window_start)
    return [
        SpendingPoint(year, month, None, None, money(by_month.get((year, month), Decimal("0"))))
        for year, month in iter_months(start, selected)
    ]


def build_spending_breakdown(
    expense_daily_totals: Mapping[date, Decimal],
    year: int,
    month: int,
    *,
    months: int = 12,
    weeks_lookback_months: int = 2,
) -> SpendingBreakdown:
    """Chart buckets ending at the selected month.

    ``expense_daily_totals`` should cover the trailing ``months`` months. Every
    series starts no earlier than the first recorded expense; with no expenses
    at all the day and month series are empty.
    """
    month_start = date(year, month, 1)
    month_end = date(year, month, days_in_month(year, month))
    next_year, next_month = add_months(year, month, 1)
    weeks_year, weeks_month = add_months(year, month, -weeks_lookback_months)
    weeks_start = date(weeks_year, weeks_month, 1)

    if not expense_daily_totals:
        return SpendingBreakdown(
            weeks=_week_points(expense_daily_totals, weeks_start, date(next_year, next_month, 1)),
        )

    first_day = min(expense_daily_totals)
    return SpendingBreakdown(
        days=_day_points(expense_daily_totals, first_day, month_start, month_end),
        weeks=_week_points(expense_daily_totals, max(first_day, weeks_start), date(next_year, next_month, 1)),
        months=_month_points(
            expense_daily_totals,
            first_day,
            spending_window_start(year, month, months=months),
            (year, month),
        ),
    )
