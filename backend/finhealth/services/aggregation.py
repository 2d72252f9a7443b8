"""Calendar arithmetic and base-currency aggregation shared by the analytics entry points."""

from __future__ import annotations

import calendar
from collections.abc import Callable, Iterable, Iterator
from datetime import date, datetime, time, timezone
from decimal import Decimal

from finhealth.core.cancellation import CancelEvent, raise_if_cancelled
from finhealth.core.exceptions import ValidationError
from finhealth.services.cross_rates import FxRateTable
from finhealth.services.snapshots import TransactionSnapshot


# cancellation is polled every this many rows in per-transaction loops
CANCEL_CHECK_EVERY = 256

# trailing windows reach back a year and month ends roll forward one month
MIN_YEAR = 1900
MAX_YEAR = 9998


def validate_year_month(year: int, month: int) -> None:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}.")
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12.")


def add_months(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_start_utc(year: int, month: int) -> datetime:
    return datetime(year, month, 1, tzinfo=timezone.utc)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """``[start, end)`` of a calendar month in UTC."""
    next_year, next_month = add_months(year, month, 1)
    return month_start_utc(year, month), month_start_utc(next_year, next_month)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def day_start_utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def iter_months(start: tuple[int, int], end: tuple[int, int]) -> Iterator[tuple[int, int]]:
    """Inclusive (year, month) range."""
    year, month = start
    while (year, month) <= end:
        yield year, month
        year, month = add_months(year, month, 1)


def transaction_rate_pairs(transactions: Iterable[TransactionSnapshot]) -> Iterator[tuple[str, datetime]]:
    for txn in transactions:
        yield txn.money.currency_code, txn.occurred_at_utc


def convert_transactions(
    transactions: Iterable[TransactionSnapshot],
    rates: FxRateTable,
    *,
    cancel_event: CancelEvent | None = None,
) -> list[tuple[TransactionSnapshot, Decimal]]:
    converted: list[tuple[TransactionSnapshot, Decimal]] = []
    for position, txn in enumerate(transactions):
        if position % CANCEL_CHECK_EVERY == 0:
            raise_if_cancelled(cancel_event)
        converted.append((txn, rates.convert_money(txn.money, txn.occurred_at_utc)))
    return converted


def daily_totals(
    converted: Iterable[tuple[TransactionSnapshot, Decimal]],
    *,
    predicate: Callable[[TransactionSnapshot], bool] | None = None,
) -> dict[date, Decimal]:
    totals: dict[date, Decimal] = {}
    for txn, amount in converted:
        if predicate is not None and not predicate(txn):
            continue
        day = txn.occurred_at_utc.date()
        totals[day] = totals.get(day, Decimal("0")) + amount
    return totals
