"""Liquidity runway: months of liquid assets at the trailing average daily spend."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from finhealth.core.cancellation import CancelEvent
from finhealth.services.cross_rates import FxRateTable, rate_instant_before
from finhealth.services.ledger_timeline import (
    OPENING_BALANCE_WINDOW,
    balances_at,
    build_event_stream,
    deltas_from_adjustments,
    deltas_from_transactions,
)
from finhealth.services.snapshots import AccountSnapshot, BalanceAdjustmentSnapshot, TransactionSnapshot
from finhealth.utils.decimal_math import money


SECONDS_PER_DAY = Decimal("86400")


@dataclass(frozen=True)
class Liquidity:
    liquid_assets: Decimal
    liquid_months: Decimal | None
    status: str | None
    average_daily_expense: Decimal


def compute_average_daily_expense(
    expenses: Iterable[tuple[datetime, Decimal]],
    earliest_tracked_at: datetime | None,
    from_utc: datetime,
    to_utc: datetime,
) -> Decimal:
    """Base-currency expense inside ``[from_utc, to_utc)`` spread over the tracked part of the window."""
    if earliest_tracked_at is None or earliest_tracked_at >= to_utc:
        return Decimal("0")

    total = sum((amount for occurred_at, amount in expenses if from_utc <= occurred_at < to_utc), Decimal("0"))
    effective_start = max(earliest_tracked_at, from_utc)
    calendar_days = Decimal(str((to_utc - effective_start).total_seconds())) / SECONDS_PER_DAY
    if calendar_days <= 0:
        return Decimal("0")
    return total / calendar_days


def trailing_window(at_utc: datetime, *, window_days: int = 180) -> tuple[datetime, datetime]:
    return at_utc - timedelta(days=window_days), at_utc


def liquid_balances_at(
    accounts: Sequence[AccountSnapshot],
    transactions: Iterable[TransactionSnapshot],
    adjustments: Iterable[BalanceAdjustmentSnapshot],
    at_utc: datetime,
    *,
    opening_window: timedelta = OPENING_BALANCE_WINDOW,
    cancel_event: CancelEvent | None = None,
) -> dict[int, Decimal]:
    liquid = [account for account in accounts if account.is_liquid]
    stream = build_event_stream(
        [account.id for account in liquid],
        {account.id: account.created_at_utc for account in liquid},
        deltas_from_transactions(transactions),
        deltas_from_adjustments(adjustments),
        opening_window=opening_window,
        cancel_event=cancel_event,
    )
    return balances_at(at_utc, stream, cancel_event=cancel_event)


def compute_liquid_assets(
    accounts: Sequence[AccountSnapshot],
    balances: Mapping[int, Decimal],
    rates: FxRateTable,
    at_utc: datetime,
) -> Decimal:
    rate_at = rate_instant_before(at_utc)
    total = Decimal("0")
    for account in accounts:
        if not account.is_liquid:
            continue
        total += rates.convert(balances.get(account.id, Decimal("0")), account.currency_code, rate_at)
    return money(total)


def compute_liquid_months(
    liquid_assets: Decimal,
    average_daily_expense: Decimal,
    *,
    average_days_in_month: Decimal = Decimal("30.44"),
) -> Decimal | None:
    monthly_expense = average_daily_expense * average_days_in_month
    if monthly_expense <= 0:
        return None
    return max(Decimal("0"), liquid_assets / monthly_expense)


def resolve_liquid_status(liquid_months: Decimal | None) -> str | None:
    if liquid_months is None:
        return None
    if liquid_months > 6:
        return "good"
    if liquid_months >= 3:
        return "average"
    return "poor"


def compute_liquidity(
    liquid_assets: Decimal,
    average_daily_expense: Decimal,
    *,
    average_days_in_month: Decimal = Decimal("30.44"),
) -> Liquidity:
    liquid_months = compute_liquid_months(
        liquid_assets,
        average_daily_expense,
        average_days_in_month=average_days_in_month,
    )
    return Liquidity(
        liquid_assets=liquid_assets,
        liquid_months=liquid_months,
        status=resolve_liquid_status(liquid_months),
        average_daily_expense=average_daily_expense,
    )
