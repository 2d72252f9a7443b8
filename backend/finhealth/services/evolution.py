"""Month-by-month health metrics over a trailing window ending at the current month."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import chain

from finhealth.core.cancellation import CancelEvent
from finhealth.core.config import Settings, get_settings
from finhealth.core.exceptions import ValidationError
from finhealth.schemas.analytics import EvolutionMonthOut
from finhealth.services.aggregation import (
    MIN_YEAR,
    add_months,
    convert_transactions,
    daily_totals,
    days_in_month,
    iter_months,
    month_bounds,
    month_start_utc,
)
from finhealth.services.cross_rates import FxRateSource, FxRateTable, rate_instant_before, resolve_rates
from finhealth.services.ledger_timeline import (
    advance_to_boundary,
    balances,
    build_event_stream,
    deltas_from_adjustments,
    deltas_from_transactions,
    new_cursor_state,
)
from finhealth.services.month_score import compute_month_score
from finhealth.services.peaks import compute_peak_metrics
from finhealth.services.repositories import LedgerRepository, as_utc
from finhealth.services.snapshots import AccountSnapshot, TransactionSnapshot
from finhealth.services.stability import compute_stability
from finhealth.utils.decimal_math import money, round2, round_int


logger = logging.getLogger("finhealth.evolution")


def resolve_window_months(months: int, *, default_months: int = 120) -> int:
    return months if months > 0 else default_months


def _valued_total(
    accounts: list[AccountSnapshot],
    account_balances: dict[int, Decimal],
    rates: FxRateTable,
    at: datetime,
) -> Decimal:
    return sum(
        (rates.convert(account_balances.get(account.id, Decimal("0")), account.currency_code, at) for account in accounts),
        Decimal("0"),
    )


def _month_row(
    year: int,
    month: int,
    converted: list[tuple[TransactionSnapshot, Decimal]],
    net_worth: Decimal,
    liquid_assets: Decimal,
    settings: Settings,
) -> EvolutionMonthOut:
    income = sum((amount for txn, amount in converted if txn.is_income), Decimal("0"))
    expenses = [(txn, amount) for txn, amount in converted if txn.is_expense]
    expense_daily = daily_totals(expenses)
    discretionary_daily = daily_totals(expenses, predicate=lambda txn: not txn.is_mandatory)

    month_total = sum(expense_daily.values(), Decimal("0"))
    discretionary_total = sum(discretionary_daily.values(), Decimal("0"))
    # mean over days that actually had spending
    mean_daily = money(month_total / len(expense_daily)) if expense_daily else money(0)
    savings_rate = round2((income - month_total) / income) if income > 0 else None
    discretionary_percent = round2(discretionary_total / month_total * 100) if month_total > 0 else money(0)

    stability = compute_stability(expense_daily.values(), min_days=settings.stability_min_days)
    peaks = compute_peak_metrics(
        discretionary_daily,
        month_total,
        days_in_month(year, month),
        min_samples=settings.peak_min_samples,
        mad_multiplier=settings.peak_mad_multiplier,
    )
    peak_day_ratio = peaks.peak_day_ratio_percent if discretionary_daily else None

    liquid_months = None
    if mean_daily > 0:
        liquid_months = round2(liquid_assets / (mean_daily * settings.average_days_in_month))

    return EvolutionMonthOut(
        year=year,
        month=month,
        has_data=True,
        savings_rate=savings_rate,
        stability_index=round2(stability.index) if stability else None,
        stability_score=round_int(stability.score) if stability else None,
        stability_status=stability.status if stability else None,
        stability_action_code=stability.action_code if stability else None,
        discretionary_percent=discretionary_percent,
        net_worth=round2(net_worth),
        liquid_months=liquid_months,
        mean_daily=mean_daily,
        peak_day_ratio=peak_day_ratio,
        peak_spend_share_percent=round2(peaks.peak_spend_share_percent),
        total_month_score=compute_month_score(
            savings_rate=savings_rate,
            liquid_months=liquid_months,
            stability_score=stability.score if stability else None,
            discretionary_share_percent=discretionary_percent,
            peak_spend_share_percent=peaks.peak_spend_share_percent,
            min_signals=settings.month_score_min_signals,
            cushion_saturation_months=settings.cushion_saturation_months,
        ),
    )


def get_evolution(
    repo: LedgerRepository,
    fx_source: FxRateSource,
    *,
    user_id: int,
    months: int,
    now_utc: datetime | None = None,
    settings: Settings | None = None,
    cancel_event: CancelEvent | None = None,
) -> list[EvolutionMonthOut]:
    """One row per month from ``months - 1`` months ago through the current month.

    Months without income or expenses come back with ``has_data=False`` and
    no metrics. Balances are replayed once, front to back, through a single
    ledger cursor.
    """
    settings = settings or get_settings()
    now_utc = as_utc(now_utc) if now_utc is not None else datetime.now(timezone.utc)
    started = time.monotonic()
    window_months = resolve_window_months(months, default_months=settings.evolution_default_months)
    current = (now_utc.year, now_utc.month)
    first = add_months(now_utc.year, now_utc.month, -(window_months - 1))
    if first[0] < MIN_YEAR:
        raise ValidationError(f"Window of {window_months} months reaches before {MIN_YEAR}.")
    window_start = month_start_utc(*first)

    base_currency = repo.resolve_base_currency(user_id)
    accounts = repo.get_account_snapshots(user_id, include_archived=False)
    account_ids = [account.id for account in accounts]
    liquid_accounts = [account for account in accounts if account.is_liquid]
    adjustments = repo.get_account_adjustment_snapshots(user_id, account_ids)
    transactions = repo.get_transaction_snapshots(user_id, exclude_archived_accounts=True)

    window_transactions = [
        txn for txn in transactions if not txn.is_transfer and txn.occurred_at_utc >= window_start
    ]
    months_with_data = sorted({(txn.occurred_at_utc.year, txn.occurred_at_utc.month) for txn in window_transactions})

    valuation_pairs = [
        (account.currency_code, rate_instant_before(month_bounds(year, month)[1]))
        for year, month in months_with_data
        for account in accounts
    ]
    rates = resolve_rates(
        chain(((txn.money.currency_code, txn.occurred_at_utc) for txn in window_transactions), valuation_pairs),
        base_currency,
        fx_source,
        cancel_event=cancel_event,
    )

    by_month: dict[tuple[int, int], list[tuple[TransactionSnapshot, Decimal]]] = {}
    for txn, amount in convert_transactions(window_transactions, rates, cancel_event=cancel_event):
        by_month.setdefault((txn.occurred_at_utc.year, txn.occurred_at_utc.month), []).append((txn, amount))

    stream = build_event_stream(
        account_ids,
        {account.id: account.created_at_utc for account in accounts},
        deltas_from_transactions(transactions),
        deltas_from_adjustments(adjustments),
        opening_window=timedelta(seconds=settings.opening_balance_window_seconds),
        cancel_event=cancel_event,
    )
    cursor = advance_to_boundary(window_start, stream, new_cursor_state(account_ids), cancel_event=cancel_event)

    rows: list[EvolutionMonthOut] = []
    for year, month in iter_months(first, current):
        month_end = month_bounds(year, month)[1]
        cursor = advance_to_boundary(month_end, stream, cursor, cancel_event=cancel_event)

        converted = by_month.get((year, month))
        if not converted:
            rows.append(EvolutionMonthOut(year=year, month=month, has_data=False))
            continue

        valuation_instant = rate_instant_before(month_end)
        account_balances = balances(cursor)
        rows.append(
            _month_row(
                year,
                month,
                converted,
                _valued_total(accounts, account_balances, rates, valuation_instant),
                _valued_total(liquid_accounts, account_balances, rates, valuation_instant),
                settings,
            )
        )

    logger.info(
        "Evolution ready user=%s months=%d fx_pairs=%d %.2fms",
        user_id,
        len(rows),
        len(rates),
        (time.monotonic() - started) * 1000,
    )
    return rows
