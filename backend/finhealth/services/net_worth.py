from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from finhealth.core.cancellation import CancelEvent
from finhealth.core.config import Settings, get_settings
from finhealth.schemas.analytics import NetWorthSnapshotOut
from finhealth.services.aggregation import add_months, iter_months, month_bounds, month_start_utc
from finhealth.services.cross_rates import FxRateSource, rate_instant_before, resolve_rates
from finhealth.services.ledger_timeline import (
    advance_to_boundary,
    build_event_stream,
    deltas_from_adjustments,
    deltas_from_transactions,
    new_cursor_state,
)
from finhealth.services.repositories import LedgerRepository, as_utc
from finhealth.utils.decimal_math import money


logger = logging.getLogger("finhealth.net_worth")


def get_net_worth_trend(
    repo: LedgerRepository,
    fx_source: FxRateSource,
    *,
    user_id: int,
    months: int,
    now_utc: datetime | None = None,
    settings: Settings | None = None,
    cancel_event: CancelEvent | None = None,
) -> list[NetWorthSnapshotOut]:
    """Month-end net worth of every account, archived ones included.

    The series starts at the later of the requested start month and the first
    month holding any account, transaction or adjustment, and ends at the
    current month.
    """
    settings = settings or get_settings()
    if months <= 0:
        return []
    months = min(months, settings.net_worth_max_months)
    now_utc = as_utc(now_utc) if now_utc is not None else datetime.now(timezone.utc)

    accounts = repo.get_account_snapshots(user_id, include_archived=True)
    if not accounts:
        return []

    base_currency = repo.resolve_base_currency(user_id)
    account_ids = [account.id for account in accounts]
    transactions = repo.get_transaction_snapshots(user_id)
    adjustments = repo.get_account_adjustment_snapshots(user_id, account_ids)

    earliest = min(
        [account.created_at_utc for account in accounts]
        + [txn.occurred_at_utc for txn in transactions]
        + [row.occurred_at_utc for row in adjustments]
    )
    current = (now_utc.year, now_utc.month)
    start = max(add_months(now_utc.year, now_utc.month, -(months - 1)), (earliest.year, earliest.month))
    if start > current:
        return []

    window = list(iter_months(start, current))
    rates = resolve_rates(
        (
            (account.currency_code, rate_instant_before(month_bounds(year, month)[1]))
            for year, month in window
            for account in accounts
        ),
        base_currency,
        fx_source,
        cancel_event=cancel_event,
    )

    stream = build_event_stream(
        account_ids,
        {account.id: account.created_at_utc for account in accounts},
        deltas_from_transactions(transactions),
        deltas_from_adjustments(adjustments),
        opening_window=timedelta(seconds=settings.opening_balance_window_seconds),
        cancel_event=cancel_event,
    )
    cursor = advance_to_boundary(month_start_utc(*start), stream, new_cursor_state(account_ids), cancel_event=cancel_event)

    trend: list[NetWorthSnapshotOut] = []
    for year, month in window:
        month_end = month_bounds(year, month)[1]
        cursor = advance_to_boundary(month_end, stream, cursor, cancel_event=cancel_event)
        valuation_instant = rate_instant_before(month_end)
        net_worth = sum(
            rates.convert(cursor[account.id].balance, account.currency_code, valuation_instant)
            for account in accounts
        )
        trend.append(NetWorthSnapshotOut(year=year, month=month, net_worth=money(net_worth)))

    logger.debug("Net worth trend user=%s months=%d", user_id, len(trend))
    return trend
