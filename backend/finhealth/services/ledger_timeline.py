"""Account balance reconstruction from transaction deltas and absolute adjustments.

Each account gets one sorted stream of ``BalanceEvent``. Replaying a stream up to
a boundary applies every event strictly before the boundary: transactions add
their signed delta, adjustments reset the balance to their stored amount.

Replay state lives in ``LedgerCursor`` values owned by the caller, so a
month-by-month loop advances each account once instead of rescanning.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from finhealth.core.cancellation import CancelEvent, raise_if_cancelled
from finhealth.core.exceptions import LedgerCursorError
from finhealth.services.snapshots import BalanceAdjustmentSnapshot, TransactionSnapshot


OPENING_BALANCE_WINDOW = timedelta(seconds=5)


@dataclass(frozen=True)
class BalanceEvent:
    occurred_at: datetime
    amount: Decimal
    is_adjustment: bool


@dataclass(frozen=True)
class LedgerCursor:
    index: int = 0
    balance: Decimal = Decimal("0")
    boundary: datetime | None = None


EventStream = dict[int, list[BalanceEvent]]
CursorState = dict[int, LedgerCursor]


def transaction_delta(transaction: TransactionSnapshot) -> Decimal:
    amount = transaction.money.amount
    return amount if transaction.is_income else -amount


def deltas_from_transactions(
    transactions: Iterable[TransactionSnapshot],
) -> list[tuple[int, datetime, Decimal]]:
    return [(txn.account_id, txn.occurred_at_utc, transaction_delta(txn)) for txn in transactions]


def deltas_from_adjustments(
    adjustments: Iterable[BalanceAdjustmentSnapshot],
) -> list[tuple[int, datetime, Decimal]]:
    return [(row.account_id, row.occurred_at_utc, row.amount) for row in adjustments]


def is_opening_balance_anchor(
    account_created_at: datetime,
    adjustment_occurred_at: datetime,
    *,
    window: timedelta = OPENING_BALANCE_WINDOW,
) -> bool:
    return abs(adjustment_occurred_at - account_created_at) <= window


def build_event_stream(
    account_ids: Iterable[int],
    account_created_at: Mapping[int, datetime],
    transaction_deltas: Iterable[tuple[int, datetime, Decimal]],
    adjustments: Iterable[tuple[int, datetime, Decimal]],
    *,
    opening_window: timedelta = OPENING_BALANCE_WINDOW,
    cancel_event: CancelEvent | None = None,
) -> EventStream:
    """Merge deltas and adjustments into one ordered stream per account.

    Order is timestamp ascending, then transactions before adjustments, then
    insertion sequence. Rows for accounts outside ``account_ids`` are ignored.
    An account whose only adjustment sits within ``opening_window`` of its
    creation gets that adjustment re-dated to the creation instant.
    """
    sequenced: dict[int, list[tuple[BalanceEvent, int]]] = {account_id: [] for account_id in account_ids}
    sequence = 0

    for account_id, occurred_at, delta in transaction_deltas:
        raise_if_cancelled(cancel_event)
        events = sequenced.get(account_id)
        if events is None:
            continue
        events.append((BalanceEvent(occurred_at, Decimal(delta), False), sequence))
        sequence += 1

    adjustments_by_account: dict[int, list[BalanceEvent]] = {}
    for account_id, occurred_at, amount in adjustments:
        adjustments_by_account.setdefault(account_id, []).append(
            BalanceEvent(occurred_at, Decimal(amount), True)
        )

    for account_id, account_adjustments in adjustments_by_account.items():
        raise_if_cancelled(cancel_event)
        events = sequenced.get(account_id)
        if events is None:
            continue
        account_adjustments.sort(key=lambda event: event.occurred_at)

        created_at = account_created_at.get(account_id)
        if (
            len(account_adjustments) == 1
            and created_at is not None
            and is_opening_balance_anchor(created_at, account_adjustments[0].occurred_at, window=opening_window)
        ):
            account_adjustments[0] = BalanceEvent(created_at, account_adjustments[0].amount, True)

        for event in account_adjustments:
            events.append((event, sequence))
            sequence += 1

    stream: EventStream = {}
    for account_id, events in sequenced.items():
        events.sort(key=lambda item: (item[0].occurred_at, 1 if item[0].is_adjustment else 0, item[1]))
        stream[account_id] = [event for event, _ in events]
    return stream


def apply_event(balance: Decimal, event: BalanceEvent) -> Decimal:
    return event.amount if event.is_adjustment else balance + event.amount


def new_cursor_state(account_ids: Iterable[int]) -> CursorState:
    return {account_id: LedgerCursor() for account_id in account_ids}


def advance_to_boundary(
    boundary_utc: datetime,
    event_stream: Mapping[int, list[BalanceEvent]],
    cursor_state: Mapping[int, LedgerCursor],
    *,
    cancel_event: CancelEvent | None = None,
) -> CursorState:
    """Return the cursor state after applying every event with ``occurred_at < boundary_utc``.

    Boundaries must be non-decreasing per account; going backwards raises
    ``LedgerCursorError`` instead of rescanning.
    """
    advanced: CursorState = {}
    for account_id, cursor in cursor_state.items():
        raise_if_cancelled(cancel_event)
        if cursor.boundary is not None and boundary_utc < cursor.boundary:
            raise LedgerCursorError(
                f"Account {account_id} cursor is at {cursor.boundary.isoformat()}; "
                f"cannot rewind to {boundary_utc.isoformat()}."
            )

        events = event_stream.get(account_id, [])
        index = cursor.index
        balance = cursor.balance
        while index < len(events) and events[index].occurred_at < boundary_utc:
            balance = apply_event(balance, events[index])
            index += 1

        advanced[account_id] = LedgerCursor(index=index, balance=balance, boundary=boundary_utc)
    return advanced


def balances(cursor_state: Mapping[int, LedgerCursor]) -> dict[int, Decimal]:
    return {account_id: cursor.balance for account_id, cursor in cursor_state.items()}


def balances_at(
    boundary_utc: datetime,
    event_stream: Mapping[int, list[BalanceEvent]],
    *,
    cancel_event: CancelEvent | None = None,
) -> dict[int, Decimal]:
    state = advance_to_boundary(
        boundary_utc,
        event_stream,
        new_cursor_state(event_stream.keys()),
        cancel_event=cancel_event,
    )
    return balances(state)
