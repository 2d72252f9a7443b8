from __future__ import annotations

from bisect import bisect_left
from collections.abc import Collection, Iterable
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from finhealth.core.exceptions import FxRateNotFoundError, ValidationError
from finhealth.models.account import Account, AccountBalanceAdjustment
from finhealth.models.category import Category
from finhealth.models.enums import TransactionType
from finhealth.models.fx_rate import FxUsdRate
from finhealth.models.transaction import Transaction
from finhealth.models.user import User
from finhealth.services.cross_rates import USD, RateKey, normalize_currency_code
from finhealth.services.snapshots import (
    AccountSnapshot,
    BalanceAdjustmentSnapshot,
    CategoryMeta,
    Money,
    TransactionSnapshot,
)


class LedgerRepository(Protocol):
    def get_transaction_snapshots(
        self,
        user_id: int,
        *,
        from_utc: datetime | None = None,
        to_utc: datetime | None = None,
        exclude_transfers: bool = False,
        type: TransactionType | None = None,
        account_ids: Collection[int] | None = None,
        exclude_archived_accounts: bool = False,
    ) -> list[TransactionSnapshot]: ...

    def get_account_snapshots(self, user_id: int, *, include_archived: bool) -> list[AccountSnapshot]: ...

    def get_account_adjustment_snapshots(
        self,
        user_id: int,
        account_ids: Collection[int],
        *,
        before_utc: datetime | None = None,
    ) -> list[BalanceAdjustmentSnapshot]: ...

    def resolve_base_currency(self, user_id: int) -> str: ...

    def get_category_meta(self, user_id: int) -> list[CategoryMeta]: ...

    def get_earliest_occurred_at_before(
        self,
        user_id: int,
        before_utc: datetime,
        *,
        exclude_transfers: bool = True,
    ) -> datetime | None: ...

    def get_distinct_expense_days_count(self, user_id: int) -> int: ...


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day(column, dialect_name: str):
    """Calendar day of a timestamp column in UTC."""
    if dialect_name == "postgresql":
        # timestamptz dates follow the session time zone otherwise
        return func.date(func.timezone("UTC", column))
    return func.date(column)


def _transaction_snapshot(row: Transaction) -> TransactionSnapshot:
    return TransactionSnapshot(
        account_id=row.account_id,
        money=Money(amount=Decimal(str(row.amount)), currency_code=row.currency_code),
        occurred_at_utc=as_utc(row.occurred_at),
        type=row.type,
        category_id=row.category_id,
        is_mandatory=bool(row.is_mandatory),
        is_transfer=bool(row.is_transfer),
    )


class SqlLedgerRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_transaction_snapshots(
        self,
        user_id: int,
        *,
        from_utc: datetime | None = None,
        to_utc: datetime | None = None,
        exclude_transfers: bool = False,
        type: TransactionType | None = None,
        account_ids: Collection[int] | None = None,
        exclude_archived_accounts: bool = False,
    ) -> list[TransactionSnapshot]:
        """Transactions with ``from_utc <= occurred_at < to_utc`` in insertion order per timestamp."""
        query = select(Transaction).where(Transaction.user_id == user_id)
        if from_utc is not None:
            query = query.where(Transaction.occurred_at >= from_utc)
        if to_utc is not None:
            query = query.where(Transaction.occurred_at < to_utc)
        if exclude_transfers:
            query = query.where(Transaction.is_transfer.is_(False))
        if type is not None:
            query = query.where(Transaction.type == type)
        if account_ids is not None:
            query = query.where(Transaction.account_id.in_(list(account_ids)))
        if exclude_archived_accounts:
            query = query.join(Account, Account.id == Transaction.account_id).where(Account.is_archived.is_(False))
        query = query.order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        return [_transaction_snapshot(row) for row in self.db.scalars(query).all()]

    def get_account_snapshots(self, user_id: int, *, include_archived: bool) -> list[AccountSnapshot]:
        query = select(Account).where(Account.user_id == user_id)
        if not include_archived:
            query = query.where(Account.is_archived.is_(False))
        rows = self.db.scalars(query.order_by(Account.id.asc())).all()
        return [
            AccountSnapshot(
                id=row.id,
                currency_code=row.currency_code,
                is_liquid=bool(row.is_liquid),
                created_at_utc=as_utc(row.created_at),
                archived=bool(row.is_archived),
            )
            for row in rows
        ]

    def get_account_adjustment_snapshots(
        self,
        user_id: int,
        account_ids: Collection[int],
        *,
        before_utc: datetime | None = None,
    ) -> list[BalanceAdjustmentSnapshot]:
        if not account_ids:
            return []
        query = (
            select(AccountBalanceAdjustment)
            .join(Account, Account.id == AccountBalanceAdjustment.account_id)
            .where(
                Account.user_id == user_id,
                AccountBalanceAdjustment.account_id.in_(list(account_ids)),
            )
        )
        if before_utc is not None:
            query = query.where(AccountBalanceAdjustment.occurred_at < before_utc)
        query = query.order_by(AccountBalanceAdjustment.occurred_at.asc(), AccountBalanceAdjustment.id.asc())
        return [
            BalanceAdjustmentSnapshot(
                account_id=row.account_id,
                amount=Decimal(str(row.amount)),
                occurred_at_utc=as_utc(row.occurred_at),
            )
            for row in self.db.scalars(query).all()
        ]

    def resolve_base_currency(self, user_id: int) -> str:
        code = self.db.scalar(select(User.base_currency_code).where(User.id == user_id))
        if code is None:
            raise ValidationError("User not found.")
        return normalize_currency_code(code)

    def get_category_meta(self, user_id: int) -> list[CategoryMeta]:
        rows = self.db.scalars(
            select(Category).where(Category.user_id == user_id).order_by(Category.id.asc())
        ).all()
        return [
            CategoryMeta(id=row.id, name=row.name, color=row.color, is_mandatory=bool(row.is_mandatory))
            for row in rows
        ]

    def get_earliest_occurred_at_before(
        self,
        user_id: int,
        before_utc: datetime,
        *,
        exclude_transfers: bool = True,
    ) -> datetime | None:
        query = select(func.min(Transaction.occurred_at)).where(
            Transaction.user_id == user_id,
            Transaction.occurred_at < before_utc,
        )
        if exclude_transfers:
            query = query.where(Transaction.is_transfer.is_(False))
        earliest = self.db.scalar(query)
        return as_utc(earliest) if earliest is not None else None

    def get_distinct_expense_days_count(self, user_id: int) -> int:
        day = utc_day(Transaction.occurred_at, self.db.get_bind().dialect.name)
        count = self.db.scalar(
            select(func.count(distinct(day))).where(
                Transaction.user_id == user_id,
                Transaction.type == TransactionType.expense,
                Transaction.is_transfer.is_(False),
            )
        )
        return int(count or 0)


class SqlFxRateSource:
    """USD-based rate store: a day's rate is the latest one effective before the day ends,
    falling back to the earliest known rate when the day predates all history."""

    def __init__(self, db: Session):
        self.db = db

    def _history(self, currencies: Iterable[str]) -> dict[str, list[tuple[datetime, Decimal]]]:
        rows = self.db.execute(
            select(FxUsdRate.currency_code, FxUsdRate.effective_date, FxUsdRate.rate)
            .where(FxUsdRate.currency_code.in_(list(currencies)))
            .order_by(FxUsdRate.currency_code.asc(), FxUsdRate.effective_date.asc())
        ).all()
        history: dict[str, list[tuple[datetime, Decimal]]] = {}
        for currency_code, effective_date, rate in rows:
            history.setdefault(normalize_currency_code(currency_code), []).append(
                (as_utc(effective_date), Decimal(str(rate)))
            )
        return history

    def units_per_usd(self, requests: Collection[RateKey]) -> dict[RateKey, Decimal]:
        currencies = {currency for currency, _ in requests if currency != USD}
        history = self._history(currencies) if currencies else {}

        effective_dates = {currency: [effective for effective, _ in rows] for currency, rows in history.items()}

        resolved: dict[RateKey, Decimal] = {}
        for currency, day in requests:
            if currency == USD:
                resolved[(currency, day)] = Decimal("1")
                continue
            rows = history.get(currency)
            if not rows:
                raise FxRateNotFoundError(currency, day)
            day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)
            position = bisect_left(effective_dates[currency], day_end) - 1
            resolved[(currency, day)] = rows[position][1] if position >= 0 else rows[0][1]
        return resolved
