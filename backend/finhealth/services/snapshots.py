"""Read-only snapshots handed to the analytics engine by the data-access layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from finhealth.models.enums import TransactionType


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency_code: str


@dataclass(frozen=True)
class TransactionSnapshot:
    account_id: int
    money: Money
    occurred_at_utc: datetime
    type: TransactionType
    category_id: int | None
    is_mandatory: bool = False
    is_transfer: bool = False

    @property
    def is_income(self) -> bool:
        return self.type == TransactionType.income

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.expense


@dataclass(frozen=True)
class BalanceAdjustmentSnapshot:
    account_id: int
    amount: Decimal
    occurred_at_utc: datetime


@dataclass(frozen=True)
class AccountSnapshot:
    id: int
    currency_code: str
    is_liquid: bool
    created_at_utc: datetime
    archived: bool = False


@dataclass(frozen=True)
class CategoryMeta:
    id: int
    name: str
    color: str
    is_mandatory: bool = False


UNCATEGORIZED = CategoryMeta(id=0, name="Uncategorized", color="#9e9e9e", is_mandatory=False)
