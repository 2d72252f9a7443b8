from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from fakes import utc
from finhealth.core.config import Settings
from finhealth.core.exceptions import FxRateNotFoundError, ValidationError
from finhealth.db.base import Base
from finhealth.models import Account, AccountBalanceAdjustment, Category, FxUsdRate, Transaction, User
from finhealth.models.enums import TransactionType
from finhealth.services.dashboard import get_dashboard
from finhealth.services.repositories import SqlFxRateSource, SqlLedgerRepository, as_utc, utc_day


def _session() -> Session:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)()


def _seed(db: Session) -> tuple[User, Account, Account]:
    user = User(email="owner@test.com", base_currency_code="usd", created_at=utc(2024, 1, 1))
    other = User(email="other@test.com", base_currency_code="EUR", created_at=utc(2024, 1, 1))
    db.add_all([user, other])
    db.flush()
    cash = Account(user_id=user.id, name="Cash", currency_code="USD", is_liquid=True, created_at=utc(2024, 1, 1))
    savings = Account(
        user_id=user.id,
        name="Old savings",
        currency_code="EUR",
        is_liquid=True,
        is_archived=True,
        created_at=utc(2024, 1, 1),
    )
    foreign = Account(user_id=other.id, name="Other", currency_code="EUR", created_at=utc(2024, 1, 1))
    db.add_all([cash, savings, foreign])
    db.flush()
    food = Category(user_id=user.id, name="Food", color="#ff9800", is_mandatory=False)
    db.add(food)
    db.flush()
    db.add_all(
        [
            Transaction(
                user_id=user.id,
                account_id=cash.id,
                category_id=food.id,
                type=TransactionType.expense,
                amount=Decimal("12.50"),
                currency_code="USD",
                occurred_at=utc(2024, 3, 2, 9),
            ),
            Transaction(
                user_id=user.id,
                account_id=cash.id,
                category_id=food.id,
                type=TransactionType.expense,
                amount=Decimal("7.50"),
                currency_code="USD",
                occurred_at=utc(2024, 3, 2, 18),
            ),
            Transaction(
                user_id=user.id,
                account_id=cash.id,
                category_id=None,
                type=TransactionType.income,
                amount=Decimal("1000.00"),
                currency_code="USD",
                occurred_at=utc(2024, 3, 1, 9),
            ),
            Transaction(
                user_id=user.id,
                account_id=cash.id,
                type=TransactionType.expense,
                amount=Decimal("300.00"),
                currency_code="USD",
                occurred_at=utc(2024, 2, 20),
                is_transfer=True,
            ),
            Transaction(
                user_id=user.id,
                account_id=savings.id,
                type=TransactionType.expense,
                amount=Decimal("5.00"),
                currency_code="EUR",
                occurred_at=utc(2024, 3, 4),
            ),
            Transaction(
                user_id=other.id,
                account_id=foreign.id,
                type=TransactionType.expense,
                amount=Decimal("99.00"),
                currency_code="EUR",
                occurred_at=utc(2024, 3, 2),
            ),
            AccountBalanceAdjustment(account_id=cash.id, amount=Decimal("250.00"), occurred_at=utc(2024, 1, 1, 0, 0, 1)),
            AccountBalanceAdjustment(account_id=foreign.id, amount=Decimal("1.00"), occurred_at=utc(2024, 1, 1)),
            FxUsdRate(currency_code="EUR", effective_date=utc(2024, 1, 1), rate=Decimal("0.9")),
            FxUsdRate(currency_code="EUR", effective_date=utc(2024, 3, 3, 12), rate=Decimal("0.8")),
        ]
    )
    db.commit()
    return user, cash, savings


def test_transaction_filters_are_scoped_to_user_and_window() -> None:
    db = _session()
    user, cash, savings = _seed(db)
    repo = SqlLedgerRepository(db)

    rows = repo.get_transaction_snapshots(user.id, from_utc=utc(2024, 3, 1), to_utc=utc(2024, 3, 2, 18))
    assert [row.money.amount for row in rows] == [Decimal("1000.00"), Decimal("12.50")]
    assert all(row.occurred_at_utc.tzinfo is not None for row in rows)

    expenses = repo.get_transaction_snapshots(user.id, exclude_transfers=True, type=TransactionType.expense)
    assert [row.money.amount for row in expenses] == [Decimal("12.50"), Decimal("7.50"), Decimal("5.00")]

    active = repo.get_transaction_snapshots(user.id, exclude_archived_accounts=True, account_ids=[cash.id, savings.id])
    assert {row.account_id for row in active} == {cash.id}


def test_account_adjustment_and_category_snapshots() -> None:
    db = _session()
    user, cash, savings = _seed(db)
    repo = SqlLedgerRepository(db)

    assert [row.id for row in repo.get_account_snapshots(user.id, include_archived=False)] == [cash.id]
    everything = repo.get_account_snapshots(user.id, include_archived=True)
    assert [(row.id, row.archived) for row in everything] == [(cash.id, False), (savings.id, True)]

    adjustments = repo.get_account_adjustment_snapshots(user.id, [cash.id, savings.id])
    assert [(row.account_id, row.amount) for row in adjustments] == [(cash.id, Decimal("250.00"))]
    assert repo.get_account_adjustment_snapshots(user.id, [cash.id], before_utc=utc(2024, 1, 1)) == []
    assert repo.get_account_adjustment_snapshots(user.id, []) == []

    assert [(row.name, row.color) for row in repo.get_category_meta(user.id)] == [("Food", "#ff9800")]
    assert repo.resolve_base_currency(user.id) == "USD"
    with pytest.raises(ValidationError):
        repo.resolve_base_currency(404)


def test_activity_queries() -> None:
    db = _session()
    user, _, _ = _seed(db)
    repo = SqlLedgerRepository(db)

    assert repo.get_earliest_occurred_at_before(user.id, utc(2024, 4, 1)) == utc(2024, 3, 1, 9)
    assert repo.get_earliest_occurred_at_before(user.id, utc(2024, 4, 1), exclude_transfers=False) == utc(2024, 2, 20)
    assert repo.get_earliest_occurred_at_before(user.id, utc(2024, 1, 1)) is None
    assert repo.get_distinct_expense_days_count(user.id) == 2


def test_expense_days_are_bucketed_by_utc_date() -> None:
    postgres_sql = str(utc_day(Transaction.occurred_at, "postgresql").compile(dialect=postgresql.dialect()))
    sqlite_sql = str(utc_day(Transaction.occurred_at, "sqlite").compile(dialect=sqlite.dialect()))

    assert "timezone(" in postgres_sql
    assert "timezone(" not in sqlite_sql


def test_fx_source_picks_latest_rate_effective_by_end_of_day() -> None:
    db = _session()
    _seed(db)
    source = SqlFxRateSource(db)

    units = source.units_per_usd(
        {("EUR", date(2023, 6, 1)), ("EUR", date(2024, 3, 2)), ("EUR", date(2024, 3, 3)), ("USD", date(2024, 3, 3))}
    )

    assert units[("EUR", date(2023, 6, 1))] == Decimal("0.9")
    assert units[("EUR", date(2024, 3, 2))] == Decimal("0.9")
    assert units[("EUR", date(2024, 3, 3))] == Decimal("0.8")
    assert units[("USD", date(2024, 3, 3))] == Decimal("1")

    with pytest.raises(FxRateNotFoundError):
        source.units_per_usd({("JPY", date(2024, 3, 3))})


def test_as_utc_marks_naive_values() -> None:
    assert as_utc(datetime(2024, 1, 1)) == utc(2024, 1, 1)


def test_dashboard_over_sql_adapters() -> None:
    db = _session()
    user, _, _ = _seed(db)

    dashboard = get_dashboard(
        SqlLedgerRepository(db),
        SqlFxRateSource(db),
        user_id=user.id,
        year=2024,
        month=3,
        now_utc=utc(2024, 3, 10),
        settings=Settings(forecast_simulations=100),
    )

    assert dashboard.health.month_income == Decimal("1000.00")
    assert dashboard.health.month_total == Decimal("26.25")
    assert dashboard.health.liquid_assets == Decimal("930.00")
    assert [item.name for item in dashboard.categories.items] == ["Food", "Uncategorized"]
