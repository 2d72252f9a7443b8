from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from finhealth.core.config import get_settings
from finhealth.core.logging_config import configure_logging
from finhealth.db.base import Base
from finhealth.db.session import SessionLocal, engine
from finhealth.models import Account, AccountBalanceAdjustment, Category, FxUsdRate, Transaction, User
from finhealth.models.enums import TransactionType
from finhealth.services.dashboard import get_dashboard
from finhealth.services.repositories import SqlFxRateSource, SqlLedgerRepository
from finhealth.utils.decimal_math import money


logger = logging.getLogger("finhealth.seed")

DEMO_EMAIL = "demo@finhealth.local"

# (name, color, mandatory, base daily amount, every n-th day)
_EXPENSE_PLAN = [
    ("Groceries", "#4caf50", True, Decimal("38.40"), 2),
    ("Rent", "#3f51b5", True, Decimal("1450.00"), 30),
    ("Dining out", "#ff9800", False, Decimal("27.90"), 3),
    ("Entertainment", "#e91e63", False, Decimal("64.00"), 9),
]


def _ensure_user(db) -> User:
    user = db.scalar(select(User).where(User.email == DEMO_EMAIL))
    if user is not None:
        return user
    user = User(email=DEMO_EMAIL, base_currency_code="USD")
    db.add(user)
    db.flush()
    return user


def _seed_rates(db, start: datetime) -> None:
    if db.scalar(select(FxUsdRate).limit(1)) is not None:
        return
    for offset, (eur, gbp) in enumerate([("0.92", "0.79"), ("0.91", "0.78"), ("0.93", "0.80")]):
        effective = start + timedelta(days=60 * offset)
        db.add(FxUsdRate(currency_code="EUR", effective_date=effective, rate=Decimal(eur)))
        db.add(FxUsdRate(currency_code="GBP", effective_date=effective, rate=Decimal(gbp)))


def _seed_ledger(db, user: User, start: datetime, now: datetime) -> None:
    if db.scalar(select(Account).where(Account.user_id == user.id).limit(1)) is not None:
        return

    checking = Account(user_id=user.id, name="Checking", currency_code="USD", is_liquid=True, created_at=start)
    savings = Account(user_id=user.id, name="Savings", currency_code="EUR", is_liquid=True, created_at=start)
    brokerage = Account(user_id=user.id, name="Brokerage", currency_code="USD", is_liquid=False, created_at=start)
    db.add_all([checking, savings, brokerage])
    db.flush()
    db.add_all(
        [
            AccountBalanceAdjustment(account_id=checking.id, amount=money(4200), occurred_at=start),
            AccountBalanceAdjustment(account_id=savings.id, amount=money(9000), occurred_at=start),
            AccountBalanceAdjustment(account_id=brokerage.id, amount=money(25000), occurred_at=start),
        ]
    )

    categories = {}
    for name, color, mandatory, _, _ in _EXPENSE_PLAN:
        category = Category(user_id=user.id, name=name, color=color, is_mandatory=mandatory)
        db.add(category)
        categories[name] = category
    salary = Category(user_id=user.id, name="Salary", color="#009688")
    db.add(salary)
    db.flush()

    day = start + timedelta(hours=12)
    index = 0
    while day < now:
        if day.day == 1:
            db.add(
                Transaction(
                    user_id=user.id,
                    account_id=checking.id,
                    category_id=salary.id,
                    type=TransactionType.income,
                    amount=money(5200),
                    currency_code="USD",
                    occurred_at=day,
                )
            )
        for name, _, mandatory, amount, every in _EXPENSE_PLAN:
            if index % every:
                continue
            # deterministic wobble so daily totals are not flat
            wobble = Decimal((index * 7) % 11 - 5) / Decimal("10")
            db.add(
                Transaction(
                    user_id=user.id,
                    account_id=checking.id,
                    category_id=categories[name].id,
                    type=TransactionType.expense,
                    amount=money(amount * (1 + wobble / 10)),
                    currency_code="USD",
                    occurred_at=day,
                    is_mandatory=mandatory,
                )
            )
        if index % 14 == 7:
            db.add(
                Transaction(
                    user_id=user.id,
                    account_id=savings.id,
                    type=TransactionType.expense,
                    amount=money(45),
                    currency_code="EUR",
                    occurred_at=day,
                )
            )
        day += timedelta(days=1)
        index += 1


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    Base.metadata.create_all(bind=engine)

    now = datetime.now(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc) - timedelta(days=180)

    with SessionLocal() as db:
        user = _ensure_user(db)
        _seed_rates(db, start)
        _seed_ledger(db, user, start, now)
        db.commit()

        dashboard = get_dashboard(
            SqlLedgerRepository(db),
            SqlFxRateSource(db),
            user_id=user.id,
            year=now.year,
            month=now.month,
            now_utc=now,
            settings=settings,
        )
        logger.info(
            "Synthetic data seeded: user=%s month_total=%s liquid_months=%s score=%s",
            user.id,
            dashboard.health.month_total,
            dashboard.health.liquid_months,
            dashboard.health.total_month_score,
        )


if __name__ == "__main__":
    main()
