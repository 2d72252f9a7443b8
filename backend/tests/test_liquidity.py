from datetime import date
from decimal import Decimal

import pytest

from fakes import FakeFxRateSource, account, adjustment, expense, income, utc
from finhealth.core.exceptions import FxRateNotFoundError
from finhealth.services.cross_rates import rate_instant_before, resolve_rates
from finhealth.services.liquidity import (
    compute_average_daily_expense,
    compute_liquid_assets,
    compute_liquid_months,
    compute_liquidity,
    liquid_balances_at,
    resolve_liquid_status,
    trailing_window,
)


def test_runway_example_is_average() -> None:
    liquidity = compute_liquidity(Decimal("12000"), Decimal("100"))

    assert liquidity.liquid_months is not None
    assert round(liquidity.liquid_months, 2) == Decimal("3.94")
    assert liquidity.status == "average"


def test_runway_is_undefined_without_spending() -> None:
    liquidity = compute_liquidity(Decimal("5000"), Decimal("0"))
    assert liquidity.liquid_months is None
    assert liquidity.status is None


def test_runway_is_floored_at_zero() -> None:
    assert compute_liquid_months(Decimal("-300"), Decimal("10")) == Decimal("0")


@pytest.mark.parametrize(
    ("months", "status"),
    [
        (Decimal("6.01"), "good"),
        (Decimal("6"), "average"),
        (Decimal("3"), "average"),
        (Decimal("2.99"), "poor"),
        (Decimal("0"), "poor"),
    ],
)
def test_liquid_status_thresholds(months: Decimal, status: str) -> None:
    assert resolve_liquid_status(months) == status


def test_average_daily_expense_without_history_is_zero() -> None:
    start, end = trailing_window(utc(2024, 7, 1))
    assert compute_average_daily_expense([], None, start, end) == Decimal("0")
    assert compute_average_daily_expense([], utc(2024, 7, 1), start, end) == Decimal("0")


def test_average_daily_expense_uses_tracked_part_of_window() -> None:
    start, end = trailing_window(utc(2024, 7, 1), window_days=180)
    expenses = [
        (utc(2024, 6, 1, 12), Decimal("300")),
        (utc(2024, 6, 20), Decimal("300")),
        (utc(2024, 7, 1), Decimal("999")),
    ]
    # tracking started 2024-06-01 00:00 -> 30 days to the window end
    assert compute_average_daily_expense(expenses, utc(2024, 6, 1), start, end) == Decimal("20")


def test_average_daily_expense_spreads_over_full_window_for_old_users() -> None:
    start, end = trailing_window(utc(2024, 7, 1), window_days=180)
    expenses = [(utc(2024, 6, 1), Decimal("1800"))]
    assert compute_average_daily_expense(expenses, utc(2020, 1, 1), start, end) == Decimal("10")


def test_liquid_assets_replay_and_convert_liquid_accounts_only() -> None:
    at = utc(2024, 3, 1)
    accounts = [
        account(1, created=utc(2024, 1, 1)),
        account(2, currency="EUR", created=utc(2024, 1, 1)),
        account(3, liquid=False, created=utc(2024, 1, 1)),
    ]
    balances = liquid_balances_at(
        accounts,
        [
            income(1, 500, utc(2024, 1, 10)),
            expense(1, 100, utc(2024, 2, 10)),
            expense(1, 999, utc(2024, 3, 1)),
            income(3, 10_000, utc(2024, 1, 10)),
        ],
        [adjustment(2, 200, utc(2024, 1, 1, 0, 0, 1))],
        at,
    )
    assert balances == {1: Decimal("400"), 2: Decimal("200")}

    rates = resolve_rates(
        [("EUR", rate_instant_before(at))],
        "USD",
        FakeFxRateSource(units={"EUR": Decimal("0.8")}),
    )
    assert compute_liquid_assets(accounts, balances, rates, at) == Decimal("650.00")


def test_liquid_assets_fail_when_valuation_rate_was_not_resolved() -> None:
    at = utc(2024, 3, 1)
    rates = resolve_rates(
        [("EUR", date(2024, 3, 1))],
        "USD",
        FakeFxRateSource(units={"EUR": Decimal("0.8")}),
    )
    with pytest.raises(FxRateNotFoundError):
        compute_liquid_assets([account(2, currency="EUR")], {2: Decimal("10")}, rates, at)
