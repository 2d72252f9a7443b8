from decimal import Decimal

from fakes import FakeFxRateSource, InMemoryLedgerRepository, account, adjustment, expense, income, utc
from finhealth.core.config import Settings
from finhealth.services.net_worth import get_net_worth_trend


NOW = utc(2024, 3, 15, 12)


def _repo() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository(
        accounts=[
            account(1, created=utc(2024, 2, 10)),
            account(2, currency="EUR", created=utc(2024, 2, 10), archived=True),
        ],
        adjustments=[adjustment(1, 500, utc(2024, 2, 10, 0, 0, 1))],
        transactions=[
            income(1, 100, utc(2024, 2, 20)),
            income(2, 100, utc(2024, 2, 11), currency="EUR"),
            expense(1, 50, utc(2024, 3, 3)),
        ],
    )


def test_non_positive_window_is_empty() -> None:
    assert get_net_worth_trend(_repo(), FakeFxRateSource(), user_id=1, months=0, now_utc=NOW) == []


def test_trend_starts_at_first_month_with_data_and_includes_archived_accounts() -> None:
    fx = FakeFxRateSource(units={"EUR": Decimal("0.5")})

    trend = get_net_worth_trend(_repo(), fx, user_id=1, months=6, now_utc=NOW, settings=Settings())

    assert [(row.year, row.month, row.net_worth) for row in trend] == [
        (2024, 2, Decimal("800.00")),
        (2024, 3, Decimal("750.00")),
    ]
    assert len(fx.calls) == 1


def test_window_is_capped_at_twelve_months() -> None:
    repo = InMemoryLedgerRepository(
        accounts=[account(1, created=utc(2020, 1, 1))],
        adjustments=[adjustment(1, 100, utc(2020, 1, 1))],
    )

    trend = get_net_worth_trend(repo, FakeFxRateSource(), user_id=1, months=40, now_utc=NOW, settings=Settings())

    assert len(trend) == 12
    assert (trend[0].year, trend[0].month) == (2023, 4)
    assert all(row.net_worth == Decimal("100.00") for row in trend)


def test_user_without_accounts_has_no_trend() -> None:
    trend = get_net_worth_trend(InMemoryLedgerRepository(), FakeFxRateSource(), user_id=1, months=6, now_utc=NOW)
    assert trend == []
