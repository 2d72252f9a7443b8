from datetime import date
from decimal import Decimal

import pytest

from fakes import day_range, utc
from finhealth.core.exceptions import AnalyticsCancelledError
from finhealth.services.forecast import (
    build_expense_pool,
    build_sampling_cdf,
    forecast_month,
    forecast_seed,
    resolve_forecast_window,
    simulate_month_end,
)


class _SetEvent:
    def is_set(self) -> bool:
        return True


def _pool(*values: int) -> list[Decimal]:
    return [Decimal(value) for value in values]


def test_window_for_current_month_stops_pool_at_yesterday() -> None:
    window = resolve_forecast_window(2024, 3, utc(2024, 3, 15, 10))

    assert window.is_current_month
    assert window.observed_days == 15
    assert window.remaining_days == 16
    assert window.pool_end == date(2024, 3, 14)
    assert window.window_start == date(2023, 9, 17)
    assert window.history_to_utc == utc(2024, 3, 15)


def test_window_on_last_day_of_month_keeps_one_remaining_day() -> None:
    window = resolve_forecast_window(2024, 2, utc(2024, 2, 29, 8))
    assert window.observed_days == 29
    assert window.remaining_days == 1


def test_window_for_past_month_is_fully_observed() -> None:
    window = resolve_forecast_window(2024, 1, utc(2024, 3, 15))
    assert not window.is_current_month
    assert window.observed_days == 31
    assert window.remaining_days == 0
    assert window.pool_end == date(2024, 1, 31)


def test_pool_starts_at_first_expense_and_fills_gaps_with_zero() -> None:
    totals = {date(2024, 3, 2): Decimal("5"), date(2024, 3, 4): Decimal("7")}
    pool = build_expense_pool(totals, date(2024, 1, 1), date(2024, 3, 5))
    assert pool == _pool(5, 0, 7, 0)


def test_pool_is_empty_without_expense_history() -> None:
    assert build_expense_pool({}, date(2023, 9, 17), date(2024, 3, 14)) == []


def test_pool_is_capped_at_window_length() -> None:
    days = day_range(date(2023, 1, 1), 400)
    pool = build_expense_pool({day: Decimal("1") for day in days}, date(2023, 1, 1), days[-1], max_days=180)
    assert len(pool) == 180


def test_sampling_cdf_favours_recent_days() -> None:
    cdf = build_sampling_cdf(5, decay_lambda=0.02)
    weights = [cdf[0]] + [cdf[index] - cdf[index - 1] for index in range(1, 5)]

    assert cdf[-1] == pytest.approx(1.0)
    assert weights == sorted(weights)


def test_seed_depends_on_every_input() -> None:
    pool = _pool(*range(1, 15))
    base = forecast_seed(2024, 3, 10, 21, Decimal("100"), pool)

    assert base == forecast_seed(2024, 3, 10, 21, Decimal("100"), list(pool))
    assert base != forecast_seed(2024, 3, 10, 21, Decimal("100.01"), pool)
    assert base != forecast_seed(2024, 3, 10, 21, Decimal("100"), pool[:-1] + [Decimal("99")])


def test_simulation_is_deterministic() -> None:
    pool = _pool(12, 40, 3, 0, 25, 18, 60, 9, 14, 0, 33, 21, 7, 80)
    kwargs = dict(
        year=2024,
        month=3,
        observed_days=10,
        remaining_days=21,
        observed_cumulative_actual=Decimal("245.50"),
        simulations=500,
    )

    first = simulate_month_end(pool, **kwargs)
    second = simulate_month_end(list(pool), **kwargs)

    assert first is not None
    assert first == second
    assert first.optimistic_total <= first.risk_total
    assert first.optimistic_total >= Decimal("245.50")


def test_constant_pool_gives_exact_projection() -> None:
    scenarios = simulate_month_end(
        [Decimal("10")] * 30,
        year=2024,
        month=4,
        observed_days=20,
        remaining_days=10,
        observed_cumulative_actual=Decimal("150"),
        simulations=200,
    )
    assert scenarios is not None
    assert scenarios.optimistic_total == Decimal("250")
    assert scenarios.risk_total == Decimal("250")
    assert scenarios.optimistic_daily == Decimal("10")


@pytest.mark.parametrize(("pool_days", "remaining"), [(9, 5), (30, 0)])
def test_no_forecast_without_pool_or_remaining_days(pool_days: int, remaining: int) -> None:
    result = simulate_month_end(
        [Decimal("10")] * pool_days,
        year=2024,
        month=4,
        observed_days=30 - remaining,
        remaining_days=remaining,
        observed_cumulative_actual=Decimal("0"),
    )
    assert result is None


def test_simulation_honours_cancellation() -> None:
    with pytest.raises(AnalyticsCancelledError):
        simulate_month_end(
            [Decimal("10")] * 30,
            year=2024,
            month=4,
            observed_days=1,
            remaining_days=29,
            observed_cumulative_actual=Decimal("0"),
            cancel_event=_SetEvent(),
        )


def test_forecast_month_series_for_running_month() -> None:
    history = {day: Decimal("10") for day in day_range(date(2024, 2, 1), 42)}
    month_totals = {date(2024, 3, day): Decimal("10") for day in range(1, 12)}

    result = forecast_month(
        year=2024,
        month=3,
        month_daily_totals=month_totals,
        history_daily_totals=history,
        now_utc=utc(2024, 3, 10, 18),
        baseline_daily_rate=Decimal("10"),
        simulations=100,
    )

    series = result.series
    assert series.days == list(range(1, 32))
    assert series.actual[9] == Decimal("100.00")
    assert series.actual[10] is None
    assert series.optimistic[9] == Decimal("100.00")
    assert series.optimistic[10] == Decimal("110.00")
    assert series.risk[-1] == Decimal("310.00")
    assert result.summary.current_spent == Decimal("100")
    assert result.summary.optimistic_total == Decimal("310")
    assert result.summary.baseline_limit == Decimal("304.40")
    assert series.baseline == result.summary.baseline_limit


def test_forecast_month_for_closed_month_has_no_scenarios() -> None:
    month_totals = {date(2024, 1, day): Decimal("5") for day in range(1, 32)}

    result = forecast_month(
        year=2024,
        month=1,
        month_daily_totals=month_totals,
        history_daily_totals=month_totals,
        now_utc=utc(2024, 3, 1),
    )

    assert result.summary.optimistic_total is None
    assert result.summary.risk_total is None
    assert result.summary.current_spent == Decimal("155")
    assert result.summary.baseline_limit is None
    assert result.series.actual[-1] == Decimal("155.00")
    assert all(point is None for point in result.series.optimistic)
