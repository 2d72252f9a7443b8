"""Monthly analytics dashboard.

Every snapshot the month needs is fetched first, all (currency, day) pairs are
resolved in one ``resolve_rates`` call, and only then do the pure calculators
run. Nothing here caches between calls.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from itertools import chain

from finhealth.core.cancellation import CancelEvent, raise_if_cancelled
from finhealth.core.config import Settings, get_settings
from finhealth.models.enums import TransactionType
from finhealth.schemas.analytics import (
    AnalyticsDashboardOut,
    CategoryBreakdownItemOut,
    CategoryBreakdownOut,
    CategoryDeltaItemOut,
    CategoryDeltaOut,
    FinancialHealthOut,
    ForecastOut,
    ForecastSeriesOut,
    ForecastSummaryOut,
    PeakDayOut,
    PeakSummaryOut,
    ReadinessOut,
    SpendingBreakdownOut,
    SpendingPointOut,
)
from finhealth.services.aggregation import (
    CANCEL_CHECK_EVERY,
    add_months,
    convert_transactions,
    daily_totals,
    days_in_month,
    month_bounds,
    month_start_utc,
    transaction_rate_pairs,
    validate_year_month,
)
from finhealth.services.category_delta import CategoryDelta, average_prior_totals, compute_category_deltas
from finhealth.services.cross_rates import FxRateSource, rate_instant_before, resolve_rates
from finhealth.services.forecast import ForecastResult, forecast_month, resolve_forecast_window
from finhealth.services.liquidity import (
    compute_average_daily_expense,
    compute_liquid_assets,
    compute_liquidity,
    liquid_balances_at,
    trailing_window,
)
from finhealth.services.month_score import compute_month_score
from finhealth.services.peaks import PeakMetrics, compute_peak_metrics
from finhealth.services.repositories import LedgerRepository, as_utc
from finhealth.services.snapshots import UNCATEGORIZED, CategoryMeta, TransactionSnapshot
from finhealth.services.spending import SpendingBreakdown, build_spending_breakdown, spending_window_start
from finhealth.services.stability import compute_stability
from finhealth.services.statistics import median
from finhealth.utils.decimal_math import pct, round2, round_int


logger = logging.getLogger("finhealth.dashboard")


@dataclass
class CategoryTotals:
    total: Decimal = Decimal("0")
    mandatory: Decimal = Decimal("0")
    discretionary: Decimal = Decimal("0")


@dataclass
class MonthTotals:
    income: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    discretionary: Decimal = Decimal("0")
    previous_income: Decimal = Decimal("0")
    previous_expenses: Decimal = Decimal("0")
    daily: dict[date, Decimal] = field(default_factory=dict)
    discretionary_daily: dict[date, Decimal] = field(default_factory=dict)
    expense_categories: dict[int, CategoryTotals] = field(default_factory=dict)
    income_categories: dict[int, Decimal] = field(default_factory=dict)
    prior_categories: dict[int, Decimal] = field(default_factory=dict)
    prior_months: set[tuple[int, int]] = field(default_factory=set)


def _category_key(txn: TransactionSnapshot) -> int:
    return txn.category_id if txn.category_id is not None else UNCATEGORIZED.id


def summarize_month(
    converted: list[tuple[TransactionSnapshot, Decimal]],
    month_start: datetime,
    month_end: datetime,
    prior_start: datetime,
    *,
    cancel_event: CancelEvent | None = None,
) -> MonthTotals:
    """Base-currency totals for the selected month and the prior window before it."""
    totals = MonthTotals()
    for position, (txn, amount) in enumerate(converted):
        if position % CANCEL_CHECK_EVERY == 0:
            raise_if_cancelled(cancel_event)
        occurred_at = txn.occurred_at_utc
        in_month = month_start <= occurred_at < month_end
        in_prior = prior_start <= occurred_at < month_start
        category_id = _category_key(txn)

        if txn.is_income:
            if in_month:
                totals.income += amount
                totals.income_categories[category_id] = totals.income_categories.get(category_id, Decimal("0")) + amount
            elif in_prior:
                totals.previous_income += amount
            continue

        if in_month:
            day = occurred_at.date()
            totals.expenses += amount
            totals.daily[day] = totals.daily.get(day, Decimal("0")) + amount
            bucket = totals.expense_categories.setdefault(category_id, CategoryTotals())
            bucket.total += amount
            if txn.is_mandatory:
                bucket.mandatory += amount
            else:
                bucket.discretionary += amount
                totals.discretionary += amount
                totals.discretionary_daily[day] = totals.discretionary_daily.get(day, Decimal("0")) + amount
        elif in_prior:
            totals.previous_expenses += amount
            totals.prior_categories[category_id] = totals.prior_categories.get(category_id, Decimal("0")) + amount
            totals.prior_months.add((occurred_at.year, occurred_at.month))
    return totals


def change_percent(current: Decimal, previous: Decimal) -> Decimal | None:
    if previous <= 0:
        return None
    return (current - previous) / previous * 100


def balance_change_percent(current: Decimal, previous: Decimal) -> Decimal | None:
    # abs() keeps the sign meaning "direction of change" when the previous month was negative
    if previous == 0:
        return None
    return (current - previous) / abs(previous) * 100


def _category_items(
    totals: dict[int, CategoryTotals],
    grand_total: Decimal,
    categories: dict[int, CategoryMeta],
) -> list[CategoryBreakdownItemOut]:
    items = []
    for category_id, row in totals.items():
        info = categories.get(category_id, UNCATEGORIZED)
        items.append(
            CategoryBreakdownItemOut(
                id=category_id,
                name=info.name,
                color=info.color,
                amount=round2(row.total),
                mandatory_amount=round2(row.mandatory),
                discretionary_amount=round2(row.discretionary),
                percent=round2(row.total / grand_total * 100) if grand_total > 0 else None,
                is_mandatory=info.is_mandatory,
            )
        )
    return sorted(items, key=lambda item: (-item.amount, item.id))


def _delta_out(delta: CategoryDelta) -> CategoryDeltaOut:
    def item(row) -> CategoryDeltaItemOut:
        return CategoryDeltaItemOut(
            id=row.category_id,
            name=row.name,
            color=row.color,
            current_amount=round2(row.current_amount),
            previous_amount=round2(row.previous_amount),
            delta_amount=round2(row.delta_amount),
            delta_percent=round2(row.delta_percent),
        )

    return CategoryDeltaOut(
        increased=[item(row) for row in delta.increased],
        decreased=[item(row) for row in delta.decreased],
    )


def _peaks_out(peaks: PeakMetrics) -> tuple[PeakSummaryOut, list[PeakDayOut]]:
    summary = PeakSummaryOut(
        count=peaks.summary.count,
        total=round2(peaks.summary.total),
        share_percent=round2(peaks.summary.share_percent),
        month_total=round2(peaks.summary.month_total),
    )
    days = [
        PeakDayOut(
            year=row.day.year,
            month=row.day.month,
            day=row.day.day,
            amount=row.amount,
            share_percent=round2(row.share_percent),
        )
        for row in peaks.days
    ]
    return summary, days


def _spending_out(spending: SpendingBreakdown) -> SpendingBreakdownOut:
    def points(rows) -> list[SpendingPointOut]:
        return [
            SpendingPointOut(year=row.year, month=row.month, day=row.day, week=row.week, amount=row.amount)
            for row in rows
        ]

    return SpendingBreakdownOut(days=points(spending.days), weeks=points(spending.weeks), months=points(spending.months))


def _forecast_out(result: ForecastResult) -> ForecastOut:
    summary = result.summary
    series = result.series
    return ForecastOut(
        summary=ForecastSummaryOut(
            optimistic_total=round2(summary.optimistic_total),
            risk_total=round2(summary.risk_total),
            current_spent=round2(summary.current_spent),
            baseline_limit=round2(summary.baseline_limit),
        ),
        series=ForecastSeriesOut(
            days=series.days,
            actual=series.actual,
            optimistic=series.optimistic,
            risk=series.risk,
            baseline=round2(series.baseline),
        ),
    )


def get_dashboard(
    repo: LedgerRepository,
    fx_source: FxRateSource,
    *,
    user_id: int,
    year: int,
    month: int,
    now_utc: datetime | None = None,
    settings: Settings | None = None,
    cancel_event: CancelEvent | None = None,
) -> AnalyticsDashboardOut:
    validate_year_month(year, month)
    settings = settings or get_settings()
    now_utc = as_utc(now_utc) if now_utc is not None else datetime.now(timezone.utc)
    started = time.monotonic()
    logger.info("Building dashboard user=%s period=%04d-%02d", user_id, year, month)

    base_currency = repo.resolve_base_currency(user_id)
    month_start, month_end = month_bounds(year, month)
    prior_start = month_start_utc(*add_months(year, month, -1))
    categories = {row.id: row for row in repo.get_category_meta(user_id)}
    observed_expense_days = repo.get_distinct_expense_days_count(user_id)

    window = resolve_forecast_window(year, month, now_utc, window_days=settings.forecast_window_days)
    # past months are judged as of their end, the running month as of now
    as_of = now_utc if window.is_current_month else month_end
    average_from, average_to = trailing_window(as_of, window_days=settings.liquidity_window_days)

    month_transactions = repo.get_transaction_snapshots(
        user_id, from_utc=prior_start, to_utc=month_end, exclude_transfers=True
    )
    spending_expenses = repo.get_transaction_snapshots(
        user_id,
        from_utc=month_start_utc(*spending_window_start(year, month)),
        to_utc=month_end,
        exclude_transfers=True,
        type=TransactionType.expense,
    )
    history_expenses = repo.get_transaction_snapshots(
        user_id,
        from_utc=window.history_from_utc,
        to_utc=window.history_to_utc,
        exclude_transfers=True,
        type=TransactionType.expense,
    )
    average_expenses = repo.get_transaction_snapshots(
        user_id,
        from_utc=average_from,
        to_utc=average_to,
        exclude_transfers=True,
        type=TransactionType.expense,
    )
    earliest_tracked_at = repo.get_earliest_occurred_at_before(user_id, as_of, exclude_transfers=True)

    liquid_accounts = [row for row in repo.get_account_snapshots(user_id, include_archived=False) if row.is_liquid]
    liquid_ids = [row.id for row in liquid_accounts]
    liquid_transactions = (
        repo.get_transaction_snapshots(user_id, to_utc=as_of, account_ids=liquid_ids) if liquid_ids else []
    )
    liquid_adjustments = repo.get_account_adjustment_snapshots(user_id, liquid_ids, before_utc=as_of)

    valuation_instant = rate_instant_before(as_of)
    rates = resolve_rates(
        chain(
            transaction_rate_pairs(month_transactions),
            transaction_rate_pairs(spending_expenses),
            transaction_rate_pairs(history_expenses),
            transaction_rate_pairs(average_expenses),
            ((account.currency_code, valuation_instant) for account in liquid_accounts),
        ),
        base_currency,
        fx_source,
        cancel_event=cancel_event,
    )

    totals = summarize_month(
        convert_transactions(month_transactions, rates, cancel_event=cancel_event),
        month_start,
        month_end,
        prior_start,
        cancel_event=cancel_event,
    )
    month_days = days_in_month(year, month)

    observed_daily = [totals.daily.get(date(year, month, day), Decimal("0")) for day in range(1, window.observed_days + 1)]
    positive_daily = [value for value in observed_daily if value > 0]
    mean_daily = sum(observed_daily, Decimal("0")) / len(observed_daily) if observed_daily else None
    stability = compute_stability(positive_daily, min_days=settings.stability_min_days)

    net_cashflow = totals.income - totals.expenses
    savings_rate = net_cashflow / totals.income if totals.income > 0 else None
    discretionary_share = totals.discretionary / totals.expenses * 100 if totals.expenses > 0 else None

    peaks = compute_peak_metrics(
        totals.discretionary_daily,
        totals.expenses,
        month_days,
        min_samples=settings.peak_min_samples,
        mad_multiplier=settings.peak_mad_multiplier,
    )

    balances = liquid_balances_at(
        liquid_accounts,
        liquid_transactions,
        liquid_adjustments,
        as_of,
        opening_window=timedelta(seconds=settings.opening_balance_window_seconds),
        cancel_event=cancel_event,
    )
    average_daily_expense = compute_average_daily_expense(
        (
            (txn.occurred_at_utc, amount)
            for txn, amount in convert_transactions(average_expenses, rates, cancel_event=cancel_event)
        ),
        earliest_tracked_at,
        average_from,
        average_to,
    )
    liquidity = compute_liquidity(
        compute_liquid_assets(liquid_accounts, balances, rates, as_of),
        average_daily_expense,
        average_days_in_month=settings.average_days_in_month,
    )

    month_score = compute_month_score(
        savings_rate=savings_rate,
        liquid_months=liquidity.liquid_months,
        stability_score=stability.score if stability else None,
        discretionary_share_percent=discretionary_share,
        peak_spend_share_percent=peaks.peak_spend_share_percent,
        min_signals=settings.month_score_min_signals,
        cushion_saturation_months=settings.cushion_saturation_months,
    )

    forecast = forecast_month(
        year=year,
        month=month,
        month_daily_totals=totals.daily,
        history_daily_totals=daily_totals(convert_transactions(history_expenses, rates, cancel_event=cancel_event)),
        now_utc=now_utc,
        baseline_daily_rate=average_daily_expense,
        average_days_in_month=settings.average_days_in_month,
        window_days=settings.forecast_window_days,
        simulations=settings.forecast_simulations,
        decay_lambda=settings.forecast_decay_lambda,
        optimistic_quantile=settings.forecast_optimistic_quantile,
        risk_quantile=settings.forecast_risk_quantile,
        min_pool_days=settings.forecast_min_pool_days,
        cancel_event=cancel_event,
    )

    spending = build_spending_breakdown(
        daily_totals(convert_transactions(spending_expenses, rates, cancel_event=cancel_event)),
        year,
        month,
    )

    category_delta = compute_category_deltas(
        {category_id: row.total for category_id, row in totals.expense_categories.items()},
        average_prior_totals(totals.prior_categories, len(totals.prior_months)),
        categories,
        size=settings.category_delta_size,
    )

    income_items = _category_items(
        {category_id: CategoryTotals(total=amount) for category_id, amount in totals.income_categories.items()},
        totals.income,
        categories,
    )

    health = FinancialHealthOut(
        month_income=round2(totals.income),
        month_total=round2(totals.expenses),
        mean_daily=round2(mean_daily),
        median_daily=round2(median(positive_daily)),
        stability_index=round2(stability.index) if stability else None,
        stability_score=round_int(stability.score) if stability else None,
        stability_status=stability.status if stability else None,
        stability_action_code=stability.action_code if stability else None,
        savings_rate=pct(savings_rate) if savings_rate is not None else None,
        net_cashflow=round2(net_cashflow),
        discretionary_total=round2(totals.discretionary),
        discretionary_share_percent=round2(discretionary_share),
        month_over_month_change_percent=round2(change_percent(totals.expenses, totals.previous_expenses)),
        liquid_assets=round2(liquidity.liquid_assets),
        liquid_months=round2(liquidity.liquid_months),
        liquid_months_status=liquidity.status,
        total_month_score=month_score,
        income_month_over_month_change_percent=round2(change_percent(totals.income, totals.previous_income)),
        balance_month_over_month_change_percent=round2(
            balance_change_percent(net_cashflow, totals.previous_income - totals.previous_expenses)
        ),
    )

    readiness = ReadinessOut(
        has_forecast_and_stability_data=observed_expense_days >= settings.readiness_min_expense_days,
        observed_expense_days=observed_expense_days,
        required_expense_days=settings.readiness_min_expense_days,
        has_stability_data_for_selected_month=len(positive_daily) >= settings.stability_min_days,
        observed_stability_days_in_selected_month=len(positive_daily),
        required_stability_days=settings.stability_min_days,
    )

    peaks_summary, peak_days = _peaks_out(peaks)
    dashboard = AnalyticsDashboardOut(
        year=year,
        month=month,
        health=health,
        peaks=peaks_summary,
        peak_days=peak_days,
        categories=CategoryBreakdownOut(
            items=_category_items(totals.expense_categories, totals.expenses, categories),
            delta=_delta_out(category_delta),
        ),
        income_categories=CategoryBreakdownOut(items=income_items, delta=CategoryDeltaOut()),
        spending=_spending_out(spending),
        forecast=_forecast_out(forecast),
        readiness=readiness,
    )

    logger.info(
        "Dashboard ready user=%s period=%04d-%02d fx_pairs=%d %.2fms",
        user_id,
        year,
        month,
        len(rates),
        (time.monotonic() - started) * 1000,
    )
    return dashboard
