from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


StatusLabel = Literal["good", "average", "poor"]


class FinancialHealthOut(BaseModel):
    month_income: Decimal | None = None
    month_total: Decimal | None = None
    mean_daily: Decimal | None = None
    median_daily: Decimal | None = None
    stability_index: Decimal | None = None
    stability_score: int | None = None
    stability_status: StatusLabel | None = None
    stability_action_code: str | None = None
    savings_rate: Decimal | None = None
    net_cashflow: Decimal | None = None
    discretionary_total: Decimal | None = None
    discretionary_share_percent: Decimal | None = None
    month_over_month_change_percent: Decimal | None = None
    liquid_assets: Decimal | None = None
    liquid_months: Decimal | None = None
    liquid_months_status: StatusLabel | None = None
    total_month_score: int | None = None
    income_month_over_month_change_percent: Decimal | None = None
    balance_month_over_month_change_percent: Decimal | None = None


class PeakSummaryOut(BaseModel):
    count: int
    total: Decimal
    share_percent: Decimal | None = None
    month_total: Decimal | None = None


class PeakDayOut(BaseModel):
    year: int
    month: int
    day: int
    amount: Decimal
    share_percent: Decimal | None = None


class CategoryBreakdownItemOut(BaseModel):
    id: int
    name: str
    color: str
    amount: Decimal
    mandatory_amount: Decimal
    discretionary_amount: Decimal
    percent: Decimal | None = None
    is_mandatory: bool


class CategoryDeltaItemOut(BaseModel):
    id: int
    name: str
    color: str
    current_amount: Decimal
    previous_amount: Decimal
    delta_amount: Decimal
    delta_percent: Decimal | None = None


class CategoryDeltaOut(BaseModel):
    increased: list[CategoryDeltaItemOut] = Field(default_factory=list)
    decreased: list[CategoryDeltaItemOut] = Field(default_factory=list)


class CategoryBreakdownOut(BaseModel):
    items: list[CategoryBreakdownItemOut]
    delta: CategoryDeltaOut


class SpendingPointOut(BaseModel):
    year: int
    month: int
    day: int | None = None
    week: int | None = None
    amount: Decimal


class SpendingBreakdownOut(BaseModel):
    days: list[SpendingPointOut]
    weeks: list[SpendingPointOut]
    months: list[SpendingPointOut]


class ForecastSummaryOut(BaseModel):
    optimistic_total: Decimal | None = None
    risk_total: Decimal | None = None
    current_spent: Decimal | None = None
    baseline_limit: Decimal | None = None


class ForecastSeriesOut(BaseModel):
    days: list[int]
    actual: list[Decimal | None]
    optimistic: list[Decimal | None]
    risk: list[Decimal | None]
    baseline: Decimal | None = None


class ForecastOut(BaseModel):
    summary: ForecastSummaryOut
    series: ForecastSeriesOut


class ReadinessOut(BaseModel):
    has_forecast_and_stability_data: bool
    observed_expense_days: int
    required_expense_days: int
    has_stability_data_for_selected_month: bool
    observed_stability_days_in_selected_month: int
    required_stability_days: int


class AnalyticsDashboardOut(BaseModel):
    year: int
    month: int
    health: FinancialHealthOut
    peaks: PeakSummaryOut
    peak_days: list[PeakDayOut]
    categories: CategoryBreakdownOut
    income_categories: CategoryBreakdownOut
    spending: SpendingBreakdownOut
    forecast: ForecastOut
    readiness: ReadinessOut


class EvolutionMonthOut(BaseModel):
    year: int
    month: int
    has_data: bool
    savings_rate: Decimal | None = None
    stability_index: Decimal | None = None
    stability_score: int | None = None
    stability_status: StatusLabel | None = None
    stability_action_code: str | None = None
    discretionary_percent: Decimal | None = None
    net_worth: Decimal | None = None
    liquid_months: Decimal | None = None
    mean_daily: Decimal | None = None
    peak_day_ratio: Decimal | None = None
    peak_spend_share_percent: Decimal | None = None
    total_month_score: int | None = None


class NetWorthSnapshotOut(BaseModel):
    year: int
    month: int
    net_worth: Decimal
