from __future__ import annotations

from decimal import Decimal

from finhealth.utils.decimal_math import clamp, round_int


HUNDRED = Decimal("100")


def normalize_signals(
    *,
    savings_rate: Decimal | None,
    liquid_months: Decimal | None,
    stability_score: Decimal | None,
    discretionary_share_percent: Decimal | None,
    peak_spend_share_percent: Decimal | None,
    cushion_saturation_months: Decimal = Decimal("12"),
) -> list[Decimal]:
    """Present sub-signals mapped onto 0..100, higher is better."""
    raw = [
        savings_rate * HUNDRED if savings_rate is not None else None,
        liquid_months / cushion_saturation_months * HUNDRED if liquid_months is not None else None,
        stability_score,
        HUNDRED - discretionary_share_percent if discretionary_share_percent is not None else None,
        HUNDRED - peak_spend_share_percent if peak_spend_share_percent is not None else None,
    ]
    return [clamp(Decimal(value), Decimal("0"), HUNDRED) for value in raw if value is not None]


def compute_month_score(
    *,
    savings_rate: Decimal | None,
    liquid_months: Decimal | None,
    stability_score: Decimal | None,
    discretionary_share_percent: Decimal | None,
    peak_spend_share_percent: Decimal | None,
    min_signals: int = 3,
    cushion_saturation_months: Decimal = Decimal("12"),
) -> int | None:
    signals = normalize_signals(
        savings_rate=savings_rate,
        liquid_months=liquid_months,
        stability_score=stability_score,
        discretionary_share_percent=discretionary_share_percent,
        peak_spend_share_percent=peak_spend_share_percent,
        cushion_saturation_months=cushion_saturation_months,
    )
    if len(signals) < min_signals:
        return None
    mean = sum(signals, Decimal("0")) / Decimal(len(signals))
    return round_int(clamp(mean, Decimal("0"), HUNDRED))
