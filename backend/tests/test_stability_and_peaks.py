from datetime import date
from decimal import Decimal

import pytest

from fakes import day_range
from finhealth.services.peaks import compute_peak_metrics, compute_peak_threshold, detect_peak_values
from finhealth.services.stability import (
    compute_stability,
    compute_stability_index,
    compute_stability_score,
    resolve_stability_action_code,
    resolve_stability_status,
)


def test_spiky_spending_is_poor_stability() -> None:
    stability = compute_stability([Decimal("50"), Decimal("60"), Decimal("55"), Decimal("500")])
    assert stability is not None
    assert stability.index > Decimal("2")
    assert stability.status == "poor"
    assert stability.action_code == "cap_impulse_spend"


def test_stability_requires_four_positive_days() -> None:
    assert compute_stability_index([Decimal("10"), Decimal("0"), Decimal("12"), Decimal("11")]) is None
    assert compute_stability([Decimal("10"), Decimal("12"), Decimal("11")]) is None


def test_even_spending_is_good_stability() -> None:
    stability = compute_stability([Decimal("100")] * 6)
    assert stability is not None
    assert stability.index == Decimal("0")
    assert stability.score == Decimal("100")
    assert stability.status == "good"
    assert stability.action_code == "keep_routine"


@pytest.mark.parametrize(
    ("index", "score"),
    [
        (Decimal("0"), Decimal("100")),
        (Decimal("1.0"), Decimal("70")),
        (Decimal("1.5"), Decimal("55")),
        (Decimal("2.0"), Decimal("40")),
        (Decimal("3.0"), Decimal("20")),
        (Decimal("4.0"), Decimal("0")),
        (Decimal("7.5"), Decimal("0")),
    ],
)
def test_stability_score_piecewise(index: Decimal, score: Decimal) -> None:
    assert compute_stability_score(index) == score


@pytest.mark.parametrize(
    ("index", "status", "action"),
    [
        (Decimal("0.4"), "good", "keep_routine"),
        (Decimal("1.0"), "good", "keep_routine"),
        (Decimal("1.7"), "average", "smooth_spikes"),
        (Decimal("2.01"), "poor", "cap_impulse_spend"),
    ],
)
def test_stability_status_and_action(index: Decimal, status: str, action: str) -> None:
    assert resolve_stability_status(index) == status
    assert resolve_stability_action_code(status) == action


def test_peak_threshold_with_few_samples_is_twice_median() -> None:
    assert compute_peak_threshold([Decimal("10")] * 5, Decimal("10")) == Decimal("20")


def test_single_expensive_day_is_flagged_as_peak() -> None:
    values = [Decimal("100")] * 9 + [Decimal("1000")]
    assert detect_peak_values(values) == [Decimal("1000")]


def test_peak_metrics_report_share_and_ratio() -> None:
    days = day_range(date(2024, 3, 1), 10)
    totals = {day: Decimal("100") for day in days[:9]}
    totals[days[9]] = Decimal("1000")
    month_total = Decimal("2000")

    metrics = compute_peak_metrics(totals, month_total, 31)

    assert metrics.summary.count == 1
    assert metrics.summary.total == Decimal("1000.00")
    assert metrics.summary.share_percent == Decimal("50")
    assert [row.day for row in metrics.days] == [days[9]]
    assert metrics.days[0].share_percent == Decimal("50")
    assert metrics.peak_spend_share_percent == Decimal("50")
    assert metrics.peak_day_ratio_percent == Decimal("3.23")


def test_peak_metrics_without_spending_are_empty() -> None:
    metrics = compute_peak_metrics({}, Decimal("0"), 30)
    assert metrics.summary.count == 0
    assert metrics.summary.share_percent is None
    assert metrics.days == []
    assert metrics.peak_spend_share_percent is None
