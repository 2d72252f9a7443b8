from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from finhealth.services.snapshots import CategoryMeta


@dataclass(frozen=True)
class CategoryDeltaItem:
    category_id: int
    name: str
    color: str
    current_amount: Decimal
    previous_amount: Decimal
    delta_amount: Decimal
    delta_percent: Decimal | None


@dataclass(frozen=True)
class CategoryDelta:
    increased: list[CategoryDeltaItem] = field(default_factory=list)
    decreased: list[CategoryDeltaItem] = field(default_factory=list)


def average_prior_totals(totals: Mapping[int, Decimal], months_with_data: int) -> dict[int, Decimal]:
    divisor = Decimal(max(months_with_data, 1))
    return {category_id: amount / divisor for category_id, amount in totals.items()}


def compute_category_deltas(
    current_totals: Mapping[int, Decimal],
    prior_totals: Mapping[int, Decimal],
    categories: Mapping[int, CategoryMeta],
    *,
    size: int = 3,
) -> CategoryDelta:
    """Top ``size`` growing and shrinking categories versus the (averaged) prior period.

    Only categories with a positive prior amount and known metadata take part.
    """
    deltas: list[CategoryDeltaItem] = []
    for category_id in set(current_totals) | set(prior_totals):
        current = current_totals.get(category_id, Decimal("0"))
        previous = prior_totals.get(category_id, Decimal("0"))
        info = categories.get(category_id)
        if previous <= 0 or info is None:
            continue
        delta = current - previous
        deltas.append(
            CategoryDeltaItem(
                category_id=category_id,
                name=info.name,
                color=info.color,
                current_amount=current,
                previous_amount=previous,
                delta_amount=delta,
                delta_percent=delta / previous * 100,
            )
        )

    # id as secondary key keeps ties deterministic regardless of set order
    increased = sorted(
        (row for row in deltas if row.delta_amount > 0),
        key=lambda row: (-row.delta_amount, row.category_id),
    )[:size]
    decreased = sorted(
        (row for row in deltas if row.delta_amount < 0),
        key=lambda row: (row.delta_amount, row.category_id),
    )[:size]
    return CategoryDelta(increased=increased, decreased=decreased)
