"""Day-granular currency conversion into the user's base currency.

Callers collect every (currency, instant) pair they will need, resolve them in
one batch, then convert through the returned ``FxRateTable``. The table never
guesses: asking for a pair that was not resolved raises ``FxRateNotFoundError``.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Iterator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Protocol

from finhealth.core.cancellation import CancelEvent, raise_if_cancelled
from finhealth.core.exceptions import FxRateNotFoundError, ValidationError
from finhealth.services.snapshots import Money


logger = logging.getLogger("finhealth.fx")

USD = "USD"
ONE_TICK = timedelta(microseconds=1)

RateKey = tuple[str, date]


class FxRateSource(Protocol):
    def units_per_usd(self, requests: Collection[RateKey]) -> dict[RateKey, Decimal]:
        """Units of each currency per one USD on each requested day.

        Must return a value for every request or raise ``FxRateNotFoundError``.
        """
        ...


def normalize_currency_code(code: str | None) -> str:
    if code is None or not code.strip():
        raise ValidationError("Currency code is empty.")
    return code.strip().upper()


def rate_day(at: datetime | date) -> date:
    if isinstance(at, datetime):
        if at.tzinfo is not None:
            at = at.astimezone(timezone.utc)
        return at.date()
    return at


def rate_instant_before(boundary_utc: datetime) -> datetime:
    """Instant used to price balances at a boundary that sits on a day start."""
    return boundary_utc - ONE_TICK


class FxRateTable:
    def __init__(self, base_currency: str, rates: dict[RateKey, Decimal]):
        self.base_currency = normalize_currency_code(base_currency)
        self._rates = rates

    def __contains__(self, key: RateKey) -> bool:
        currency, day = key
        currency = normalize_currency_code(currency)
        return currency == self.base_currency or (currency, day) in self._rates

    def __len__(self) -> int:
        return len(self._rates)

    def __iter__(self) -> Iterator[RateKey]:
        return iter(self._rates)

    def rate(self, currency_code: str, at: datetime | date) -> Decimal:
        currency = normalize_currency_code(currency_code)
        if currency == self.base_currency:
            return Decimal("1")
        key = (currency, rate_day(at))
        try:
            return self._rates[key]
        except KeyError:
            raise FxRateNotFoundError(currency, key[1]) from None

    def convert(self, amount: Decimal, currency_code: str, at: datetime | date) -> Decimal:
        return amount * self.rate(currency_code, at)

    def convert_money(self, value: Money, at: datetime | date) -> Decimal:
        return self.convert(value.amount, value.currency_code, at)


def resolve_rates(
    pairs: Iterable[tuple[str, datetime | date]],
    base_currency: str,
    source: FxRateSource,
    *,
    cancel_event: CancelEvent | None = None,
) -> FxRateTable:
    """Resolve the base-currency multiplier of every distinct (currency, day) pair in one batch."""
    base = normalize_currency_code(base_currency)

    wanted: set[RateKey] = set()
    for currency_code, at in pairs:
        raise_if_cancelled(cancel_event)
        currency = normalize_currency_code(currency_code)
        if currency == base:
            continue
        wanted.add((currency, rate_day(at)))

    if not wanted:
        return FxRateTable(base, {})

    requests: set[RateKey] = set()
    for currency, day in wanted:
        if currency != USD:
            requests.add((currency, day))
        if base != USD:
            requests.add((base, day))

    units = source.units_per_usd(requests) if requests else {}

    def units_for(currency: str, day: date) -> Decimal:
        if currency == USD:
            return Decimal("1")
        try:
            return units[(currency, day)]
        except KeyError:
            logger.warning("FX source returned no rate for %s on %s", currency, day.isoformat())
            raise FxRateNotFoundError(currency, day) from None

    rates: dict[RateKey, Decimal] = {}
    for currency, day in wanted:
        from_units = units_for(currency, day)
        to_units = units_for(base, day)
        if from_units == 0:
            raise FxRateNotFoundError(currency, day)
        rates[(currency, day)] = to_units / from_units

    logger.debug("Resolved %d FX pairs into %s", len(rates), base)
    return FxRateTable(base, rates)
