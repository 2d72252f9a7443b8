from decimal import Decimal, ROUND_HALF_UP


MONEY_QUANT = Decimal("0.01")
PCT_QUANT = Decimal("0.000001")
UNIT_QUANT = Decimal("1")


def money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def pct(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(PCT_QUANT, rounding=ROUND_HALF_UP)


def round2(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return money(value)


def round_int(value: Decimal | None) -> int | None:
    if value is None:
        return None
    return int(Decimal(str(value)).quantize(UNIT_QUANT, rounding=ROUND_HALF_UP))


def to_cents(value: Decimal) -> int:
    return int((Decimal(str(value)) * 100).quantize(UNIT_QUANT, rounding=ROUND_HALF_UP))


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))
