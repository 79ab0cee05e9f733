from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

COST_QUANT = Decimal("0.0001")
QTY_QUANT = Decimal("0.0001")
ZERO = Decimal("0")
ZERO_COST = Decimal("0.0000")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so SQLite float sums do not leak binary noise into the result.
    return Decimal(str(value))


def to_cost(value: Decimal | int | float | str | None) -> Decimal:
    return to_decimal(value).quantize(COST_QUANT, rounding=ROUND_HALF_UP)


def to_quantity(value: Decimal | int | float | str | None) -> Decimal:
    return to_decimal(value).quantize(QTY_QUANT, rounding=ROUND_HALF_UP)


def floor_units(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))
