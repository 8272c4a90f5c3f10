"""Decimal helpers for currency amounts."""

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Iterable, Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_money(value: Number) -> Decimal:
    """Quantize a value to two decimal places, half-up."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Number]) -> Decimal:
    return to_money(sum((to_money(v) for v in values), ZERO))


def percent_of(amount: Number, rate: Number) -> Decimal:
    """``rate`` percent of ``amount``, rounded to cents."""
    return to_money(to_money(amount) * Decimal(str(rate)) / Decimal("100"))


_ROUNDING_MODES = {
    "nearest": ROUND_HALF_UP,
    "up": ROUND_CEILING,
    "down": ROUND_FLOOR,
}


def apply_rounding(amount: Decimal, policy: str, unit: Decimal) -> Decimal:
    """Round a bill total to a multiple of ``unit`` according to ``policy``.

    ``none`` keeps the amount at cent precision.
    """
    if policy == "none":
        return to_money(amount)
    steps = (to_money(amount) / unit).quantize(Decimal("1"), rounding=_ROUNDING_MODES[policy])
    return to_money(steps * unit)
