"""Column guards for ``@validates`` hooks on quantities, prices and rates.

A bad value raises ``ValueError`` at assignment time, before any flush.
"""

from decimal import Decimal, InvalidOperation


def _as_decimal(key: str, value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key} must be numeric, got {value!r}") from None


def non_negative(key: str, value):
    if value is not None and _as_decimal(key, value) < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def positive(key: str, value):
    """Quantities, capacities and payment amounts."""
    if value is not None and _as_decimal(key, value) <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def percentage(key: str, value):
    """Tax and service-charge rates, 0 to 100 inclusive."""
    if value is not None and not (0 <= _as_decimal(key, value) <= 100):
        raise ValueError(f"{key} must be between 0 and 100, got {value}")
    return value
