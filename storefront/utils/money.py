"""Decimal helpers for currency amounts."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_decimal(value, field='amount') -> Decimal:
    """
    Coerce user or database input to Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.

    Raises:
        ValueError: if the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'{field} is required')
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f'{field} must be a number')
    if not result.is_finite():
        raise ValueError(f'{field} must be a number')
    return result


def quantize_money(value) -> Decimal:
    """Round to two decimal places, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Convert a currency amount to integer minor units (e.g. paise)."""
    return int((to_decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(value: int) -> Decimal:
    """Convert integer minor units back to a currency amount."""
    return quantize_money(Decimal(int(value)) / 100)
