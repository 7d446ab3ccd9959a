"""Whole-number parsing for quantities and limits."""
from decimal import Decimal, InvalidOperation


def to_whole_number(value, field='value') -> int:
    """
    Coerce user input to int without truncating.

    Accepts ints and integral floats or strings (``3``, ``3.0``, ``'3'``).

    Raises:
        ValueError: missing, boolean, fractional or non-numeric input.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'{field} must be a whole number')
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f'{field} must be a whole number')
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError(f'{field} must be a whole number')
    return int(number)
