"""Money helpers: Decimal conversion, whole-unit rounding and JSON-friendly output."""
from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR, InvalidOperation

ZERO = Decimal('0')
UNIT = Decimal('1')


def to_decimal(value) -> Decimal:
    """
    Convert a number (int, float, str, Decimal or None) to Decimal.

    None becomes 0. Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValueError: if the value is not a finite number (NaN and Infinity
            included).
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f'Invalid amount: {value!r}')
    if not result.is_finite():
        raise ValueError(f'Invalid amount: {value!r}')
    return result


def round_money(value) -> Decimal:
    """Round half-up to the currency's smallest unit (whole units)."""
    return to_decimal(value).quantize(UNIT, rounding=ROUND_HALF_UP)


def floor_money(value) -> Decimal:
    """Round down to whole units."""
    return to_decimal(value).quantize(UNIT, rounding=ROUND_FLOOR)


def as_number(value):
    """Render a Decimal for JSON: int when integral, float otherwise."""
    if value is None:
        return None
    value = to_decimal(value)
    if value == value.to_integral_value():
        return int(value)
    return float(value)
