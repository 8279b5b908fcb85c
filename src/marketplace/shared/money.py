"""Money arithmetic helpers.

Amounts are stored as floats on aggregates; every computation goes through
Decimal and is rounded half-up to two places so displayed totals and stored
totals agree.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
EPSILON = 0.01


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_money(value) -> float:
    """Round to 2 dp, half-up, and return a float for storage."""
    return float(quantize(value))


def amounts_match(a, b, tolerance: float = EPSILON) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= to_decimal(tolerance)


def to_minor_units(value) -> int:
    """Convert to the provider's minor unit (cents)."""
    return int((quantize(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(value: int) -> float:
    return round_money(Decimal(int(value)) / 100)
