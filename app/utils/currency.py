"""Price conversion between catalog major units and gateway minor units."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


def to_minor_units(price) -> int:
    """499 -> 49900; 12.345 -> 1235. Unparseable prices count as 0."""
    try:
        value = Decimal(str(price))
    except (InvalidOperation, ValueError):
        return 0
    if not value.is_finite():
        return 0
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

