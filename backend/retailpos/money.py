"""
Money helpers.

All monetary values are Decimal with 2 places, rounded half-up.
Rounding happens once, at the end of a calculation; intermediate
values keep full precision.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Coerce an incoming number to Decimal without float artifacts.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not
    Decimal("0.1000000000000000055511151231257827").
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"{field} must be a number")
    else:
        raise ValueError(f"{field} must be a number")
    # NaN and Infinity parse, but cannot be quantized or compared
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def quantize_money(value) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value) -> str | None:
    """Serialize money for JSON (string keeps exact cents)."""
    if value is None:
        return None
    return str(quantize_money(value))
