"""
Discount Calculator

Pure functions; no database access. Every layer that prices a cart
(line items, bill totals, cart previews, promotion rules) calls
calculate_discount so previews and settled totals never drift.

RULES:
- percentage outside [0, 100] is treated as 0 (lenient, not an error)
- negative fixed amount is treated as 0
- percentage is taken from the base first; the fixed amount comes off
  the percentage-discounted remainder
- combined discount larger than the base clamps to the base (final = 0)
- rounding to cents (half-up) happens once, at the end
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..money import ZERO, quantize_money, to_decimal

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DiscountResult:
    discount_amount: Decimal
    final_amount: Decimal

    def __iter__(self):
        # Allows: discount, total = calculate_discount(...)
        yield self.discount_amount
        yield self.final_amount


def calculate_discount(base_amount, percentage=0, fixed_amount=0) -> DiscountResult:
    base = to_decimal(base_amount, "base_amount")
    if base < ZERO:
        base = ZERO

    pct = to_decimal(percentage, "percentage")
    if pct < ZERO or pct > HUNDRED:
        pct = ZERO

    fixed = to_decimal(fixed_amount, "fixed_amount")
    if fixed < ZERO:
        fixed = ZERO

    discount = base * pct / HUNDRED + fixed
    if discount > base:
        discount = base

    discount_amount = quantize_money(discount)
    final_amount = quantize_money(base) - discount_amount
    return DiscountResult(discount_amount=discount_amount, final_amount=final_amount)


def calculate_item_discount(base_amount, percentage=0, fixed_amount=0) -> DiscountResult:
    """Line-level discount against unit_price * quantity."""
    return calculate_discount(base_amount, percentage, fixed_amount)


def calculate_bill_discount(items_total, percentage=0, fixed_amount=0) -> DiscountResult:
    """Bill-level discount against the sum of line totals."""
    return calculate_discount(items_total, percentage, fixed_amount)


def line_base_amount(unit_price, quantity: int) -> Decimal:
    return to_decimal(unit_price, "unit_price") * int(quantity)
