# Overview: Service-layer operations for promotions; evaluates discount rules against a cart.

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from decimal import Decimal

from ..extensions import db
from ..errors import ValidationError
from ..models import Sale, SaleItem
from ..money import ZERO, quantize_money, to_decimal
from .discount_service import calculate_discount
from .sales_service import get_sale, update_sale
"""
Promotion rules

A rule carries a percentage and/or fixed bill discount plus a list of
conditions that must ALL hold for it to apply (no conditions = always).
Condition kinds are a closed set of typed records; an unknown kind is a
validation error, never a silent "does not match".

Conditions look at the gross cart (unit_price * quantity); the discount
itself is taken from the net subtotal (after line discounts) that is
still left once higher-priority rules have applied.
"""


OP_EQUALS = "equals"
OP_GREATER_THAN = "greater_than"
OP_LESS_THAN = "less_than"
OP_AT_LEAST = "at_least"
OP_AT_MOST = "at_most"

OPERATORS = {
    OP_EQUALS: operator.eq,
    OP_GREATER_THAN: operator.gt,
    OP_LESS_THAN: operator.lt,
    OP_AT_LEAST: operator.ge,
    OP_AT_MOST: operator.le,
}


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price: Decimal
    category: str | None = None
    line_discount: Decimal = ZERO

    @property
    def gross_amount(self) -> Decimal:
        return to_decimal(self.unit_price, "unit_price") * self.quantity

    @property
    def net_amount(self) -> Decimal:
        return self.gross_amount - to_decimal(self.line_discount, "line_discount")


# Condition kinds

@dataclass(frozen=True)
class MinAmount:
    amount: Decimal
    operator: str = OP_AT_LEAST


@dataclass(frozen=True)
class MaxAmount:
    amount: Decimal
    operator: str = OP_AT_MOST


@dataclass(frozen=True)
class MinQuantity:
    quantity: int
    operator: str = OP_AT_LEAST


@dataclass(frozen=True)
class ProductInCart:
    product_id: int


@dataclass(frozen=True)
class CategoryInCart:
    category: str


@dataclass(frozen=True)
class DiscountRule:
    name: str
    percentage: Decimal = ZERO
    fixed_amount: Decimal = ZERO
    priority: int = 0
    conditions: tuple = ()
    is_active: bool = True


@dataclass(frozen=True)
class PromotionResult:
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    applied_rules: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "total": str(self.total),
            "applied_rules": list(self.applied_rules),
        }


def compare(actual, op: str, expected) -> bool:
    fn = OPERATORS.get(op)
    if fn is None:
        raise ValidationError(
            f"Unknown operator: {op}. Must be one of {sorted(OPERATORS)}",
            details={"operator": op},
        )
    return fn(actual, expected)


def gross_subtotal(lines) -> Decimal:
    return sum((line.gross_amount for line in lines), ZERO)


def net_subtotal(lines) -> Decimal:
    return quantize_money(sum((line.net_amount for line in lines), ZERO))


def condition_holds(condition, lines) -> bool:
    if isinstance(condition, MinAmount):
        return compare(gross_subtotal(lines), condition.operator, to_decimal(condition.amount))
    if isinstance(condition, MaxAmount):
        return compare(gross_subtotal(lines), condition.operator, to_decimal(condition.amount))
    if isinstance(condition, MinQuantity):
        return compare(sum(line.quantity for line in lines), condition.operator, int(condition.quantity))
    if isinstance(condition, ProductInCart):
        return any(line.product_id == condition.product_id for line in lines)
    if isinstance(condition, CategoryInCart):
        wanted = condition.category.strip().lower()
        return any((line.category or "").strip().lower() == wanted for line in lines)
    raise ValidationError(
        f"Unknown condition kind: {type(condition).__name__}",
        details={"condition": repr(condition)},
    )


def rule_matches(rule: DiscountRule, lines) -> bool:
    return all(condition_holds(c, lines) for c in rule.conditions)


def apply_rules(lines, rules, *, allow_stacking: bool = False) -> PromotionResult:
    """
    Apply matching active rules, highest priority first.

    Each rule discounts what is left of the subtotal after the rules
    before it. Without stacking only the first rule that yields a
    discount applies.
    """
    lines = list(lines)
    subtotal = net_subtotal(lines)
    ordered = sorted((r for r in rules if r.is_active), key=lambda r: r.priority, reverse=True)

    total_discount = ZERO
    applied = []
    for rule in ordered:
        if not rule_matches(rule, lines):
            continue
        discount, _ = calculate_discount(subtotal - total_discount, rule.percentage, rule.fixed_amount)
        if discount <= ZERO:
            continue
        total_discount += discount
        applied.append(rule.name)
        if not allow_stacking:
            break

    return PromotionResult(
        subtotal=subtotal,
        discount_amount=total_discount,
        total=subtotal - total_discount,
        applied_rules=tuple(applied),
    )


def best_rule_combination(lines, rules, *, allow_stacking: bool = False) -> PromotionResult:
    """Largest saving among each rule on its own and, if allowed, all rules stacked."""
    lines = list(lines)
    active = [r for r in rules if r.is_active]

    best = apply_rules(lines, [])
    for rule in active:
        candidate = apply_rules(lines, [rule])
        if candidate.discount_amount > best.discount_amount:
            best = candidate

    if allow_stacking and len(active) > 1:
        candidate = apply_rules(lines, active, allow_stacking=True)
        if candidate.discount_amount > best.discount_amount:
            best = candidate
    return best


# =============================================================================
# JSON INPUT
# =============================================================================

def _condition_from_dict(data: dict):
    kind = data.get("type")
    op = data.get("operator")
    value = data.get("value")
    try:
        if kind == "min_amount":
            return MinAmount(to_decimal(value, "value"), op or OP_AT_LEAST)
        if kind == "max_amount":
            return MaxAmount(to_decimal(value, "value"), op or OP_AT_MOST)
        if kind == "min_quantity":
            return MinQuantity(int(value), op or OP_AT_LEAST)
        if kind == "product":
            return ProductInCart(int(value))
        if kind == "category":
            return CategoryInCart(str(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid value for {kind} condition: {exc}", details={"condition": data})
    raise ValidationError(f"Unknown condition kind: {kind}", details={"condition": data})


def rule_from_dict(data: dict) -> DiscountRule:
    if not data.get("name"):
        raise ValidationError("Rule name is required")
    try:
        return DiscountRule(
            name=data["name"],
            percentage=to_decimal(data.get("percentage", 0), "percentage"),
            fixed_amount=to_decimal(data.get("fixed_amount", 0), "fixed_amount"),
            priority=int(data.get("priority", 0)),
            conditions=tuple(_condition_from_dict(c) for c in data.get("conditions") or []),
            is_active=bool(data.get("is_active", True)),
        )
    except ValidationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ValidationError(str(exc), details={"rule": data.get("name")})


def lines_for_sale(sale_id: int) -> list[CartLine]:
    items = db.session.query(SaleItem).filter_by(sale_id=sale_id).order_by(SaleItem.id.asc()).all()
    return [
        CartLine(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            category=item.product.category if item.product else None,
            line_discount=item.discount_amount,
        )
        for item in items
    ]


def apply_promotions_to_sale(
    sale_id: int,
    rules: list[DiscountRule],
    *,
    allow_stacking: bool = False,
    optimal: bool = False,
) -> tuple[PromotionResult, Sale]:
    """
    Evaluate rules against a sale's items and store the result as its
    bill discount (fixed amount, percentage reset to 0).
    """
    get_sale(sale_id)
    lines = lines_for_sale(sale_id)
    if optimal:
        result = best_rule_combination(lines, rules, allow_stacking=allow_stacking)
    else:
        result = apply_rules(lines, rules, allow_stacking=allow_stacking)

    sale = update_sale(
        sale_id,
        {"bill_discount_percentage": 0, "bill_discount_fixed": result.discount_amount},
    )
    return result, sale
