from decimal import Decimal

import pytest

from retailpos.errors import SaleSettledError, ValidationError
from retailpos.services import payment_service, promotions_service, sales_service
from retailpos.services.promotions_service import (
    CartLine,
    CategoryInCart,
    DiscountRule,
    MaxAmount,
    MinAmount,
    MinQuantity,
    ProductInCart,
    apply_rules,
    best_rule_combination,
    rule_from_dict,
)


LINES = [
    CartLine(product_id=1, quantity=2, unit_price=Decimal("50.00"), category="Beverages"),
    CartLine(product_id=2, quantity=1, unit_price=Decimal("100.00"), category="Snacks",
             line_discount=Decimal("20.00")),
]


def test_subtotal_is_net_of_line_discounts():
    result = apply_rules(LINES, [])
    assert result.subtotal == Decimal("180.00")
    assert result.discount_amount == Decimal("0")
    assert result.total == Decimal("180.00")
    assert result.applied_rules == ()


@pytest.mark.parametrize(
    "condition, matches",
    [
        (MinAmount(Decimal("200")), True),
        (MinAmount(Decimal("200.01")), False),
        (MaxAmount(Decimal("150")), False),
        (MinQuantity(3), True),
        (MinQuantity(4), False),
        (MinQuantity(3, "equals"), True),
        (ProductInCart(2), True),
        (ProductInCart(3), False),
        (CategoryInCart(" beverages "), True),
        (CategoryInCart("Dairy"), False),
    ],
)
def test_condition_kinds(condition, matches):
    # min/max amount look at the gross cart (200.00), not the net subtotal
    assert promotions_service.condition_holds(condition, LINES) is matches


def test_unknown_condition_kind_is_an_error():
    with pytest.raises(ValidationError):
        promotions_service.condition_holds(object(), LINES)


def test_unknown_operator_is_an_error():
    with pytest.raises(ValidationError):
        promotions_service.condition_holds(MinAmount(Decimal("1"), "roughly"), LINES)


def test_highest_priority_wins_without_stacking():
    rules = [
        DiscountRule("ten-off", percentage=Decimal("10"), priority=1),
        DiscountRule("big-cart", fixed_amount=Decimal("15"), priority=5, conditions=(MinAmount(Decimal("150")),)),
    ]
    result = apply_rules(LINES, rules)
    assert result.applied_rules == ("big-cart",)
    assert result.discount_amount == Decimal("15.00")
    assert result.total == Decimal("165.00")


def test_stacking_discounts_the_remainder():
    rules = [
        DiscountRule("ten-off", percentage=Decimal("10"), priority=1),
        DiscountRule("big-cart", fixed_amount=Decimal("15"), priority=5),
    ]
    result = apply_rules(LINES, rules, allow_stacking=True)
    # 180 - 15 = 165; 10% of 165 = 16.50
    assert result.applied_rules == ("big-cart", "ten-off")
    assert result.discount_amount == Decimal("31.50")
    assert result.total == Decimal("148.50")


def test_inactive_and_unmatched_rules_are_skipped():
    rules = [
        DiscountRule("off", percentage=Decimal("50"), priority=9, is_active=False),
        DiscountRule("dairy", percentage=Decimal("30"), priority=8, conditions=(CategoryInCart("Dairy"),)),
        DiscountRule("snacks", percentage=Decimal("5"), priority=1, conditions=(CategoryInCart("snacks"),)),
    ]
    result = apply_rules(LINES, rules)
    assert result.applied_rules == ("snacks",)
    assert result.discount_amount == Decimal("9.00")


def test_discount_never_exceeds_subtotal():
    result = apply_rules(LINES, [DiscountRule("huge", fixed_amount=Decimal("1000"))])
    assert result.discount_amount == Decimal("180.00")
    assert result.total == Decimal("0.00")


def test_best_combination_picks_largest_saving():
    rules = [
        DiscountRule("first", fixed_amount=Decimal("5"), priority=10),
        DiscountRule("second", percentage=Decimal("20"), priority=1),
    ]
    assert apply_rules(LINES, rules).applied_rules == ("first",)

    best = best_rule_combination(LINES, rules)
    assert best.applied_rules == ("second",)
    assert best.discount_amount == Decimal("36.00")

    stacked = best_rule_combination(LINES, rules, allow_stacking=True)
    assert stacked.applied_rules == ("first", "second")
    assert stacked.discount_amount == Decimal("40.00")


def test_rule_from_dict():
    rule = rule_from_dict({
        "name": "weekend",
        "percentage": "12.5",
        "priority": "3",
        "conditions": [
            {"type": "min_amount", "value": "100"},
            {"type": "min_quantity", "value": 2, "operator": "greater_than"},
            {"type": "category", "value": "Snacks"},
        ],
    })
    assert rule.percentage == Decimal("12.5")
    assert rule.priority == 3
    assert rule.conditions == (
        MinAmount(Decimal("100"), "at_least"),
        MinQuantity(2, "greater_than"),
        CategoryInCart("Snacks"),
    )


@pytest.mark.parametrize(
    "data",
    [
        {"percentage": 10},
        {"name": "x", "conditions": [{"type": "weather", "value": "sunny"}]},
        {"name": "x", "conditions": [{"type": "product", "value": "abc"}]},
        {"name": "x", "percentage": "lots"},
    ],
)
def test_rule_from_dict_rejects_bad_input(data):
    with pytest.raises(ValidationError):
        rule_from_dict(data)


def test_apply_promotions_to_sale_sets_bill_discount(cashier, make_product, receive):
    product = make_product("SKU-PROMO", price="40.00", category="Snacks")
    receive(product, 10, "20.00")
    sale = sales_service.create_sale(cashier.id, bill_discount_percentage=50)
    sales_service.create_sale_item(sale.id, product.id, 3)

    rules = [DiscountRule("snack-deal", percentage=Decimal("10"), conditions=(CategoryInCart("Snacks"),))]
    result, sale = promotions_service.apply_promotions_to_sale(sale.id, rules)

    assert result.discount_amount == Decimal("12.00")
    assert sale.bill_discount_percentage == Decimal("0")
    assert sale.bill_discount_fixed == Decimal("12.00")
    assert sale.total_amount == Decimal("108.00")


def test_apply_promotions_refused_on_settled_sale(cashier, product):
    sale = sales_service.create_sale(cashier.id)
    sales_service.create_sale_item(sale.id, product.id, 1)
    payment_service.record_payment(sale.id, "cash", "100")

    with pytest.raises(SaleSettledError):
        promotions_service.apply_promotions_to_sale(sale.id, [DiscountRule("late", percentage=Decimal("5"))])
