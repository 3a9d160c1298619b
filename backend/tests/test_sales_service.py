"""
Sale orchestrator tests.

Covers the create-item pipeline (cost, discount, stock, totals), item
updates and deletes with stock restore, derived state, bill numbering
and the search/list operations.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from retailpos.errors import (
    BusinessRuleError,
    DuplicateBillNumberError,
    InsufficientStockError,
    NotFoundError,
    OverpaymentError,
    SaleSettledError,
    ValidationError,
)
from retailpos.extensions import db
from retailpos.models import Sale, SaleItem, StockBatch, StockMovement, User
from retailpos.services import payment_service, sales_service, stock_ledger_service
from retailpos.services.sale_totals_service import recompute


class TestEndToEnd:
    def test_price_discount_pay_settle(self, cashier, product):
        sale = sales_service.create_sale(cashier.id)
        assert sales_service.sale_state(sale) == sales_service.STATE_OPEN

        item = sales_service.create_sale_item(sale.id, product.id, 1, unit_price="100", discount_percentage=10)
        assert item.line_total == Decimal("90.00")
        assert item.discount_amount == Decimal("10.00")

        sale = sales_service.update_sale(sale.id, {"bill_discount_fixed": 5})
        assert sale.subtotal_amount == Decimal("90.00")
        assert sale.bill_discount_amount == Decimal("5.00")
        assert sale.total_amount == Decimal("85.00")
        assert sales_service.sale_state(sale) == sales_service.STATE_PRICED

        payment_service.record_payment(sale.id, "cash", "85")
        status = payment_service.get_payment_status(sale.id)
        assert status["is_fully_paid"] is True
        assert status["balance"] == Decimal("0.00")
        assert sales_service.sale_state(sales_service.get_sale(sale.id)) == sales_service.STATE_SETTLED

    def test_recompute_is_idempotent(self, cashier, product):
        sale = sales_service.create_sale(cashier.id, bill_discount_percentage=10, bill_discount_fixed=3)
        sales_service.create_sale_item(sale.id, product.id, 2, discount_fixed="7.50")
        sale = sales_service.get_sale(sale.id)

        first = (sale.subtotal_amount, sale.bill_discount_amount, sale.total_amount)
        recompute(sale)
        second = (sale.subtotal_amount, sale.bill_discount_amount, sale.total_amount)
        recompute(sale)
        third = (sale.subtotal_amount, sale.bill_discount_amount, sale.total_amount)
        db.session.commit()

        # 2 x 100 - 7.50 = 192.50; 10% = 19.25, + 3 = 22.25
        assert first == second == third == (Decimal("192.50"), Decimal("22.25"), Decimal("170.25"))
        assert sale.bill_discount_percentage == Decimal("10")
        assert sale.bill_discount_fixed == Decimal("3.00")


class TestCreateSale:
    def test_bill_numbers_are_sequential_per_day(self, cashier):
        when = datetime(2026, 2, 11, 9, 30)
        first = sales_service.create_sale(cashier.id, sale_date=when)
        second = sales_service.create_sale(cashier.id, sale_date=when)
        assert first.bill_number == "BILL-20260211-0001"
        assert second.bill_number == "BILL-20260211-0002"

    def test_deleted_bill_number_is_not_reused(self, cashier):
        when = datetime(2026, 2, 12, 9, 30)
        first = sales_service.create_sale(cashier.id, sale_date=when)
        sales_service.delete_sale(first.id)

        second = sales_service.create_sale(cashier.id, sale_date=when)
        assert second.bill_number == "BILL-20260212-0002"
        with pytest.raises(NotFoundError):
            sales_service.get_sale(first.id)

    def test_generated_numbers_skip_explicitly_taken_ones(self, cashier):
        when = datetime(2026, 10, 19, 8, 0)
        sales_service.create_sale(cashier.id, bill_number="BILL-20261019-0001")
        sales_service.create_sale(cashier.id, bill_number="BILL-20261019-0003")

        numbers = [sales_service.create_sale(cashier.id, sale_date=when).bill_number for _ in range(3)]

        assert numbers == ["BILL-20261019-0002", "BILL-20261019-0004", "BILL-20261019-0005"]

    def test_explicit_duplicate_bill_number_rejected(self, cashier):
        sales_service.create_sale(cashier.id, bill_number="MANUAL-1")
        with pytest.raises(DuplicateBillNumberError) as exc:
            sales_service.create_sale(cashier.id, bill_number="MANUAL-1")
        assert exc.value.code == "DUPLICATE_BILL_NUMBER"
        assert exc.value.http_status == 409

    def test_unknown_or_inactive_cashier(self, db_session):
        with pytest.raises(NotFoundError) as exc:
            sales_service.create_sale(12345)
        assert exc.value.code == "CASHIER_NOT_FOUND"

        inactive = User(username="gone", is_active=False)
        db_session.add(inactive)
        db_session.commit()
        with pytest.raises(NotFoundError):
            sales_service.create_sale(inactive.id)

    def test_unknown_customer(self, cashier):
        with pytest.raises(NotFoundError) as exc:
            sales_service.create_sale(cashier.id, customer_id=999)
        assert exc.value.code == "CUSTOMER_NOT_FOUND"

    @pytest.mark.parametrize(
        "kwargs, code",
        [
            ({"bill_discount_percentage": 101}, "INVALID_DISCOUNT_PERCENTAGE"),
            ({"bill_discount_percentage": -1}, "INVALID_DISCOUNT_PERCENTAGE"),
            ({"bill_discount_fixed": -0.01}, "INVALID_DISCOUNT_AMOUNT"),
        ],
    )
    def test_bill_discount_input_validated(self, cashier, kwargs, code):
        with pytest.raises(ValidationError) as exc:
            sales_service.create_sale(cashier.id, **kwargs)
        assert exc.value.code == code


class TestSaleItems:
    def test_item_uses_product_price_and_fifo_cost(self, cashier, fifo_product):
        product, older, newer = fifo_product
        sale = sales_service.create_sale(cashier.id)

        item = sales_service.create_sale_item(sale.id, product.id, 8)

        assert item.unit_price == Decimal("20.00")
        assert item.unit_cost == Decimal("10.75")
        assert item.line_total == Decimal("160.00")
        assert db.session.get(StockBatch, older.id).available_quantity == 0
        assert db.session.get(StockBatch, newer.id).available_quantity == 7

    def test_insufficient_stock_leaves_no_trace(self, cashier, fifo_product):
        product, _, _ = fifo_product
        sale = sales_service.create_sale(cashier.id)
        movements = db.session.query(StockMovement).count()

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale_item(sale.id, product.id, 16)

        assert db.session.query(SaleItem).count() == 0
        assert db.session.query(StockMovement).count() == movements
        assert stock_ledger_service.get_available(product.id) == 15
        assert sales_service.get_sale(sale.id).total_amount == Decimal("0.00")

    def test_failure_after_consume_rolls_back_everything(self, cashier, product, monkeypatch):
        sale = sales_service.create_sale(cashier.id)

        def boom(_sale):
            raise RuntimeError("totals unavailable")

        monkeypatch.setattr(sales_service, "recompute", boom)
        with pytest.raises(RuntimeError):
            sales_service.create_sale_item(sale.id, product.id, 3)

        assert db.session.query(SaleItem).count() == 0
        assert stock_ledger_service.get_available(product.id) == 50
        assert stock_ledger_service.list_movements(reference_type="sale_item") == []

    @pytest.mark.parametrize(
        "kwargs, code",
        [
            ({"quantity": 0}, "INVALID_QUANTITY"),
            ({"quantity": -2}, "INVALID_QUANTITY"),
            ({"quantity": 1, "unit_price": "-1"}, "INVALID_PRICE"),
            ({"quantity": 1, "discount_percentage": 120}, "INVALID_DISCOUNT_PERCENTAGE"),
            ({"quantity": 1, "discount_fixed": -5}, "INVALID_DISCOUNT_AMOUNT"),
            ({"quantity": 1, "unit_price": "NaN"}, "INVALID_PRICE"),
            ({"quantity": 1, "unit_price": "Infinity"}, "INVALID_PRICE"),
            ({"quantity": 1, "discount_fixed": "-Infinity"}, "INVALID_DISCOUNT_AMOUNT"),
            ({"quantity": 1, "discount_percentage": "sNaN"}, "INVALID_DISCOUNT_PERCENTAGE"),
        ],
    )
    def test_item_input_validated(self, cashier, product, kwargs, code):
        sale = sales_service.create_sale(cashier.id)
        quantity = kwargs.pop("quantity")
        with pytest.raises(ValidationError) as exc:
            sales_service.create_sale_item(sale.id, product.id, quantity, **kwargs)
        assert exc.value.code == code

    def test_inactive_product_rejected(self, cashier, make_product, receive):
        product = make_product("SKU-OFF", is_active=False)
        receive(product, 5, "1.00")
        sale = sales_service.create_sale(cashier.id)

        with pytest.raises(BusinessRuleError) as exc:
            sales_service.create_sale_item(sale.id, product.id, 1)
        assert exc.value.code == "PRODUCT_INACTIVE"

    def test_reducing_quantity_restores_stock(self, cashier, fifo_product):
        product, older, newer = fifo_product
        sale = sales_service.create_sale(cashier.id)
        item = sales_service.create_sale_item(sale.id, product.id, 8)

        item = sales_service.update_sale_item(item.id, quantity=3)

        assert item.quantity == 3
        assert item.unit_cost == Decimal("10.75")
        assert item.line_total == Decimal("60.00")
        assert db.session.get(StockBatch, older.id).available_quantity == 2
        assert db.session.get(StockBatch, newer.id).available_quantity == 10
        assert sales_service.get_sale(sale.id).total_amount == Decimal("60.00")

        returns = [
            m for m in stock_ledger_service.list_movements(reference_type="sale_item", reference_id=item.id)
            if m.movement_type == "RETURN"
        ]
        assert sum(m.quantity for m in returns) == 5

    def test_increasing_quantity_draws_more(self, cashier, fifo_product):
        product, _, _ = fifo_product
        sale = sales_service.create_sale(cashier.id)
        item = sales_service.create_sale_item(sale.id, product.id, 2)

        sales_service.update_sale_item(item.id, quantity=10)

        assert stock_ledger_service.get_available(product.id) == 5
        with pytest.raises(InsufficientStockError):
            sales_service.update_sale_item(item.id, quantity=16)
        assert sales_service.get_sale_item(item.id).quantity == 10

    def test_delete_item_restores_stock_and_totals(self, cashier, product):
        sale = sales_service.create_sale(cashier.id)
        keep = sales_service.create_sale_item(sale.id, product.id, 1)
        drop = sales_service.create_sale_item(sale.id, product.id, 4)

        sales_service.delete_sale_item(drop.id)

        assert [i.id for i in sales_service.list_sale_items(sale.id)] == [keep.id]
        assert stock_ledger_service.get_available(product.id) == 49
        assert sales_service.get_sale(sale.id).total_amount == Decimal("100.00")
        with pytest.raises(NotFoundError) as exc:
            sales_service.get_sale_item(drop.id)
        assert exc.value.code == "SALE_ITEM_NOT_FOUND"

    def test_settled_sale_rejects_mutation(self, cashier, product):
        sale = sales_service.create_sale(cashier.id)
        item = sales_service.create_sale_item(sale.id, product.id, 1)
        payment_service.record_payment(sale.id, "card", "100")

        with pytest.raises(SaleSettledError):
            sales_service.create_sale_item(sale.id, product.id, 1)
        with pytest.raises(SaleSettledError):
            sales_service.update_sale_item(item.id, quantity=2)
        with pytest.raises(SaleSettledError):
            sales_service.delete_sale_item(item.id)
        with pytest.raises(SaleSettledError):
            sales_service.update_sale(sale.id, {"bill_discount_percentage": 5})

        # notes are not pricing
        assert sales_service.update_sale(sale.id, {"notes": "gift wrap"}).notes == "gift wrap"


def test_total_cannot_drop_below_payments(cashier, product):
    sale = sales_service.create_sale(cashier.id)
    item = sales_service.create_sale_item(sale.id, product.id, 3)
    payment_service.record_payment(sale.id, "cash", "250")

    with pytest.raises(OverpaymentError):
        sales_service.update_sale_item(item.id, quantity=2)

    assert sales_service.get_sale_item(item.id).quantity == 3
    assert stock_ledger_service.get_available(product.id) == 47


def test_zero_total_sale_stays_editable(cashier, make_product, receive):
    cheap = make_product("SKU-CHEAP", price="5.00")
    receive(cheap, 5, "1.00")
    dear = make_product("SKU-DEAR", price="100.00")
    receive(dear, 5, "40.00")
    sale = sales_service.create_sale(cashier.id, bill_discount_fixed=10)

    first = sales_service.create_sale_item(sale.id, cheap.id, 1)
    sale = sales_service.get_sale(sale.id)
    assert sale.total_amount == Decimal("0.00")
    assert sales_service.sale_state(sale) == sales_service.STATE_PRICED

    sales_service.create_sale_item(sale.id, dear.id, 1)
    sales_service.delete_sale_item(first.id)
    sale = sales_service.update_sale(sale.id, {"bill_discount_fixed": 20})
    assert sale.total_amount == Decimal("80.00")
    assert sales_service.sale_state(sale) == sales_service.STATE_PRICED


class TestDeleteSale:
    def test_delete_returns_all_stock(self, cashier, fifo_product):
        product, _, _ = fifo_product
        sale = sales_service.create_sale(cashier.id)
        sales_service.create_sale_item(sale.id, product.id, 6)
        sales_service.create_sale_item(sale.id, product.id, 4)

        sales_service.delete_sale(sale.id)

        assert stock_ledger_service.get_available(product.id) == 15
        assert db.session.get(Sale, sale.id).deleted_at is not None
        sales, total = sales_service.list_sales()
        assert total == 0

    def test_sale_with_payments_cannot_be_deleted(self, cashier, product):
        sale = sales_service.create_sale(cashier.id)
        sales_service.create_sale_item(sale.id, product.id, 1)
        payment_service.record_payment(sale.id, "cash", "10")

        with pytest.raises(BusinessRuleError) as exc:
            sales_service.delete_sale(sale.id)
        assert exc.value.code == "SALE_HAS_PAYMENTS"
        assert stock_ledger_service.get_available(product.id) == 49


class TestQueries:
    def test_search_and_filters(self, cashier, customer):
        a = sales_service.create_sale(cashier.id, customer.id, sale_date=datetime(2026, 3, 1, 10))
        b = sales_service.create_sale(cashier.id, sale_date=datetime(2026, 3, 5, 10))

        by_customer, total = sales_service.get_sales_by_customer(customer.id)
        assert total == 1 and by_customer[0].id == a.id

        found, _ = sales_service.search_sales(customer_name="jane")
        assert [s.id for s in found] == [a.id]

        found, _ = sales_service.search_sales(bill_number="20260305")
        assert [s.id for s in found] == [b.id]

        in_range, total = sales_service.get_sales_by_date_range("2026-03-02T00:00:00Z", "2026-03-31T00:00:00Z")
        assert total == 1 and in_range[0].id == b.id

        by_cashier, total = sales_service.get_sales_by_cashier(cashier.id)
        assert total == 2
        assert [s.id for s in by_cashier] == [b.id, a.id]

        assert sales_service.get_sale_by_bill_number(a.bill_number).id == a.id

    def test_pagination_bounds(self, cashier):
        for _ in range(3):
            sales_service.create_sale(cashier.id)

        page, total = sales_service.list_sales(limit=2, offset=2)
        assert total == 3
        assert len(page) == 1
        with pytest.raises(ValidationError):
            sales_service.list_sales(limit=0)

    def test_date_range_requires_order(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.get_sales_by_date_range("2026-03-05T00:00:00", "2026-03-01T00:00:00")


@pytest.mark.parametrize(
    "unit_cost, unit_price, discount, quantity, expected",
    [
        (10, 15, 0, 2, "10.00"),
        (20, 15, 0, 1, "0.00"),
        ("9.99", "15.00", "1.00", 3, "14.03"),
    ],
)
def test_calculate_item_profit(unit_cost, unit_price, discount, quantity, expected):
    assert sales_service.calculate_item_profit(unit_cost, unit_price, discount, quantity) == Decimal(expected)
