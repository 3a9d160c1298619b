"""
HTTP API tests.

Verifies:
- Happy paths return JSON with money as 2dp strings
- Settlement errors map to their HTTP status and stable code
- Cart checkout and promotions go through the same sale pipeline
"""

import pytest


# =============================================================================
# SALES LIFECYCLE
# =============================================================================


class TestSaleLifecycle:
    def test_create_price_and_settle(self, client, cashier, product):
        resp = client.post("/api/sales/", json={"cashier_id": cashier.id, "bill_discount_fixed": "5"})
        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["state"] == "OPEN"
        assert sale["bill_number"].startswith("BILL-")

        resp = client.post(
            f"/api/sales/{sale['id']}/items",
            json={"product_id": product.id, "quantity": 1, "discount_percentage": 10},
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["item"]["line_total"] == "90.00"
        assert body["item"]["unit_cost"] == "60.00"
        assert body["item"]["profit"] == "30.00"
        assert body["sale"]["total_amount"] == "85.00"
        assert body["sale"]["state"] == "PRICED"

        resp = client.post(f"/api/sales/{sale['id']}/payments", json={"method": "cash", "amount": "85"})
        assert resp.status_code == 201
        status = resp.get_json()["payment_status"]
        assert status["is_fully_paid"] is True
        assert status["balance"] == "0.00"

        resp = client.get(f"/api/sales/{sale['id']}")
        assert resp.status_code == 200
        detail = resp.get_json()["sale"]
        assert detail["state"] == "SETTLED"
        assert len(detail["items"]) == 1

    def test_lookup_by_bill_number_and_listing(self, client, cashier):
        created = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]

        resp = client.get(f"/api/sales/bill/{created['bill_number']}")
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["id"] == created["id"]

        listing = client.get("/api/sales/?limit=10").get_json()
        assert listing["total"] == 1
        assert listing["sales"][0]["id"] == created["id"]

        searched = client.get(f"/api/sales/?cashier_id={cashier.id}&bill_number=NOPE").get_json()
        assert searched["total"] == 0

    def test_split_payment_and_status(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 2})

        resp = client.post(f"/api/sales/{sale_id}/payments", json={"payments": [
            {"method": "cash", "amount": "50"},
            {"method": "card", "amount": "100", "reference": "AUTH-7"},
        ]})
        assert resp.status_code == 201
        assert len(resp.get_json()["payments"]) == 2

        status = client.get(f"/api/sales/{sale_id}/payment-status").get_json()
        assert status["by_method"] == {"cash": "50.00", "card": "100.00"}
        assert status["balance"] == "50.00"

    def test_update_and_delete_item(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        item_id = client.post(
            f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 5}
        ).get_json()["item"]["id"]

        resp = client.patch(f"/api/sale-items/{item_id}", json={"quantity": 2})
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["total_amount"] == "200.00"

        stock = client.get(f"/api/inventory/products/{product.id}").get_json()
        assert stock["available_quantity"] == 48

        assert client.delete(f"/api/sale-items/{item_id}").status_code == 200
        assert client.get(f"/api/sale-items/{item_id}").status_code == 404
        assert client.get(f"/api/inventory/products/{product.id}").get_json()["available_quantity"] == 50

    def test_promotions_endpoint(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 2})

        resp = client.post(f"/api/sales/{sale_id}/promotions", json={
            "rules": [
                {"name": "big-basket", "fixed_amount": "25", "conditions": [{"type": "min_amount", "value": "150"}]},
                {"name": "small", "percentage": "5"},
            ],
            "optimal": True,
        })
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["promotion"]["applied_rules"] == ["big-basket"]
        assert body["sale"]["bill_discount_fixed"] == "25.00"
        assert body["sale"]["total_amount"] == "175.00"


# =============================================================================
# ERROR MAPPING
# =============================================================================


class TestErrorMapping:
    def test_missing_cashier_is_400(self, client, db_session):
        resp = client.post("/api/sales/", json={})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_unknown_sale_is_404(self, client, db_session):
        resp = client.get("/api/sales/999")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "SALE_NOT_FOUND"

    def test_insufficient_stock_is_409(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        resp = client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 51})
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available_quantity"] == 50

    def test_overpayment_is_409(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 1})

        resp = client.post(f"/api/sales/{sale_id}/payments", json={"method": "cash", "amount": "100.01"})
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "PAYMENT_EXCEEDS_TOTAL"

    def test_duplicate_bill_number_is_409(self, client, cashier):
        client.post("/api/sales/", json={"cashier_id": cashier.id, "bill_number": "X-1"})
        resp = client.post("/api/sales/", json={"cashier_id": cashier.id, "bill_number": "X-1"})
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "DUPLICATE_BILL_NUMBER"

    def test_settled_sale_is_409(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 1})
        client.post(f"/api/sales/{sale_id}/payments", json={"method": "card", "amount": "100"})

        resp = client.patch(f"/api/sales/{sale_id}", json={"bill_discount_percentage": 10})
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "SALE_SETTLED"

    @pytest.mark.parametrize(
        "payload, code",
        [
            ({"quantity": 0}, "INVALID_QUANTITY"),
            ({"quantity": 1, "discount_percentage": 150}, "INVALID_DISCOUNT_PERCENTAGE"),
            ({"quantity": 1, "unit_price": "-3"}, "INVALID_PRICE"),
        ],
    )
    def test_invalid_item_input_is_400(self, client, cashier, product, payload, code):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        resp = client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, **payload})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == code

    def test_unsupported_payment_method_is_400(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 1})
        resp = client.post(f"/api/sales/{sale_id}/payments", json={"method": "barter", "amount": "1"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "UNSUPPORTED_PAYMENT_METHOD"

    @pytest.mark.parametrize("amount", ["NaN", "Infinity"])
    def test_non_finite_payment_is_400(self, client, cashier, product, amount):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 1})
        resp = client.post(f"/api/sales/{sale_id}/payments", json={"method": "cash", "amount": amount})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_PAYMENT_AMOUNT"


# =============================================================================
# CARTS, INVENTORY, REPORTS, SYSTEM
# =============================================================================


class TestCarts:
    def test_cart_to_sale(self, client, cashier, product):
        resp = client.post("/api/carts/", json={"cashier_id": cashier.id})
        assert resp.status_code == 201
        key = resp.get_json()["cart_key"]

        preview = client.post(f"/api/carts/{key}/lines", json={"product_id": product.id, "quantity": 3}).get_json()
        assert preview["subtotal_amount"] == "300.00"

        preview = client.put(f"/api/carts/{key}/bill-discount", json={"percentage": 10}).get_json()
        assert preview["total_amount"] == "270.00"

        resp = client.post(f"/api/carts/{key}/checkout", json={})
        assert resp.status_code == 201
        assert resp.get_json()["sale"]["total_amount"] == "270.00"
        assert client.get(f"/api/carts/{key}").status_code == 404

    def test_discard_unknown_cart(self, client, db_session):
        resp = client.delete("/api/carts/missing")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "CART_NOT_FOUND"


class TestInventory:
    def test_receive_and_adjust(self, client, make_product):
        product = make_product("SKU-HTTP")
        resp = client.post(
            f"/api/inventory/products/{product.id}/batches",
            json={"quantity": 10, "unit_cost": "3.50", "expiry_date": "2027-01-31"},
        )
        assert resp.status_code == 201
        batch = resp.get_json()["batch"]
        assert batch["unit_cost"] == "3.50"

        resp = client.post(f"/api/inventory/batches/{batch['id']}/adjust", json={"quantity_delta": -11})
        assert resp.status_code == 409

        resp = client.post(f"/api/inventory/batches/{batch['id']}/adjust", json={"quantity_delta": -2})
        assert resp.status_code == 201
        assert client.get(f"/api/inventory/products/{product.id}").get_json()["available_quantity"] == 8

        movements = client.get(f"/api/inventory/movements?product_id={product.id}").get_json()["movements"]
        assert {m["movement_type"] for m in movements} == {"RECEIPT", "ADJUSTMENT"}

    def test_deactivated_batch_leaves_rotation(self, client, fifo_product):
        product, older, _ = fifo_product
        resp = client.patch(f"/api/inventory/batches/{older.id}", json={"is_active": False})
        assert resp.status_code == 200
        assert resp.get_json()["batch"]["is_active"] is False
        assert client.get(f"/api/inventory/products/{product.id}").get_json()["available_quantity"] == 10

        resp = client.patch(f"/api/inventory/batches/{older.id}", json={})
        assert resp.status_code == 400
        resp = client.patch("/api/inventory/batches/9999", json={"is_active": True})
        assert resp.status_code == 404


class TestReportsAndSystem:
    def test_sales_summary_endpoint(self, client, cashier, product):
        sale_id = client.post("/api/sales/", json={"cashier_id": cashier.id}).get_json()["sale"]["id"]
        client.post(f"/api/sales/{sale_id}/items", json={"product_id": product.id, "quantity": 2})

        resp = client.get("/api/reports/sales-summary")
        assert resp.status_code == 200
        assert resp.get_json()["total_sales"] == "200.00"

        resp = client.get("/api/reports/sales-summary?start_date=not-a-date")
        assert resp.status_code == 400

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ok"
