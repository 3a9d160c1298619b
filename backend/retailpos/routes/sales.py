# Overview: Flask API routes for sales and sale items; parses input and returns JSON responses.

# backend/retailpos/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import SettlementError, ValidationError
from ..services import sales_service, payment_service, promotions_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")
sale_items_bp = Blueprint("sale_items", __name__, url_prefix="/api/sale-items")


def _page_args() -> dict:
    return {
        "limit": request.args.get("limit", 50, type=int),
        "offset": request.args.get("offset", 0, type=int),
    }


def _page_response(sales: list, total: int, page: dict):
    return jsonify({
        "sales": [sale.to_dict() for sale in sales],
        "total": total,
        "limit": page["limit"],
        "offset": page["offset"],
    }), 200


@sales_bp.post("/")
def create_sale_route():
    """
    Create new sale with no items.

    Body: cashier_id (required), customer_id, bill_discount_percentage,
    bill_discount_fixed, notes, bill_number, sale_date
    """
    try:
        data = request.get_json() or {}
        cashier_id = data.get("cashier_id")

        if not cashier_id:
            return jsonify({"error": "cashier_id required", "code": "VALIDATION_ERROR"}), 400

        sale = sales_service.create_sale(
            cashier_id,
            data.get("customer_id"),
            bill_discount_percentage=data.get("bill_discount_percentage", 0),
            bill_discount_fixed=data.get("bill_discount_fixed", 0),
            notes=data.get("notes"),
            bill_number=data.get("bill_number"),
            sale_date=data.get("sale_date"),
        )
        return jsonify({"sale": sales_service.sale_to_dict(sale)}), 201

    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
def list_sales_route():
    """
    List sales, newest first.

    Query: bill_number, customer_name, start_date, end_date, cashier_id,
    limit, offset. Any filter switches to search.
    """
    try:
        page = _page_args()
        filters = {
            "bill_number": request.args.get("bill_number"),
            "customer_name": request.args.get("customer_name"),
            "start": request.args.get("start_date"),
            "end": request.args.get("end_date"),
            "cashier_id": request.args.get("cashier_id", type=int),
        }
        if any(v is not None for v in filters.values()):
            sales, total = sales_service.search_sales(**filters, **page)
        else:
            sales, total = sales_service.list_sales(**page)
        return _page_response(sales, total, page)

    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sales_service.sale_to_dict(sale, include_items=True)}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/bill/<string:bill_number>")
def get_sale_by_bill_route(bill_number: str):
    try:
        sale = sales_service.get_sale_by_bill_number(bill_number)
        return jsonify({"sale": sales_service.sale_to_dict(sale, include_items=True)}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get sale by bill number")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/customer/<int:customer_id>")
def sales_by_customer_route(customer_id: int):
    try:
        page = _page_args()
        sales, total = sales_service.get_sales_by_customer(customer_id, **page)
        return _page_response(sales, total, page)
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales by customer")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/cashier/<int:cashier_id>")
def sales_by_cashier_route(cashier_id: int):
    try:
        page = _page_args()
        sales, total = sales_service.get_sales_by_cashier(cashier_id, **page)
        return _page_response(sales, total, page)
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales by cashier")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/date-range")
def sales_by_date_range_route():
    try:
        page = _page_args()
        sales, total = sales_service.get_sales_by_date_range(
            request.args.get("start_date"),
            request.args.get("end_date"),
            **page,
        )
        return _page_response(sales, total, page)
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sales by date range")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>")
def update_sale_route(sale_id: int):
    """Update customer_id, notes, bill_discount_percentage, bill_discount_fixed."""
    try:
        data = request.get_json() or {}
        sale = sales_service.update_sale(sale_id, data)
        return jsonify({"sale": sales_service.sale_to_dict(sale)}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
def delete_sale_route(sale_id: int):
    try:
        sales_service.delete_sale(sale_id, actor_user_id=request.args.get("actor_user_id", type=int))
        return jsonify({"deleted": True, "sale_id": sale_id}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEMS
# =============================================================================

@sales_bp.post("/<int:sale_id>/items")
def create_sale_item_route(sale_id: int):
    """
    Add line to sale.

    Body: product_id, quantity (required), unit_price, discount_percentage,
    discount_fixed, actor_user_id
    """
    try:
        data = request.get_json() or {}
        product_id = data.get("product_id")
        quantity = data.get("quantity")

        if product_id is None or quantity is None:
            return jsonify({"error": "product_id and quantity required", "code": "VALIDATION_ERROR"}), 400

        item = sales_service.create_sale_item(
            sale_id,
            product_id,
            quantity,
            unit_price=data.get("unit_price"),
            discount_percentage=data.get("discount_percentage", 0),
            discount_fixed=data.get("discount_fixed", 0),
            actor_user_id=data.get("actor_user_id"),
        )
        return jsonify({
            "item": sales_service.sale_item_to_dict(item),
            "sale": sales_service.sale_to_dict(item.sale),
        }), 201

    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/items")
def list_sale_items_route(sale_id: int):
    try:
        items = sales_service.list_sale_items(sale_id)
        return jsonify({"items": [sales_service.sale_item_to_dict(i) for i in items]}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list sale items")
        return jsonify({"error": "Internal server error"}), 500


@sale_items_bp.get("/<int:item_id>")
def get_sale_item_route(item_id: int):
    try:
        item = sales_service.get_sale_item(item_id)
        return jsonify({"item": sales_service.sale_item_to_dict(item)}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get sale item")
        return jsonify({"error": "Internal server error"}), 500


@sale_items_bp.patch("/<int:item_id>")
def update_sale_item_route(item_id: int):
    try:
        data = request.get_json() or {}
        item = sales_service.update_sale_item(
            item_id,
            quantity=data.get("quantity"),
            unit_price=data.get("unit_price"),
            discount_percentage=data.get("discount_percentage"),
            discount_fixed=data.get("discount_fixed"),
            actor_user_id=data.get("actor_user_id"),
        )
        return jsonify({
            "item": sales_service.sale_item_to_dict(item),
            "sale": sales_service.sale_to_dict(item.sale),
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update sale item")
        return jsonify({"error": "Internal server error"}), 500


@sale_items_bp.delete("/<int:item_id>")
def delete_sale_item_route(item_id: int):
    try:
        sales_service.delete_sale_item(item_id, actor_user_id=request.args.get("actor_user_id", type=int))
        return jsonify({"deleted": True, "item_id": item_id}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete sale item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS & PROMOTIONS ON A SALE
# =============================================================================

@sales_bp.post("/<int:sale_id>/payments")
def add_payments_route(sale_id: int):
    """
    Record a payment, or a split payment.

    Body: {method, amount, reference, notes}
      or  {payments: [{method, amount, reference, notes}, ...]}
    """
    try:
        data = request.get_json() or {}
        if "payments" in data:
            if not isinstance(data["payments"], list):
                raise ValidationError("payments must be a list")
            payments = payment_service.process_sale_payments(sale_id, data["payments"])
        else:
            if not data.get("method") or data.get("amount") is None:
                return jsonify({"error": "method and amount required", "code": "VALIDATION_ERROR"}), 400
            payments = [payment_service.record_payment(
                sale_id,
                data["method"],
                data["amount"],
                reference=data.get("reference"),
                notes=data.get("notes"),
            )]

        status = payment_service.get_payment_status(sale_id)
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "payment_status": payment_service.payment_status_to_dict(status),
        }), 201

    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/payments")
def list_sale_payments_route(sale_id: int):
    try:
        status = payment_service.get_payment_status(sale_id)
        payments = payment_service.get_sale_payments(sale_id)
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "payment_status": payment_service.payment_status_to_dict(status),
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/payment-status")
def payment_status_route(sale_id: int):
    try:
        status = payment_service.get_payment_status(sale_id)
        return jsonify(payment_service.payment_status_to_dict(status)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get payment status")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/promotions")
def apply_promotions_route(sale_id: int):
    """
    Evaluate discount rules against the sale and store the result as its
    bill discount.

    Body: rules (list), allow_stacking (bool), optimal (bool)
    """
    try:
        data = request.get_json() or {}
        rules = [promotions_service.rule_from_dict(r) for r in data.get("rules") or []]
        result, sale = promotions_service.apply_promotions_to_sale(
            sale_id,
            rules,
            allow_stacking=bool(data.get("allow_stacking", False)),
            optimal=bool(data.get("optimal", False)),
        )
        return jsonify({
            "promotion": result.to_dict(),
            "sale": sales_service.sale_to_dict(sale),
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to apply promotions")
        return jsonify({"error": "Internal server error"}), 500
