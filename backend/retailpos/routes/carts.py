# Overview: Flask API routes for in-progress carts; parses input and returns JSON responses.

# backend/retailpos/routes/carts.py
from flask import Blueprint, request, jsonify, current_app

from ..errors import SettlementError
from ..services import sales_service


carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


def _store():
    return current_app.extensions["cart_sessions"]


@carts_bp.post("/")
def create_cart_route():
    try:
        data = request.get_json() or {}
        if not data.get("cashier_id"):
            return jsonify({"error": "cashier_id required", "code": "VALIDATION_ERROR"}), 400
        cart = _store().create(data["cashier_id"])
        return jsonify(_store().preview(cart.key)), 201
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.get("/<string:key>")
def preview_cart_route(key: str):
    try:
        return jsonify(_store().preview(key)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to preview cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/<string:key>/lines")
def add_cart_line_route(key: str):
    try:
        data = request.get_json() or {}
        if data.get("product_id") is None or data.get("quantity") is None:
            return jsonify({"error": "product_id and quantity required", "code": "VALIDATION_ERROR"}), 400
        _store().add_line(
            key,
            data["product_id"],
            data["quantity"],
            unit_price=data.get("unit_price"),
            discount_percentage=data.get("discount_percentage", 0),
            discount_fixed=data.get("discount_fixed", 0),
        )
        return jsonify(_store().preview(key)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.patch("/<string:key>/lines/<int:product_id>")
def update_cart_line_route(key: str, product_id: int):
    try:
        data = request.get_json() or {}
        _store().update_line(
            key,
            product_id,
            quantity=data.get("quantity"),
            unit_price=data.get("unit_price"),
            discount_percentage=data.get("discount_percentage"),
            discount_fixed=data.get("discount_fixed"),
        )
        return jsonify(_store().preview(key)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("/<string:key>/lines/<int:product_id>")
def remove_cart_line_route(key: str, product_id: int):
    try:
        _store().remove_line(key, product_id)
        return jsonify(_store().preview(key)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove cart line")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.put("/<string:key>/bill-discount")
def set_cart_bill_discount_route(key: str):
    try:
        data = request.get_json() or {}
        _store().set_bill_discount(
            key,
            percentage=data.get("percentage", 0),
            fixed_amount=data.get("fixed_amount", 0),
        )
        return jsonify(_store().preview(key)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to set cart bill discount")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/<string:key>/checkout")
def checkout_cart_route(key: str):
    try:
        data = request.get_json() or {}
        sale = _store().checkout(key, customer_id=data.get("customer_id"), notes=data.get("notes"))
        return jsonify({"sale": sales_service.sale_to_dict(sale, include_items=True)}), 201
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("/<string:key>")
def discard_cart_route(key: str):
    if not _store().evict(key):
        return jsonify({"error": f"Cart session {key} not found", "code": "CART_NOT_FOUND"}), 404
    return jsonify({"deleted": True, "cart_key": key}), 200
