# Overview: Flask API routes for payments; parses input and returns JSON responses.

# backend/retailpos/routes/payments.py
"""
Payment API routes

Payments are recorded against a sale under /api/sales/<id>/payments;
these routes read, correct and remove individual payments.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import SettlementError
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.get("/methods")
def list_methods_route():
    return jsonify({"methods": payment_service.VALID_PAYMENT_METHODS}), 200


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.patch("/<int:payment_id>")
def update_payment_route(payment_id: int):
    """Correct method, amount, reference or notes of a payment."""
    try:
        data = request.get_json() or {}
        payment = payment_service.update_payment(
            payment_id,
            method=data.get("method"),
            amount=data.get("amount"),
            reference=data.get("reference"),
            notes=data.get("notes"),
        )
        status = payment_service.get_payment_status(payment.sale_id)
        return jsonify({
            "payment": payment.to_dict(),
            "payment_status": payment_service.payment_status_to_dict(status),
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:payment_id>")
def delete_payment_route(payment_id: int):
    try:
        payment_service.delete_payment(payment_id)
        return jsonify({"deleted": True, "payment_id": payment_id}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return jsonify({"error": "Internal server error"}), 500
