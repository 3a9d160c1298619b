# Overview: Flask API routes for stock batches and movements; parses input and returns JSON responses.

# backend/retailpos/routes/inventory.py
from datetime import date

from flask import Blueprint, request, jsonify, current_app

from ..errors import SettlementError, ValidationError
from ..services import stock_ledger_service
from ..services.lookup_service import get_inventory_level, get_product


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products/<int:product_id>")
def product_stock_route(product_id: int):
    """Batch-level and aggregate availability for a product."""
    try:
        product = get_product(product_id)
        level = get_inventory_level(product_id)
        return jsonify({
            "product": product.to_dict(),
            "available_quantity": stock_ledger_service.get_available(product_id),
            "inventory_level": level.to_dict() if level else None,
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get product stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/batches")
def list_batches_route(product_id: int):
    try:
        include_exhausted = request.args.get("include_exhausted", "true").lower() != "false"
        batches = stock_ledger_service.list_batches(product_id, include_exhausted=include_exhausted)
        return jsonify({"batches": [b.to_dict() for b in batches]}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list batches")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/products/<int:product_id>/batches")
def receive_batch_route(product_id: int):
    """
    Receive stock into a new batch.

    Body: quantity, unit_cost (required), batch_number, lot_number,
    expiry_date (YYYY-MM-DD), received_at, actor_user_id, note
    """
    try:
        data = request.get_json() or {}
        if data.get("quantity") is None or data.get("unit_cost") is None:
            return jsonify({"error": "quantity and unit_cost required", "code": "VALIDATION_ERROR"}), 400

        expiry = None
        if data.get("expiry_date"):
            try:
                expiry = date.fromisoformat(data["expiry_date"])
            except ValueError:
                raise ValidationError("expiry_date must be YYYY-MM-DD")

        batch = stock_ledger_service.receive_batch(
            product_id=product_id,
            quantity=data["quantity"],
            unit_cost=data["unit_cost"],
            batch_number=data.get("batch_number"),
            lot_number=data.get("lot_number"),
            expiry_date=expiry,
            received_at=data.get("received_at"),
            actor_user_id=data.get("actor_user_id"),
            note=data.get("note"),
        )
        return jsonify({"batch": batch.to_dict()}), 201
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to receive batch")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/batches/<int:batch_id>/adjust")
def adjust_batch_route(batch_id: int):
    try:
        data = request.get_json() or {}
        if data.get("quantity_delta") is None:
            return jsonify({"error": "quantity_delta required", "code": "VALIDATION_ERROR"}), 400
        movement = stock_ledger_service.adjust_batch(
            batch_id=batch_id,
            quantity_delta=data["quantity_delta"],
            actor_user_id=data.get("actor_user_id"),
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust batch")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/batches/<int:batch_id>")
def set_batch_active_route(batch_id: int):
    try:
        data = request.get_json() or {}
        if "is_active" not in data:
            return jsonify({"error": "is_active required", "code": "VALIDATION_ERROR"}), 400
        batch = stock_ledger_service.set_batch_active(batch_id, bool(data["is_active"]))
        return jsonify({"batch": batch.to_dict()}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update batch")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
def list_movements_route():
    """Query: product_id, reference_type, reference_id, limit."""
    try:
        movements = stock_ledger_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            reference_type=request.args.get("reference_type"),
            reference_id=request.args.get("reference_id"),
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list movements")
        return jsonify({"error": "Internal server error"}), 500
