# Overview: Flask API routes for reports; parses input and returns JSON responses.

# backend/retailpos/routes/reports.py
from flask import Blueprint, request, jsonify, current_app

from ..errors import SettlementError
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales-summary")
def sales_summary_route():
    try:
        report = reporting_service.sales_summary(
            request.args.get("start_date"),
            request.args.get("end_date"),
        )
        return jsonify(report), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/profit")
def profit_analysis_route():
    try:
        report = reporting_service.profit_analysis(
            request.args.get("start_date"),
            request.args.get("end_date"),
        )
        return jsonify(report), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build profit analysis")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/cashiers/<int:cashier_id>")
def cashier_performance_route(cashier_id: int):
    try:
        report = reporting_service.cashier_performance(
            cashier_id,
            request.args.get("start_date"),
            request.args.get("end_date"),
        )
        return jsonify(report), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build cashier performance report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/customers/<int:customer_id>")
def customer_history_route(customer_id: int):
    try:
        report = reporting_service.customer_sales_history(
            customer_id,
            limit=min(request.args.get("limit", 50, type=int), 500),
            offset=max(request.args.get("offset", 0, type=int), 0),
        )
        return jsonify(report), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build customer history")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/top-products")
def top_products_route():
    try:
        report = reporting_service.top_selling_products(
            limit=request.args.get("limit", 10, type=int),
            start=request.args.get("start_date"),
            end=request.args.get("end_date"),
        )
        return jsonify(report), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build top products report")
        return jsonify({"error": "Internal server error"}), 500
