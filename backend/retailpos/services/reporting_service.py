# Overview: Service-layer operations for reporting; read-only rollups over non-deleted sales.

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..errors import ValidationError
from ..models import Sale, SaleItem, Payment, Product
from ..money import ZERO, money_str, quantize_money
from ..time_utils import parse_iso_datetime, to_utc_z
from .lookup_service import get_cashier, get_customer
from .sales_service import item_profit, list_sales_for_report

"""
Money is summed in Python as Decimal; SQL aggregates are only used for
counts and integer quantities so no float rounding leaks into totals.
"""


def _parse_range(start, end) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if isinstance(start, str) else start
        end_dt = parse_iso_datetime(end) if isinstance(end, str) else end
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 datetimes")
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must not be after end")
    return start_dt, end_dt


def _range_dict(start_dt, end_dt) -> dict:
    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
    }


def _items_for(sale_ids: list[int]) -> list[SaleItem]:
    if not sale_ids:
        return []
    return db.session.query(SaleItem).filter(SaleItem.sale_id.in_(sale_ids)).all()


def _paid_for(sale_ids: list[int]) -> Decimal:
    if not sale_ids:
        return ZERO
    payments = db.session.query(Payment).filter(Payment.sale_id.in_(sale_ids)).all()
    return sum((p.amount for p in payments), ZERO)


def sales_summary(start=None, end=None) -> dict:
    """Counts and money totals for sales in the window."""
    start_dt, end_dt = _parse_range(start, end)
    sales = list_sales_for_report(start_dt, end_dt)
    sale_ids = [s.id for s in sales]
    items = _items_for(sale_ids)

    total_sales = sum((s.total_amount for s in sales), ZERO)
    line_discounts = sum((i.discount_amount for i in items), ZERO)
    bill_discounts = sum((s.bill_discount_amount for s in sales), ZERO)
    paid = _paid_for(sale_ids)

    count = len(sales)
    average = quantize_money(total_sales / count) if count else ZERO

    return {
        **_range_dict(start_dt, end_dt),
        "sales_count": count,
        "items_sold": sum(i.quantity for i in items),
        "total_sales": money_str(total_sales),
        "total_discounts": money_str(line_discounts + bill_discounts),
        "total_paid": money_str(paid),
        "outstanding": money_str(total_sales - paid),
        "average_sale": money_str(average),
    }


def profit_analysis(start=None, end=None) -> dict:
    """
    Revenue, cost and profit per product for the window.

    Line profit is floored at 0 (see calculate_item_profit); the bill
    discount is reported separately and not spread over lines.
    """
    start_dt, end_dt = _parse_range(start, end)
    sales = list_sales_for_report(start_dt, end_dt)
    items = _items_for([s.id for s in sales])

    per_product: dict[int, dict] = defaultdict(
        lambda: {"quantity": 0, "revenue": ZERO, "cost": ZERO, "profit": ZERO}
    )
    for item in items:
        row = per_product[item.product_id]
        row["quantity"] += item.quantity
        row["revenue"] += item.line_total
        row["cost"] += item.unit_cost * item.quantity
        row["profit"] += item_profit(item)

    revenue = sum((r["revenue"] for r in per_product.values()), ZERO)
    cost = sum((r["cost"] for r in per_product.values()), ZERO)
    profit = sum((r["profit"] for r in per_product.values()), ZERO)
    bill_discounts = sum((s.bill_discount_amount for s in sales), ZERO)

    names = {
        p.id: p.name
        for p in db.session.query(Product).filter(Product.id.in_(list(per_product))).all()
    } if per_product else {}

    margin = quantize_money(profit * 100 / revenue) if revenue else ZERO
    return {
        **_range_dict(start_dt, end_dt),
        "revenue": money_str(revenue),
        "cost": money_str(cost),
        "gross_profit": money_str(profit),
        "bill_discounts": money_str(bill_discounts),
        "margin_percentage": money_str(margin),
        "products": [
            {
                "product_id": pid,
                "name": names.get(pid),
                "quantity": row["quantity"],
                "revenue": money_str(row["revenue"]),
                "cost": money_str(row["cost"]),
                "profit": money_str(row["profit"]),
            }
            for pid, row in sorted(per_product.items(), key=lambda kv: kv[1]["profit"], reverse=True)
        ],
    }


def cashier_performance(cashier_id: int, start=None, end=None) -> dict:
    cashier = get_cashier(cashier_id)
    start_dt, end_dt = _parse_range(start, end)
    sales = list_sales_for_report(start_dt, end_dt, cashier_id=cashier_id)
    items = _items_for([s.id for s in sales])

    total_sales = sum((s.total_amount for s in sales), ZERO)
    count = len(sales)
    return {
        **_range_dict(start_dt, end_dt),
        "cashier_id": cashier.id,
        "cashier_name": cashier.full_name or cashier.username,
        "sales_count": count,
        "items_sold": sum(i.quantity for i in items),
        "total_sales": money_str(total_sales),
        "average_sale": money_str(quantize_money(total_sales / count) if count else ZERO),
        "total_profit": money_str(sum((item_profit(i) for i in items), ZERO)),
    }


def customer_sales_history(customer_id: int, limit: int = 50, offset: int = 0) -> dict:
    customer = get_customer(customer_id)
    query = db.session.query(Sale).filter(
        Sale.customer_id == customer_id,
        Sale.deleted_at.is_(None),
    )
    total_count = query.count()
    all_totals = sum((s.total_amount for s in query.all()), ZERO)
    sales = query.order_by(Sale.sale_date.desc(), Sale.id.desc()).offset(offset).limit(limit).all()

    return {
        "customer_id": customer.id,
        "customer_name": customer.name,
        "sales_count": total_count,
        "lifetime_total": money_str(all_totals),
        "limit": limit,
        "offset": offset,
        "sales": [s.to_dict() for s in sales],
    }


def top_selling_products(limit: int = 10, start=None, end=None) -> dict:
    """Products ranked by units sold."""
    if limit < 1:
        raise ValidationError("limit must be positive")
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        SaleItem.product_id,
        db.func.sum(SaleItem.quantity).label("units"),
        db.func.count(db.func.distinct(SaleItem.sale_id)).label("sales_count"),
    ).join(Sale, Sale.id == SaleItem.sale_id).filter(Sale.deleted_at.is_(None))
    if start_dt:
        query = query.filter(Sale.sale_date >= start_dt)
    if end_dt:
        query = query.filter(Sale.sale_date <= end_dt)

    rows = query.group_by(SaleItem.product_id).order_by(
        db.desc("units"), SaleItem.product_id.asc()
    ).limit(limit).all()

    product_ids = [row.product_id for row in rows]
    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    } if product_ids else {}

    revenue: dict[int, Decimal] = defaultdict(lambda: ZERO)
    if product_ids:
        items = db.session.query(SaleItem).join(Sale, Sale.id == SaleItem.sale_id).filter(
            SaleItem.product_id.in_(product_ids),
            Sale.deleted_at.is_(None),
        )
        if start_dt:
            items = items.filter(Sale.sale_date >= start_dt)
        if end_dt:
            items = items.filter(Sale.sale_date <= end_dt)
        for item in items.all():
            revenue[item.product_id] += item.line_total

    return {
        **_range_dict(start_dt, end_dt),
        "products": [
            {
                "product_id": row.product_id,
                "sku": products[row.product_id].sku if row.product_id in products else None,
                "name": products[row.product_id].name if row.product_id in products else None,
                "units_sold": int(row.units or 0),
                "sales_count": int(row.sales_count or 0),
                "revenue": money_str(revenue[row.product_id]),
            }
            for row in rows
        ],
    }
