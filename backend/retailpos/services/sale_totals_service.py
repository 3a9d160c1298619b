"""
Sale Aggregator

recompute() is the only writer of Sale.subtotal_amount,
Sale.bill_discount_amount and Sale.total_amount. It is idempotent: the
bill discount inputs are never overwritten, so running it twice on an
unchanged sale yields identical totals.

Call it after every item create/update/delete and every bill discount
change, inside the same transaction as that change.
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..errors import OverpaymentError
from ..models import Sale, SaleItem, Payment
from ..money import ZERO, quantize_money
from .discount_service import calculate_bill_discount


def items_subtotal(sale_id: int) -> Decimal:
    items = db.session.query(SaleItem).filter_by(sale_id=sale_id).all()
    return quantize_money(sum((item.line_total for item in items), ZERO))


def total_paid(sale_id: int, *, exclude_payment_id: int | None = None) -> Decimal:
    query = db.session.query(Payment).filter_by(sale_id=sale_id)
    if exclude_payment_id is not None:
        query = query.filter(Payment.id != exclude_payment_id)
    return quantize_money(sum((p.amount for p in query.all()), ZERO))


def recompute(sale: Sale) -> Sale:
    """Recompute subtotal, bill discount and total from the current items."""
    db.session.flush()

    subtotal = items_subtotal(sale.id)
    discount, total = calculate_bill_discount(
        subtotal,
        sale.bill_discount_percentage,
        sale.bill_discount_fixed,
    )

    paid = total_paid(sale.id)
    if paid > total:
        raise OverpaymentError(
            "Sale total cannot drop below the amount already paid",
            details={
                "sale_id": sale.id,
                "total_amount": str(total),
                "total_paid": str(paid),
            },
        )

    sale.subtotal_amount = subtotal
    sale.bill_discount_amount = discount
    sale.total_amount = total
    return sale
