# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Reconciler

WHY: Enable sales to be paid with cash, cards, bank transfers, e-wallets
and checks, including split payments across methods.

DESIGN PRINCIPLES:
- Payments are separate from sales (many-to-one relationship)
- Split payments: One sale can have multiple payments
- Overpayment is a hard error, never silently capped:
  SUM(payments) <= sale.total_amount after every call
- A sale is fully paid when its balance is within a small epsilon that
  only absorbs rounding; it is not a partial-payment allowance
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import OverpaymentError, ValidationError, not_found
from ..models import Sale, Payment
from ..money import ZERO, quantize_money, to_decimal, money_str
from .concurrency import lock_for_update, run_with_retry
from .sale_totals_service import total_paid


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_EWALLET = "ewallet"
METHOD_CHECK = "check"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_EWALLET,
    METHOD_CHECK,
]


# =============================================================================
# VALIDATION
# =============================================================================

def _balance_epsilon() -> Decimal:
    return to_decimal(current_app.config.get("PAYMENT_BALANCE_EPSILON", "0.005"))


def _validate_method(method: str) -> str:
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Unsupported payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}",
            details={"method": method},
            code="UNSUPPORTED_PAYMENT_METHOD",
        )
    return method


def _validate_amount(amount) -> Decimal:
    try:
        value = to_decimal(amount, "amount")
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_PAYMENT_AMOUNT")
    value = quantize_money(value)
    if value <= ZERO:
        raise ValidationError(
            "Payment amount must be positive",
            details={"amount": str(value)},
            code="INVALID_PAYMENT_AMOUNT",
        )
    return value


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(
        db.session.query(Sale).filter(Sale.id == sale_id, Sale.deleted_at.is_(None))
    ).first()
    if not sale:
        raise not_found("sale", sale_id)
    return sale


def _check_not_exceeding(sale: Sale, existing: Decimal, new_amount: Decimal) -> None:
    if existing + new_amount > sale.total_amount:
        current_app.logger.warning(
            "Rejected overpayment on sale %s: paid=%s new=%s total=%s",
            sale.bill_number, existing, new_amount, sale.total_amount,
        )
        raise OverpaymentError(
            "Payment amount exceeds sale total",
            details={
                "sale_id": sale.id,
                "total_amount": money_str(sale.total_amount),
                "total_paid": money_str(existing),
                "amount": money_str(new_amount),
                "balance": money_str(sale.total_amount - existing),
            },
        )


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_payment(
    sale_id: int,
    method: str,
    amount,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Add a payment to a sale.

    Raises:
        ValidationError: amount not positive or method unsupported
        NotFoundError: sale not found
        OverpaymentError: existing payments + amount would exceed the total
    """
    _validate_method(method)
    value = _validate_amount(amount)

    def _op():
        sale = _lock_sale(sale_id)
        _check_not_exceeding(sale, total_paid(sale.id), value)

        payment = Payment(
            sale_id=sale.id,
            method=method,
            amount=value,
            reference=reference,
            notes=notes,
        )
        db.session.add(payment)
        db.session.commit()

        current_app.logger.info(
            "Payment %s recorded on sale %s: %s %s", payment.id, sale.bill_number, method, value
        )
        return payment

    return run_with_retry(_op)


def process_sale_payments(sale_id: int, payments: list[dict]) -> list[Payment]:
    """
    Record a split payment: several method/amount entries at once.

    All-or-nothing: every entry is validated and the combined amount is
    checked against the balance before any payment is written.
    """
    if not payments:
        raise ValidationError("At least one payment is required", code="INVALID_PAYMENT_AMOUNT")

    cleaned = []
    for entry in payments:
        cleaned.append({
            "method": _validate_method(entry.get("method")),
            "amount": _validate_amount(entry.get("amount")),
            "reference": entry.get("reference"),
            "notes": entry.get("notes"),
        })
    combined = sum((p["amount"] for p in cleaned), ZERO)

    def _op():
        sale = _lock_sale(sale_id)
        _check_not_exceeding(sale, total_paid(sale.id), combined)

        created = []
        for entry in cleaned:
            payment = Payment(sale_id=sale.id, **entry)
            db.session.add(payment)
            created.append(payment)
        db.session.commit()
        return created

    return run_with_retry(_op)


def update_payment(
    payment_id: int,
    *,
    method: str | None = None,
    amount=None,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    """Correct a payment; the payment itself is excluded from the existing total."""
    if method is not None:
        _validate_method(method)
    value = _validate_amount(amount) if amount is not None else None

    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise not_found("payment", payment_id)

        sale = _lock_sale(payment.sale_id)
        new_amount = value if value is not None else payment.amount
        _check_not_exceeding(sale, total_paid(sale.id, exclude_payment_id=payment.id), new_amount)

        payment.amount = new_amount
        if method is not None:
            payment.method = method
        if reference is not None:
            payment.reference = reference
        if notes is not None:
            payment.notes = notes

        db.session.commit()
        return payment

    return run_with_retry(_op)


def delete_payment(payment_id: int) -> None:
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise not_found("payment", payment_id)
        db.session.delete(payment)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# REPORTING
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise not_found("payment", payment_id)
    return payment


def get_sale_payments(sale_id: int) -> list[Payment]:
    """All payments for a sale, ordered by creation."""
    return db.session.query(Payment).filter_by(sale_id=sale_id).order_by(
        Payment.created_at.asc(), Payment.id.asc()
    ).all()


def is_fully_paid(sale: Sale) -> bool:
    balance = sale.total_amount - total_paid(sale.id)
    return balance <= _balance_epsilon()


def get_payment_status(sale_id: int) -> dict:
    """
    Get payment summary for a sale.

    Returns:
        - total_amount: Amount the sale totals to
        - total_paid: Amount paid so far
        - balance: Amount still owed
        - is_fully_paid: balance within epsilon
        - by_method: {method: amount}
    """
    sale = db.session.query(Sale).filter(Sale.id == sale_id, Sale.deleted_at.is_(None)).first()
    if not sale:
        raise not_found("sale", sale_id)

    payments = get_sale_payments(sale_id)

    paid = ZERO
    by_method: dict[str, Decimal] = {}
    for payment in payments:
        paid += payment.amount
        by_method[payment.method] = by_method.get(payment.method, ZERO) + payment.amount

    paid = quantize_money(paid)
    balance = quantize_money(sale.total_amount - paid)

    return {
        "sale_id": sale.id,
        "bill_number": sale.bill_number,
        "total_amount": quantize_money(sale.total_amount),
        "total_paid": paid,
        "balance": balance,
        "is_fully_paid": balance <= _balance_epsilon(),
        "payments_count": len(payments),
        "by_method": {m: quantize_money(a) for m, a in by_method.items()},
    }


def payment_status_to_dict(status: dict) -> dict:
    """JSON-ready copy of get_payment_status() output."""
    return {
        **status,
        "total_amount": money_str(status["total_amount"]),
        "total_paid": money_str(status["total_paid"]),
        "balance": money_str(status["balance"]),
        "by_method": {m: money_str(a) for m, a in status["by_method"].items()},
    }
