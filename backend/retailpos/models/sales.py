from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Sale document.

    WHY separate input and computed discount columns: the bill discount
    inputs (percentage, fixed) stay as entered, while subtotal, discount
    and total are recomputed from the items. Overwriting the inputs with
    the computed amount would double-discount on the next recompute.

    Lifecycle state (OPEN/PRICED/SETTLED) is derived on read, not stored.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_sale_date", "sale_date"),
        db.Index("ix_sales_cashier_date", "cashier_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable bill number (e.g., "BILL-20260211-0001")
    bill_number = db.Column(db.String(50), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False)

    # Bill discount inputs
    bill_discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    bill_discount_fixed = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Computed by the sale aggregator only
    subtotal_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    bill_discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    # Soft delete keeps the bill number reserved
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    cashier = db.relationship("User", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_number": self.bill_number,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "sale_date": to_utc_z(self.sale_date),
            "bill_discount_percentage": money_str(self.bill_discount_percentage),
            "bill_discount_fixed": money_str(self.bill_discount_fixed),
            "subtotal_amount": money_str(self.subtotal_amount),
            "bill_discount_amount": money_str(self.bill_discount_amount),
            "total_amount": money_str(self.total_amount),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    Line item on a sale.

    unit_cost is the FIFO weighted cost resolved when the item is created
    and is never re-derived afterwards.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("line_total >= 0", name="ck_sale_items_line_total_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Line discount inputs
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_fixed = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Computed
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "unit_cost": money_str(self.unit_cost),
            "discount_percentage": money_str(self.discount_percentage),
            "discount_fixed": money_str(self.discount_fixed),
            "discount_amount": money_str(self.discount_amount),
            "line_total": money_str(self.line_total),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Payment(db.Model):
    """
    Payment record for sales.

    METHODS:
    - cash, card, bank_transfer, ewallet, check

    DESIGN: Payments are separate from sales to support split payments
    (multiple payments for one sale). The payment service guarantees the
    sum of a sale's payments never exceeds its total.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(20), nullable=False, index=True)
    amount = db.Column(db.Numeric(15, 2), nullable=False)

    # Card auth code, transfer reference, check number, etc.
    reference = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount": money_str(self.amount),
            "reference": self.reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
