# Overview: Service-layer operations for sales; the use-case coordinator for sales and their line items.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    BusinessRuleError,
    DuplicateBillNumberError,
    InsufficientStockError,
    SaleSettledError,
    ValidationError,
    not_found,
)
from ..models import Sale, SaleItem, Payment, Customer
from ..money import ZERO, quantize_money, to_decimal, money_str
from ..time_utils import utcnow, normalize_datetime
from .concurrency import lock_for_update, product_locks, run_with_retry
from .discount_service import HUNDRED, calculate_item_discount, line_base_amount
from .document_service import next_bill_number
from .fifo_service import consume, resolve_cost, restore
from .lookup_service import get_cashier, get_customer, get_inventory_available, get_product
from .payment_service import get_payment_status, is_fully_paid, payment_status_to_dict
from .sale_totals_service import recompute
from .stock_ledger_service import to_int_qty
"""
Sale Orchestrator Invariants (authoritative)

- Every item mutation is one transaction: the item row, the FIFO batch
  draws (or returns) with their movements, and the sale totals commit
  together or not at all.
- Stock for a product is only drawn while holding that product's lock,
  after the aggregate pre-flight check passed.
- unit_cost is resolved once, when the item is created.
- Sale state is derived, never stored:
    OPEN     no items
    PRICED   items, balance not yet settled
    SETTLED  items, at least one payment, and fully paid
  A SETTLED sale rejects item and bill-discount changes.
- Deleted sales keep their row (deleted_at) so the bill number stays taken.
"""


STATE_OPEN = "OPEN"
STATE_PRICED = "PRICED"
STATE_SETTLED = "SETTLED"

MAX_PAGE_SIZE = 500


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def validate_percentage(value) -> Decimal:
    try:
        pct = to_decimal(value, "discount_percentage")
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_DISCOUNT_PERCENTAGE")
    if pct < ZERO or pct > HUNDRED:
        raise ValidationError(
            "Discount percentage must be between 0 and 100",
            details={"discount_percentage": str(pct)},
            code="INVALID_DISCOUNT_PERCENTAGE",
        )
    return pct


def validate_fixed(value) -> Decimal:
    try:
        fixed = to_decimal(value, "discount_amount")
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_DISCOUNT_AMOUNT")
    if fixed < ZERO:
        raise ValidationError(
            "Discount amount cannot be negative",
            details={"discount_amount": str(fixed)},
            code="INVALID_DISCOUNT_AMOUNT",
        )
    return quantize_money(fixed)


def validate_price(value) -> Decimal:
    try:
        price = to_decimal(value, "unit_price")
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_PRICE")
    if price < ZERO:
        raise ValidationError(
            "Unit price cannot be negative",
            details={"unit_price": str(price)},
            code="INVALID_PRICE",
        )
    return quantize_money(price)


def validate_quantity(value) -> int:
    qty = to_int_qty(value)
    if qty <= 0:
        raise ValidationError(
            "Quantity must be positive",
            details={"quantity": qty},
            code="INVALID_QUANTITY",
        )
    return qty


def _parse_when(value, field: str) -> datetime | None:
    try:
        return normalize_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={field: value})


def _page_bounds(limit, offset) -> tuple[int, int]:
    limit = int(limit) if limit is not None else 50
    offset = int(offset) if offset is not None else 0
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset cannot be negative")
    return limit, offset


def _paginate(query, limit, offset) -> tuple[list[Sale], int]:
    limit, offset = _page_bounds(limit, offset)
    total = query.count()
    rows = query.order_by(Sale.sale_date.desc(), Sale.id.desc()).offset(offset).limit(limit).all()
    return rows, total


# =============================================================================
# STATE
# =============================================================================

def _item_count(sale_id: int) -> int:
    return db.session.query(SaleItem).filter_by(sale_id=sale_id).count()


def _payment_count(sale_id: int) -> int:
    return db.session.query(Payment).filter_by(sale_id=sale_id).count()


def sale_state(sale: Sale) -> str:
    if _item_count(sale.id) == 0:
        return STATE_OPEN
    # Settling takes a recorded payment; a sale discounted to 0 stays PRICED
    if _payment_count(sale.id) and is_fully_paid(sale):
        return STATE_SETTLED
    return STATE_PRICED


def _ensure_mutable(sale: Sale) -> None:
    if sale_state(sale) == STATE_SETTLED:
        raise SaleSettledError(
            f"Sale {sale.bill_number} is settled and cannot be modified",
            details={"sale_id": sale.id, "bill_number": sale.bill_number},
        )


def _active_sales():
    return db.session.query(Sale).filter(Sale.deleted_at.is_(None))


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(_active_sales().filter(Sale.id == sale_id)).first()
    if not sale:
        raise not_found("sale", sale_id)
    return sale


# =============================================================================
# BILL NUMBERS & PROFIT
# =============================================================================

def generate_bill_number(when: datetime | None = None) -> str:
    """Allocate the next bill number (BILL-YYYYMMDD-NNNN)."""
    return next_bill_number(when)


def calculate_item_profit(unit_cost, unit_price, discount_amount, quantity) -> Decimal:
    """
    Profit on one line: (price * qty - discount) - cost * qty.

    A loss-making line reports 0 profit rather than a negative number.
    """
    qty = int(quantity)
    revenue = to_decimal(unit_price, "unit_price") * qty - to_decimal(discount_amount, "discount_amount")
    cost = to_decimal(unit_cost, "unit_cost") * qty
    profit = revenue - cost
    if profit < ZERO:
        return quantize_money(ZERO)
    return quantize_money(profit)


def item_profit(item: SaleItem) -> Decimal:
    return calculate_item_profit(item.unit_cost, item.unit_price, item.discount_amount, item.quantity)


# =============================================================================
# SALES
# =============================================================================

def create_sale(
    cashier_id: int,
    customer_id: int | None = None,
    *,
    bill_discount_percentage=0,
    bill_discount_fixed=0,
    notes: str | None = None,
    bill_number: str | None = None,
    sale_date=None,
) -> Sale:
    """
    Open a new sale with no items.

    The bill number is allocated from the daily sequence unless one is
    given explicitly, in which case it must not have been used before
    (deleted sales included).
    """
    pct = validate_percentage(bill_discount_percentage)
    fixed = validate_fixed(bill_discount_fixed)
    when = _parse_when(sale_date, "sale_date") or utcnow()

    def _op():
        get_cashier(cashier_id)
        if customer_id is not None:
            get_customer(customer_id)

        number = bill_number
        if number:
            if db.session.query(Sale.id).filter_by(bill_number=number).first():
                raise DuplicateBillNumberError(
                    f"Bill number {number} already exists",
                    details={"bill_number": number},
                )
        else:
            # Explicit bill numbers may already hold a value the sequence is about to hand out
            number = generate_bill_number(when)
            while db.session.query(Sale.id).filter_by(bill_number=number).first():
                number = generate_bill_number(when)

        sale = Sale(
            bill_number=number,
            customer_id=customer_id,
            cashier_id=cashier_id,
            sale_date=when,
            bill_discount_percentage=pct,
            bill_discount_fixed=fixed,
            subtotal_amount=ZERO,
            bill_discount_amount=ZERO,
            total_amount=ZERO,
            notes=notes,
        )
        db.session.add(sale)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateBillNumberError(
                f"Bill number {number} already exists",
                details={"bill_number": number},
            )

        current_app.logger.info("Sale %s created by cashier %s", sale.bill_number, cashier_id)
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = _active_sales().filter(Sale.id == sale_id).first()
    if not sale:
        raise not_found("sale", sale_id)
    return sale


def get_sale_by_bill_number(bill_number: str) -> Sale:
    sale = _active_sales().filter(Sale.bill_number == bill_number).first()
    if not sale:
        raise not_found("sale", bill_number)
    return sale


_UPDATABLE_SALE_FIELDS = {"customer_id", "notes", "bill_discount_percentage", "bill_discount_fixed"}


def update_sale(sale_id: int, data: dict) -> Sale:
    """
    Update customer, notes and/or the bill discount inputs.

    A bill discount change recomputes the totals and is refused on a
    settled sale.
    """
    unknown = set(data) - _UPDATABLE_SALE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {sorted(unknown)}")

    changes = {}
    if "bill_discount_percentage" in data:
        changes["bill_discount_percentage"] = validate_percentage(data["bill_discount_percentage"])
    if "bill_discount_fixed" in data:
        changes["bill_discount_fixed"] = validate_fixed(data["bill_discount_fixed"])

    def _op():
        sale = _lock_sale(sale_id)

        if "customer_id" in data:
            if data["customer_id"] is not None:
                get_customer(data["customer_id"])
            sale.customer_id = data["customer_id"]
        if "notes" in data:
            sale.notes = data["notes"]

        if changes:
            _ensure_mutable(sale)
            for key, value in changes.items():
                setattr(sale, key, value)
            recompute(sale)

        db.session.commit()
        return sale

    return run_with_retry(_op)


def delete_sale(sale_id: int, actor_user_id: int | None = None) -> None:
    """
    Soft-delete a sale, returning all of its stock to the batches it came from.

    Sales with payments cannot be deleted; delete the payments first.
    """
    sale = get_sale(sale_id)
    product_ids = [
        pid for (pid,) in db.session.query(SaleItem.product_id).filter_by(sale_id=sale.id).distinct()
    ]

    with product_locks(*product_ids):
        def _op():
            locked = _lock_sale(sale_id)
            payments = _payment_count(locked.id)
            if payments:
                raise BusinessRuleError(
                    "Sale has payments and cannot be deleted",
                    details={"sale_id": locked.id, "payments_count": payments},
                    code="SALE_HAS_PAYMENTS",
                )

            actor = actor_user_id or locked.cashier_id
            items = db.session.query(SaleItem).filter_by(sale_id=locked.id).all()
            for item in items:
                restore(item, item.quantity, actor_user_id=actor, note=f"Sale {locked.bill_number} deleted")
                db.session.delete(item)

            recompute(locked)
            locked.deleted_at = utcnow()
            db.session.commit()

            current_app.logger.info(
                "Sale %s deleted; %s item(s) returned to stock", locked.bill_number, len(items)
            )

        run_with_retry(_op)


def list_sales(*, limit: int = 50, offset: int = 0) -> tuple[list[Sale], int]:
    return _paginate(_active_sales(), limit, offset)


def get_sales_by_customer(customer_id: int, *, limit: int = 50, offset: int = 0) -> tuple[list[Sale], int]:
    get_customer(customer_id)
    return _paginate(_active_sales().filter(Sale.customer_id == customer_id), limit, offset)


def get_sales_by_cashier(cashier_id: int, *, limit: int = 50, offset: int = 0) -> tuple[list[Sale], int]:
    return _paginate(_active_sales().filter(Sale.cashier_id == cashier_id), limit, offset)


def get_sales_by_date_range(start, end, *, limit: int = 50, offset: int = 0) -> tuple[list[Sale], int]:
    start_dt = _parse_when(start, "start_date")
    end_dt = _parse_when(end, "end_date")
    if start_dt is None or end_dt is None:
        raise ValidationError("start_date and end_date are required")
    if start_dt > end_dt:
        raise ValidationError("start_date must not be after end_date")
    query = _active_sales().filter(Sale.sale_date >= start_dt, Sale.sale_date <= end_dt)
    return _paginate(query, limit, offset)


def search_sales(
    *,
    bill_number: str | None = None,
    customer_name: str | None = None,
    start=None,
    end=None,
    cashier_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    """Filter sales; every criterion is optional and they combine with AND."""
    query = _active_sales()
    if bill_number:
        query = query.filter(Sale.bill_number.ilike(f"%{bill_number}%"))
    if customer_name:
        query = query.join(Customer, Sale.customer_id == Customer.id).filter(
            Customer.name.ilike(f"%{customer_name}%")
        )
    start_dt = _parse_when(start, "start_date")
    if start_dt is not None:
        query = query.filter(Sale.sale_date >= start_dt)
    end_dt = _parse_when(end, "end_date")
    if end_dt is not None:
        query = query.filter(Sale.sale_date <= end_dt)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    return _paginate(query, limit, offset)


def list_sales_for_report(
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    cashier_id: int | None = None,
) -> list[Sale]:
    """Unpaginated window of non-deleted sales, oldest first."""
    query = _active_sales()
    if start is not None:
        query = query.filter(Sale.sale_date >= start)
    if end is not None:
        query = query.filter(Sale.sale_date <= end)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    return query.order_by(Sale.sale_date.asc(), Sale.id.asc()).all()


# =============================================================================
# SALE ITEMS
# =============================================================================

def _preflight_stock(product_id: int, quantity: int) -> None:
    available = get_inventory_available(product_id)
    if available < quantity:
        raise InsufficientStockError(
            f"Insufficient stock. Requested: {quantity}, Available: {available}",
            details={
                "product_id": product_id,
                "requested_quantity": quantity,
                "available_quantity": available,
            },
        )


def _price_item(item: SaleItem) -> None:
    discount, line_total = calculate_item_discount(
        line_base_amount(item.unit_price, item.quantity),
        item.discount_percentage,
        item.discount_fixed,
    )
    item.discount_amount = discount
    item.line_total = line_total


def create_sale_item(
    sale_id: int,
    product_id: int,
    quantity,
    *,
    unit_price=None,
    discount_percentage=0,
    discount_fixed=0,
    actor_user_id: int | None = None,
) -> SaleItem:
    """
    Add a line to a sale.

    Steps, in one transaction:
    1. validate input, sale and product
    2. pre-flight availability check on the inventory aggregate
    3. FIFO unit cost for the requested quantity
    4. line discount
    5. persist the item
    6. draw the quantity from the batches (SALE movements)
    7. recompute the sale totals

    unit_price defaults to the product's price.
    """
    qty = validate_quantity(quantity)
    pct = validate_percentage(discount_percentage)
    fixed = validate_fixed(discount_fixed)
    price = validate_price(unit_price) if unit_price is not None else None

    with product_locks(product_id):
        def _op():
            sale = _lock_sale(sale_id)
            _ensure_mutable(sale)
            product = get_product(product_id, require_active=True)

            item_price = price
            if item_price is None:
                if product.price is None:
                    raise ValidationError(
                        f"Product {product_id} has no price; unit_price is required",
                        details={"product_id": product_id},
                        code="INVALID_PRICE",
                    )
                item_price = quantize_money(product.price)

            _preflight_stock(product_id, qty)
            unit_cost = resolve_cost(product_id, qty)

            item = SaleItem(
                sale_id=sale.id,
                product_id=product_id,
                quantity=qty,
                unit_price=item_price,
                unit_cost=unit_cost,
                discount_percentage=pct,
                discount_fixed=fixed,
            )
            _price_item(item)
            db.session.add(item)
            db.session.flush()

            consume(
                product_id,
                qty,
                sale_item_id=item.id,
                actor_user_id=actor_user_id or sale.cashier_id,
                note=f"Sale {sale.bill_number}",
            )
            recompute(sale)
            db.session.commit()

            current_app.logger.info(
                "Sale %s: added item %s (product %s x%s @ %s, cost %s)",
                sale.bill_number, item.id, product_id, qty, item_price, unit_cost,
            )
            return item

        return run_with_retry(_op)


def get_sale_item(item_id: int) -> SaleItem:
    item = db.session.get(SaleItem, item_id)
    if not item:
        raise not_found("sale_item", item_id)
    return item


def list_sale_items(sale_id: int) -> list[SaleItem]:
    get_sale(sale_id)
    return db.session.query(SaleItem).filter_by(sale_id=sale_id).order_by(SaleItem.id.asc()).all()


def update_sale_item(
    item_id: int,
    *,
    quantity=None,
    unit_price=None,
    discount_percentage=None,
    discount_fixed=None,
    actor_user_id: int | None = None,
) -> SaleItem:
    """
    Change quantity, price or discount inputs of a line.

    A higher quantity draws the difference from stock; a lower one returns
    the difference to the batches it came from. unit_cost is kept.
    """
    qty = validate_quantity(quantity) if quantity is not None else None
    price = validate_price(unit_price) if unit_price is not None else None
    pct = validate_percentage(discount_percentage) if discount_percentage is not None else None
    fixed = validate_fixed(discount_fixed) if discount_fixed is not None else None

    product_id = get_sale_item(item_id).product_id

    with product_locks(product_id):
        def _op():
            item = lock_for_update(db.session.query(SaleItem).filter_by(id=item_id)).first()
            if not item:
                raise not_found("sale_item", item_id)
            sale = _lock_sale(item.sale_id)
            _ensure_mutable(sale)
            actor = actor_user_id or sale.cashier_id

            if qty is not None and qty != item.quantity:
                delta = qty - item.quantity
                if delta > 0:
                    _preflight_stock(item.product_id, delta)
                    consume(
                        item.product_id,
                        delta,
                        sale_item_id=item.id,
                        actor_user_id=actor,
                        note=f"Sale {sale.bill_number} quantity increased",
                    )
                else:
                    restore(item, -delta, actor_user_id=actor, note=f"Sale {sale.bill_number} quantity reduced")
                item.quantity = qty

            if price is not None:
                item.unit_price = price
            if pct is not None:
                item.discount_percentage = pct
            if fixed is not None:
                item.discount_fixed = fixed

            _price_item(item)
            recompute(sale)
            db.session.commit()
            return item

        return run_with_retry(_op)


def delete_sale_item(item_id: int, actor_user_id: int | None = None) -> None:
    """Remove a line and return its stock."""
    product_id = get_sale_item(item_id).product_id

    with product_locks(product_id):
        def _op():
            item = lock_for_update(db.session.query(SaleItem).filter_by(id=item_id)).first()
            if not item:
                raise not_found("sale_item", item_id)
            sale = _lock_sale(item.sale_id)
            _ensure_mutable(sale)

            restore(
                item,
                item.quantity,
                actor_user_id=actor_user_id or sale.cashier_id,
                note=f"Sale {sale.bill_number} item removed",
            )
            db.session.delete(item)
            recompute(sale)
            db.session.commit()

            current_app.logger.info("Sale %s: removed item %s", sale.bill_number, item_id)

        run_with_retry(_op)


# =============================================================================
# SERIALIZATION
# =============================================================================

def sale_item_to_dict(item: SaleItem) -> dict:
    data = item.to_dict()
    data["profit"] = money_str(item_profit(item))
    return data


def sale_to_dict(sale: Sale, *, include_items: bool = False) -> dict:
    data = sale.to_dict()
    data["state"] = sale_state(sale)
    data["payment_status"] = payment_status_to_dict(get_payment_status(sale.id))
    if include_items:
        items = db.session.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.id.asc()).all()
        data["items"] = [sale_item_to_dict(item) for item in items]
    return data
