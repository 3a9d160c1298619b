# Overview: Service-layer operations for the stock ledger; batches, movements, and availability.

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..errors import ConsistencyError, InsufficientStockError, ValidationError, not_found
from ..models import StockBatch, StockMovement
from ..money import quantize_money, to_decimal
from ..time_utils import utcnow, normalize_datetime
from .concurrency import lock_for_update, product_locks, run_with_retry
from .lookup_service import get_product, get_inventory_level
"""
Stock Ledger Invariants (authoritative)

- A batch's available_quantity stays within [0, received_quantity].
- Any decrement that would go below zero is rejected before a movement
  is written; no destructive write ever happens on invalid state.
- StockMovement rows are append-only (no updates/deletes).
- Available quantity for a product is SUM(available_quantity) over its
  active batches.
- The InventoryLevel aggregate moves in the same DB transaction as the
  batches, so the pre-flight check and the batch walk agree.

Helpers named *_locked or taking an open session do not commit; the
public receive/adjust functions own their transaction.
"""


MOVEMENT_SALE = "SALE"
MOVEMENT_RECEIPT = "RECEIPT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TRANSFER = "TRANSFER"
MOVEMENT_RETURN = "RETURN"

VALID_MOVEMENT_TYPES = [
    MOVEMENT_SALE,
    MOVEMENT_RECEIPT,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER,
    MOVEMENT_RETURN,
]


def to_int_qty(value, field: str = "quantity") -> int:
    """HARD RULE: quantities are integer units in this system."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole integer unit", code="INVALID_QUANTITY")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be a whole integer unit", code="INVALID_QUANTITY")


def active_batches_query(product_id: int, *, lock: bool = False):
    """
    Active batches with stock, oldest received first (FIFO order).

    Ties on received_at fall back to id so the order is total.
    """
    query = db.session.query(StockBatch).filter(
        StockBatch.product_id == product_id,
        StockBatch.is_active.is_(True),
        StockBatch.available_quantity > 0,
    ).order_by(StockBatch.received_at.asc(), StockBatch.id.asc())
    if lock:
        query = lock_for_update(query)
    return query


def get_available(product_id: int) -> int:
    """Sum of available_quantity across the product's active batches."""
    total = db.session.query(
        db.func.coalesce(db.func.sum(StockBatch.available_quantity), 0)
    ).filter(
        StockBatch.product_id == product_id,
        StockBatch.is_active.is_(True),
    ).scalar()
    return int(total or 0)


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    batch_id: int | None = None,
    unit_cost=None,
    reference_type: str | None = None,
    reference_id=None,
    actor_user_id: int | None = None,
    note: str | None = None,
    occurred_at=None,
) -> StockMovement:
    """
    Append-only movement entry.

    - No updates/deletes of existing entries.
    - Flushes so the id is assigned without committing.
    """
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")
    if quantity == 0:
        raise ValidationError("Movement quantity cannot be zero", code="INVALID_QUANTITY")

    movement = StockMovement(
        product_id=product_id,
        batch_id=batch_id,
        movement_type=movement_type,
        quantity=quantity,
        unit_cost=quantize_money(unit_cost) if unit_cost is not None else None,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        actor_user_id=actor_user_id,
        note=note,
        occurred_at=normalize_datetime(occurred_at) or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _apply_to_inventory_level(product_id: int, delta: int) -> None:
    level = get_inventory_level(product_id, create=True)
    if level.quantity + delta < 0:
        raise ConsistencyError(
            "Inventory aggregate would go negative",
            details={"product_id": product_id, "quantity": level.quantity, "delta": delta},
        )
    level.quantity = level.quantity + delta


def decrement_batch(batch: StockBatch, quantity: int) -> None:
    """Take quantity out of a batch; rejects going below zero."""
    if quantity <= 0:
        raise ValidationError("Decrement quantity must be positive", code="INVALID_QUANTITY")
    if batch.available_quantity - quantity < 0:
        raise InsufficientStockError(
            f"Batch {batch.id} has only {batch.available_quantity} available",
            details={
                "batch_id": batch.id,
                "available_quantity": batch.available_quantity,
                "requested_quantity": quantity,
            },
        )
    batch.available_quantity = batch.available_quantity - quantity
    if batch.is_active:
        _apply_to_inventory_level(batch.product_id, -quantity)


def increment_batch(batch: StockBatch, quantity: int) -> None:
    """Put quantity back into a batch; never beyond what was received."""
    if quantity <= 0:
        raise ValidationError("Increment quantity must be positive", code="INVALID_QUANTITY")
    if batch.available_quantity + quantity > batch.received_quantity:
        raise ConsistencyError(
            f"Batch {batch.id} cannot hold more than it received",
            details={
                "batch_id": batch.id,
                "available_quantity": batch.available_quantity,
                "received_quantity": batch.received_quantity,
                "requested_quantity": quantity,
            },
        )
    batch.available_quantity = batch.available_quantity + quantity
    if batch.is_active:
        _apply_to_inventory_level(batch.product_id, quantity)


def receive_batch(
    *,
    product_id: int,
    quantity: int,
    unit_cost,
    batch_number: str | None = None,
    lot_number: str | None = None,
    expiry_date: date | None = None,
    received_at=None,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> StockBatch:
    """
    Stock intake: create a batch and its RECEIPT movement.

    The purchase-receipt workflow calls this once per received line.
    """
    qty = to_int_qty(quantity)
    if qty <= 0:
        raise ValidationError("Received quantity must be positive", code="INVALID_QUANTITY")
    try:
        cost = quantize_money(to_decimal(unit_cost, "unit_cost"))
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_PRICE")
    if cost < 0:
        raise ValidationError("unit_cost cannot be negative", code="INVALID_PRICE")

    def _op():
        get_product(product_id)
        received_dt = normalize_datetime(received_at) or utcnow()

        batch = StockBatch(
            product_id=product_id,
            batch_number=batch_number,
            lot_number=lot_number,
            received_quantity=qty,
            available_quantity=qty,
            unit_cost=cost,
            expiry_date=expiry_date,
            received_at=received_dt,
            is_active=True,
        )
        db.session.add(batch)
        db.session.flush()

        _apply_to_inventory_level(product_id, qty)

        record_movement(
            product_id=product_id,
            batch_id=batch.id,
            movement_type=MOVEMENT_RECEIPT,
            quantity=qty,
            unit_cost=cost,
            reference_type="stock_batch",
            reference_id=batch.id,
            actor_user_id=actor_user_id,
            note=note,
            occurred_at=received_dt,
        )

        db.session.commit()
        return batch

    return run_with_retry(_op)


def adjust_batch(
    *,
    batch_id: int,
    quantity_delta: int,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """Manual correction of one batch, bounded by [0, received_quantity]."""
    delta = to_int_qty(quantity_delta, "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta cannot be zero", code="INVALID_QUANTITY")

    def _op():
        batch = lock_for_update(db.session.query(StockBatch).filter_by(id=batch_id)).first()
        if batch is None:
            raise not_found("batch", batch_id)

        if delta < 0:
            decrement_batch(batch, -delta)
        else:
            increment_batch(batch, delta)

        movement = record_movement(
            product_id=batch.product_id,
            batch_id=batch.id,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity=delta,
            unit_cost=batch.unit_cost,
            reference_type="stock_batch",
            reference_id=batch.id,
            actor_user_id=actor_user_id,
            note=note,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def set_batch_active(batch_id: int, is_active: bool) -> StockBatch:
    """Take a batch out of (or back into) FIFO rotation, e.g. for a recall."""
    found = db.session.get(StockBatch, batch_id)
    if found is None:
        raise not_found("batch", batch_id)

    with product_locks(found.product_id):
        def _op():
            batch = lock_for_update(db.session.query(StockBatch).filter_by(id=batch_id)).first()
            if batch is None:
                raise not_found("batch", batch_id)
            # The aggregate counts active batches only
            if batch.is_active != bool(is_active) and batch.available_quantity:
                delta = batch.available_quantity if is_active else -batch.available_quantity
                _apply_to_inventory_level(batch.product_id, delta)
            batch.is_active = bool(is_active)
            db.session.commit()
            return batch

        return run_with_retry(_op)


def list_batches(product_id: int, *, include_exhausted: bool = True) -> list[StockBatch]:
    get_product(product_id)
    query = db.session.query(StockBatch).filter_by(product_id=product_id)
    if not include_exhausted:
        query = query.filter(StockBatch.available_quantity > 0)
    return query.order_by(StockBatch.received_at.asc(), StockBatch.id.asc()).all()


def list_movements(
    *,
    product_id: int | None = None,
    reference_type: str | None = None,
    reference_id=None,
    limit: int = 200,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if reference_type is not None:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == str(reference_id))
    return query.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc()).limit(limit).all()
