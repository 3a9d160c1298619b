"""
FIFO Cost Resolver

Purpose:
- Price a sale line at the weighted cost of the batches it will draw from,
  oldest received first.
- Consume stock from those batches, one SALE movement per batch touched.
- Restore stock to the batches an item drew from when its quantity drops
  or it is deleted (newest draws are returned first).

The draw plan is a fold over the ordered batches producing
(batch, drawn, remaining) steps. Planning is pure; consume() applies a
plan and never starts applying one that cannot cover the request.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from functools import reduce

from ..extensions import db
from ..errors import ConsistencyError, InsufficientStockError, ValidationError
from ..models import StockBatch, StockMovement, SaleItem
from ..money import ZERO, quantize_money, to_decimal
from .stock_ledger_service import (
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
    active_batches_query,
    decrement_batch,
    increment_batch,
    record_movement,
)
from .concurrency import lock_for_update


SALE_ITEM_REFERENCE = "sale_item"


@dataclass(frozen=True)
class Draw:
    batch_id: int
    quantity: int
    unit_cost: Decimal
    remaining: int  # still needed after this draw


def _fold_draw(plan: tuple[list[Draw], int], batch) -> tuple[list[Draw], int]:
    draws, needed = plan
    if needed <= 0:
        return plan
    available = int(batch.available_quantity or 0)
    if available <= 0:
        return plan
    drawn = min(available, needed)
    step = Draw(
        batch_id=batch.id,
        quantity=drawn,
        unit_cost=to_decimal(batch.unit_cost, "unit_cost"),
        remaining=needed - drawn,
    )
    return draws + [step], needed - drawn


def plan_draws(batches, quantity: int, *, product_id: int | None = None) -> list[Draw]:
    """
    Plan how much to take from each batch (already in FIFO order).

    Raises InsufficientStockError when the batches cannot cover the
    request; the caller then mutates nothing.
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be positive", code="INVALID_QUANTITY")

    batches = list(batches)
    draws, still_needed = reduce(_fold_draw, batches, ([], quantity))
    if still_needed > 0:
        available = sum(int(b.available_quantity or 0) for b in batches)
        raise InsufficientStockError(
            f"Insufficient stock. Requested: {quantity}, Available: {available}",
            details={
                "product_id": product_id,
                "requested_quantity": quantity,
                "available_quantity": available,
            },
        )

    if sum(d.quantity for d in draws) != quantity:
        raise ConsistencyError(
            "Draw plan does not account for the requested quantity",
            details={"product_id": product_id, "requested_quantity": quantity},
        )
    return draws


def weighted_unit_cost(draws: list[Draw]) -> Decimal:
    """Quantity-weighted average cost across all draws, rounded to cents."""
    total_qty = sum(d.quantity for d in draws)
    if total_qty <= 0:
        return ZERO
    total_cost = sum((d.unit_cost * d.quantity for d in draws), ZERO)
    return quantize_money(total_cost / total_qty)


def resolve_cost(product_id: int, quantity: int) -> Decimal:
    """Unit cost the next `quantity` units of a product would carry."""
    batches = active_batches_query(product_id).all()
    return weighted_unit_cost(plan_draws(batches, quantity, product_id=product_id))


def consume(
    product_id: int,
    quantity: int,
    *,
    sale_item_id: int,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> list[tuple[int, int]]:
    """
    Draw `quantity` from the product's batches in FIFO order.

    Runs inside the caller's transaction (no commit). Batches are
    selected FOR UPDATE; the plan is validated in full before the first
    batch is touched.

    Returns [(batch_id, quantity_drawn), ...].
    """
    batches = active_batches_query(product_id, lock=True).all()
    draws = plan_draws(batches, quantity, product_id=product_id)
    by_id = {b.id: b for b in batches}

    consumed = []
    for draw in draws:
        batch = by_id[draw.batch_id]
        decrement_batch(batch, draw.quantity)
        record_movement(
            product_id=product_id,
            batch_id=batch.id,
            movement_type=MOVEMENT_SALE,
            quantity=-draw.quantity,
            unit_cost=draw.unit_cost,
            reference_type=SALE_ITEM_REFERENCE,
            reference_id=sale_item_id,
            actor_user_id=actor_user_id,
            note=note or f"Sale item ID: {sale_item_id}",
        )
        consumed.append((batch.id, draw.quantity))
    return consumed


def drawn_by_batch(sale_item_id: int) -> dict[int, int]:
    """Net quantity a sale item currently holds from each batch."""
    rows = db.session.query(StockMovement).filter(
        StockMovement.reference_type == SALE_ITEM_REFERENCE,
        StockMovement.reference_id == str(sale_item_id),
        StockMovement.movement_type.in_([MOVEMENT_SALE, MOVEMENT_RETURN]),
    ).all()

    net: dict[int, int] = defaultdict(int)
    for mv in rows:
        if mv.batch_id is not None:
            net[mv.batch_id] -= mv.quantity
    return {batch_id: qty for batch_id, qty in net.items() if qty > 0}


def restore(
    item: SaleItem,
    quantity: int,
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> list[tuple[int, int]]:
    """
    Return `quantity` units of a sale item to the batches it drew from.

    Newest batches are refilled first, so the oldest stock stays
    consumed and future FIFO costing is unchanged. Runs inside the
    caller's transaction.
    """
    if quantity <= 0:
        raise ValidationError("Restore quantity must be positive", code="INVALID_QUANTITY")

    held = drawn_by_batch(item.id)
    if sum(held.values()) < quantity:
        raise ConsistencyError(
            f"Sale item {item.id} holds {sum(held.values())} units; cannot restore {quantity}",
            details={"sale_item_id": item.id, "held": sum(held.values()), "requested_quantity": quantity},
        )

    batches = lock_for_update(
        db.session.query(StockBatch).filter(StockBatch.id.in_(list(held.keys())))
    ).order_by(StockBatch.received_at.desc(), StockBatch.id.desc()).all()

    remaining = quantity
    restored = []
    for batch in batches:
        if remaining <= 0:
            break
        give_back = min(held[batch.id], remaining)
        increment_batch(batch, give_back)
        record_movement(
            product_id=batch.product_id,
            batch_id=batch.id,
            movement_type=MOVEMENT_RETURN,
            quantity=give_back,
            unit_cost=batch.unit_cost,
            reference_type=SALE_ITEM_REFERENCE,
            reference_id=item.id,
            actor_user_id=actor_user_id,
            note=note or f"Sale item ID: {item.id} reduced",
        )
        restored.append((batch.id, give_back))
        remaining -= give_back
    return restored
