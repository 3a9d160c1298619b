# Overview: In-progress carts kept per session key until checkout turns them into a sale.

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..money import ZERO, money_str
from .discount_service import calculate_bill_discount, calculate_item_discount, line_base_amount
from .lookup_service import get_cashier, get_product
from .sales_service import (
    create_sale,
    create_sale_item,
    delete_sale,
    validate_fixed,
    validate_percentage,
    validate_price,
    validate_quantity,
)


@dataclass
class CartLineDraft:
    product_id: int
    quantity: int
    unit_price: Decimal
    discount_percentage: Decimal = ZERO
    discount_fixed: Decimal = ZERO
    category: str | None = None


@dataclass
class CartSession:
    key: str
    cashier_id: int
    lines: dict[int, CartLineDraft] = field(default_factory=dict)
    bill_discount_percentage: Decimal = ZERO
    bill_discount_fixed: Decimal = ZERO
    created_at: float = 0.0
    touched_at: float = 0.0


class CartSessionStore:
    """
    Session-keyed carts that have not been checked out yet.

    Nothing here touches stock: carts are priced for preview only, and
    checkout goes through the sale orchestrator like any other sale.
    One line per product; adding a product already in the cart raises
    its quantity. Instances are thread-safe.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.RLock()
        self._sessions: dict[str, CartSession] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, cashier_id: int) -> CartSession:
        get_cashier(cashier_id)
        now = self._clock()
        cart = CartSession(key=uuid.uuid4().hex, cashier_id=cashier_id, created_at=now, touched_at=now)
        with self._lock:
            self._sessions[cart.key] = cart
        return cart

    def get(self, key: str) -> CartSession:
        with self._lock:
            cart = self._sessions.get(key)
            if cart is None:
                raise NotFoundError(
                    f"Cart session {key} not found",
                    details={"cart_key": key},
                    code="CART_NOT_FOUND",
                )
            cart.touched_at = self._clock()
            return cart

    def add_line(
        self,
        key: str,
        product_id: int,
        quantity,
        *,
        unit_price=None,
        discount_percentage=0,
        discount_fixed=0,
    ) -> CartSession:
        qty = validate_quantity(quantity)
        pct = validate_percentage(discount_percentage)
        fixed = validate_fixed(discount_fixed)
        product = get_product(product_id, require_active=True)
        if unit_price is not None:
            price = validate_price(unit_price)
        elif product.price is not None:
            price = validate_price(product.price)
        else:
            raise ValidationError(
                f"Product {product_id} has no price; unit_price is required",
                details={"product_id": product_id},
                code="INVALID_PRICE",
            )

        with self._lock:
            cart = self.get(key)
            existing = cart.lines.get(product_id)
            if existing is not None:
                existing.quantity += qty
                existing.unit_price = price
                existing.discount_percentage = pct
                existing.discount_fixed = fixed
            else:
                cart.lines[product_id] = CartLineDraft(
                    product_id=product_id,
                    quantity=qty,
                    unit_price=price,
                    discount_percentage=pct,
                    discount_fixed=fixed,
                    category=product.category,
                )
            return cart

    def update_line(
        self,
        key: str,
        product_id: int,
        *,
        quantity=None,
        unit_price=None,
        discount_percentage=None,
        discount_fixed=None,
    ) -> CartSession:
        with self._lock:
            cart = self.get(key)
            line = self._line(cart, product_id)
            if quantity is not None:
                line.quantity = validate_quantity(quantity)
            if unit_price is not None:
                line.unit_price = validate_price(unit_price)
            if discount_percentage is not None:
                line.discount_percentage = validate_percentage(discount_percentage)
            if discount_fixed is not None:
                line.discount_fixed = validate_fixed(discount_fixed)
            return cart

    def remove_line(self, key: str, product_id: int) -> CartSession:
        with self._lock:
            cart = self.get(key)
            self._line(cart, product_id)
            del cart.lines[product_id]
            return cart

    def set_bill_discount(self, key: str, *, percentage=0, fixed_amount=0) -> CartSession:
        pct = validate_percentage(percentage)
        fixed = validate_fixed(fixed_amount)
        with self._lock:
            cart = self.get(key)
            cart.bill_discount_percentage = pct
            cart.bill_discount_fixed = fixed
            return cart

    def preview(self, key: str) -> dict:
        """Price the cart exactly as the sale would be priced at checkout."""
        with self._lock:
            cart = self.get(key)
            lines = []
            subtotal = ZERO
            for line in cart.lines.values():
                discount, line_total = calculate_item_discount(
                    line_base_amount(line.unit_price, line.quantity),
                    line.discount_percentage,
                    line.discount_fixed,
                )
                subtotal += line_total
                lines.append({
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "unit_price": money_str(line.unit_price),
                    "discount_percentage": money_str(line.discount_percentage),
                    "discount_fixed": money_str(line.discount_fixed),
                    "discount_amount": money_str(discount),
                    "line_total": money_str(line_total),
                })
            bill_discount, total = calculate_bill_discount(
                subtotal, cart.bill_discount_percentage, cart.bill_discount_fixed
            )
            return {
                "cart_key": cart.key,
                "cashier_id": cart.cashier_id,
                "lines": lines,
                "subtotal_amount": money_str(subtotal),
                "bill_discount_percentage": money_str(cart.bill_discount_percentage),
                "bill_discount_fixed": money_str(cart.bill_discount_fixed),
                "bill_discount_amount": money_str(bill_discount),
                "total_amount": money_str(total),
            }

    def evict(self, key: str) -> bool:
        with self._lock:
            return self._sessions.pop(key, None) is not None

    def evict_idle(self, max_age_seconds: float) -> list[str]:
        """Drop carts not touched for max_age_seconds; returns the evicted keys."""
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [k for k, cart in self._sessions.items() if cart.touched_at < cutoff]
            for k in stale:
                del self._sessions[k]
        if stale:
            current_app.logger.info("Evicted %s idle cart session(s)", len(stale))
        return stale

    def checkout(self, key: str, customer_id: int | None = None, notes: str | None = None):
        """
        Turn the cart into a sale and forget the session.

        If any line cannot be added (e.g. stock ran out since it was put in
        the cart) the partly built sale is deleted, its stock returned, and
        the cart is put back so the cashier can fix it. The cart is out of
        the store while its sale is being built.
        """
        with self._lock:
            cart = self.get(key)
            if not cart.lines:
                raise ValidationError("Cart is empty", details={"cart_key": key})
            del self._sessions[key]

        try:
            sale = create_sale(
                cart.cashier_id,
                customer_id,
                bill_discount_percentage=cart.bill_discount_percentage,
                bill_discount_fixed=cart.bill_discount_fixed,
                notes=notes,
            )
        except Exception:
            self._put_back(cart)
            raise

        try:
            for line in cart.lines.values():
                create_sale_item(
                    sale.id,
                    line.product_id,
                    line.quantity,
                    unit_price=line.unit_price,
                    discount_percentage=line.discount_percentage,
                    discount_fixed=line.discount_fixed,
                    actor_user_id=cart.cashier_id,
                )
        except Exception:
            current_app.logger.warning("Checkout of cart %s failed; discarding sale %s", key, sale.bill_number)
            try:
                delete_sale(sale.id, actor_user_id=cart.cashier_id)
            finally:
                self._put_back(cart)
            raise

        current_app.logger.info("Cart %s checked out as sale %s", key, sale.bill_number)
        return sale

    def _put_back(self, cart: CartSession) -> None:
        with self._lock:
            cart.touched_at = self._clock()
            self._sessions[cart.key] = cart

    @staticmethod
    def _line(cart: CartSession, product_id: int) -> CartLineDraft:
        line = cart.lines.get(product_id)
        if line is None:
            raise NotFoundError(
                f"Product {product_id} is not in cart {cart.key}",
                details={"cart_key": cart.key, "product_id": product_id},
                code="CART_LINE_NOT_FOUND",
            )
        return line
