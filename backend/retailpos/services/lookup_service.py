# Overview: Collaborator lookups the settlement engine consumes (products, customers, cashiers, inventory).

from __future__ import annotations

from ..extensions import db
from ..errors import BusinessRuleError, not_found
from ..models import Product, Customer, User, InventoryLevel


def get_product(product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise not_found("product", product_id)
    if require_active and not product.is_active:
        raise BusinessRuleError(
            f"Product {product_id} is inactive",
            details={"product_id": product_id},
            code="PRODUCT_INACTIVE",
        )
    return product


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise not_found("customer", customer_id)
    return customer


def get_cashier(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise not_found("cashier", user_id)
    return user


def get_inventory_level(product_id: int, *, create: bool = False) -> InventoryLevel | None:
    level = db.session.query(InventoryLevel).filter_by(product_id=product_id).first()
    if level is None and create:
        level = InventoryLevel(product_id=product_id, quantity=0, reserved_quantity=0)
        db.session.add(level)
        db.session.flush()
    return level


def get_inventory_available(product_id: int) -> int:
    """
    Aggregate availability (on-hand minus reserved).

    Used for the pre-flight check before FIFO batch walking.
    """
    level = get_inventory_level(product_id)
    if level is None:
        return 0
    return level.available_quantity
