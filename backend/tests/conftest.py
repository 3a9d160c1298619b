"""
Pytest fixtures for RetailPOS backend tests.

Provides test database setup, collaborator records, stocked products, and
test client.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import User, Customer, Product
from retailpos.services import stock_ledger_service
from retailpos.services.cart_session_service import CartSessionStore
from retailpos.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CONCURRENCY_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions["cart_sessions"] = CartSessionStore()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def cashier(db_session):
    user = User(username="cashier", full_name="Test Cashier", is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    record = Customer(name="Jane Buyer", phone="555-0100", is_active=True)
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(sku, price=..., category=..., is_active=...)."""
    def _make(sku: str, price="100.00", category="Grocery", is_active=True) -> Product:
        product = Product(
            sku=sku,
            name=f"Product {sku}",
            category=category,
            price=Decimal(price) if price is not None else None,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def receive(db_session):
    """Factory: receive(product, quantity, unit_cost, hours_ago=0) -> StockBatch."""
    base = utcnow()

    def _receive(product, quantity, unit_cost, hours_ago=0):
        return stock_ledger_service.receive_batch(
            product_id=product.id,
            quantity=quantity,
            unit_cost=unit_cost,
            received_at=base - timedelta(hours=hours_ago),
        )
    return _receive


@pytest.fixture(scope='function')
def product(make_product, receive):
    """Price 100.00 with 50 units at cost 60.00."""
    p = make_product("SKU-100")
    receive(p, 50, "60.00")
    return p


@pytest.fixture(scope='function')
def fifo_product(make_product, receive):
    """Two batches: 5 @ 10.00 (older) then 10 @ 12.00."""
    p = make_product("SKU-FIFO", price="20.00")
    older = receive(p, 5, "10.00", hours_ago=2)
    newer = receive(p, 10, "12.00", hours_ago=1)
    return p, older, newer
