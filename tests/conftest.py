from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app import create_app, db, Product, InventoryBatch, SalesLog


@pytest.fixture
def app():
    """
    Create test Flask application with in-memory database.
    Ensures clean state for each test with database schema created.
    """
    app = create_app({
        'TESTING': True,  # Enable Flask testing mode
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',  # Isolated in-memory database
        'SECRET_KEY': 'test-secret',  # Fixed secret for flash messages
    })

    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest.fixture
def make_product(app):
    """Insert a product row directly and return its id."""
    def _make(name, price, active=True):
        product = Product(name=name, default_price=Decimal(price), is_active=active)
        db.session.add(product)
        db.session.commit()
        return product.id
    return _make


@pytest.fixture
def make_batch(app):
    def _make(product_id, quantity, unit_price, created_at=None):
        batch = InventoryBatch(product_id=product_id, quantity_made=quantity,
                               unit_price=Decimal(unit_price), created_at=created_at or utcnow())
        db.session.add(batch)
        db.session.commit()
        return batch.id
    return _make


@pytest.fixture
def make_sale(app):
    def _make(product_id, quantity, created_at=None, logged_by='Sales counter', unit_price=None):
        sale = SalesLog(product_id=product_id, quantity_sold=quantity, logged_by=logged_by,
                        unit_price=None if unit_price is None else Decimal(unit_price),
                        created_at=created_at or utcnow())
        db.session.add(sale)
        db.session.commit()
        return sale.id
    return _make
