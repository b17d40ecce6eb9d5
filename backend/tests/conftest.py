"""
Pytest fixtures for stockledger backend tests.

Provides an in-memory application, a per-test clean database, and shop /
product / customer fixtures.
"""

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Shop
from stockledger.services import catalog_service, credit_service


ACTOR_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SALE_NUMBER_PREFIX': 'TEST',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def shop(db_session):
    """Create Shop A."""
    shop = Shop(name="Shop A", code="A")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def other_shop(db_session):
    """Create Shop B (second tenant)."""
    shop = Shop(name="Shop B", code="B")
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create a product (optionally with opening stock) in a shop."""
    def _make(shop, name="Widget", cost_price="0", selling_price="10.00", stock_quantity="0", **kwargs):
        return catalog_service.create_product(
            shop.id,
            ACTOR_ID,
            name=name,
            cost_price=cost_price,
            selling_price=selling_price,
            stock_quantity=stock_quantity,
            **kwargs,
        )
    return _make


@pytest.fixture(scope='function')
def layered_product(shop, make_product):
    """Product with two cost layers: 5 @ 10.00 then 10 @ 12.00."""
    product = make_product(shop, name="Layered", cost_price="10.00")
    catalog_service.receive_stock(shop.id, product.id, ACTOR_ID, "5", unit_cost="10.00")
    catalog_service.receive_stock(shop.id, product.id, ACTOR_ID, "10", unit_cost="12.00")
    return product


@pytest.fixture(scope='function')
def customer(shop):
    """Customer in Shop A with no credit limit."""
    return credit_service.create_customer(shop.id, name="Ama Mensah", phone="0200000000")
