"""
Pytest fixtures for stockcore tests.

Provides an in-memory database app, per-test table wipe, and the entities
most tests need: a default admin, a customer, units and products.
"""

import pytest

from stockcore import create_app, shutdown_restore_executor
from stockcore.extensions import db
from stockcore.models import Customer, Unit, User

from factories import make_product, make_product_unit


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()

    shutdown_restore_executor(app)


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
def admin(db_session):
    """Default administrative identity used for ledger attribution."""
    user = User(username="admin", email="admin@stockcore.local", role="Super Admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Amal Saeed", email="amal@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def piece_unit(db_session):
    unit = Unit(name="Piece", short_code="pc", is_base=True)
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def half_dozen_unit(db_session):
    unit = Unit(name="Half Dozen", short_code="6pk")
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def product_a(db_session):
    """Product A: stock=100, sales=0."""
    return make_product(db_session, "Product A", stock=100, sku="PROD-A-001", external_id="ERP-A")


@pytest.fixture(scope='function')
def product_b(db_session):
    """Product B: stock=50, sales=0."""
    return make_product(db_session, "Product B", stock=50, sku="PROD-B-001")


@pytest.fixture(scope='function')
def six_pack(db_session, product_a, half_dozen_unit):
    """Six-piece packaging unit of Product A, price 10.00."""
    return make_product_unit(
        db_session, product_a,
        pack_qty="6", price_cents=1000,
        unit_id=half_dozen_unit.id, is_default=True,
    )


@pytest.fixture(scope='function')
def single_a(db_session, product_a, piece_unit):
    """Single-piece packaging unit of Product A, price 2.00."""
    return make_product_unit(
        db_session, product_a,
        pack_qty="1", price_cents=200,
        unit_id=piece_unit.id,
    )
