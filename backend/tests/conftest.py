"""
Pytest fixtures for atelier backend tests.

Provides test database setup, a location with garments, a client, and the
Flask test client.
"""

from datetime import date

import pytest
from atelier import create_app
from atelier.extensions import db
from atelier.models import Client, Inventory, Cloth


# Fixed reference day so rental windows never depend on the calendar
D = date(2030, 5, 10)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RENTAL_BUFFER_DAYS': 2,
        'TRANSACTION_RETRY_ATTEMPTS': 3,
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def inventory(db_session):
    """Main branch that owns the test garments."""
    inv = Inventory(name="Main Branch", entity_type="branch")
    db_session.add(inv)
    db_session.commit()
    return inv


@pytest.fixture(scope='function')
def other_inventory(db_session):
    inv = Inventory(name="Second Branch", entity_type="branch")
    db_session.add(inv)
    db_session.commit()
    return inv


@pytest.fixture(scope='function')
def customer(db_session):
    c = Client(name="Layla Haddad", phone="0790000000", national_id="9001")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def make_cloth(db_session, inventory):
    """Factory: make_cloth("DR-1", status="ready_for_rent", inventory_id=None)."""
    counter = {"n": 0}

    def _make(code=None, status="ready_for_rent", inventory_id=None):
        counter["n"] += 1
        cloth = Cloth(
            code=code or f"CL-{counter['n']:03d}",
            name=f"Garment {counter['n']}",
            status=status,
            inventory_id=inventory_id or inventory.id,
        )
        db_session.add(cloth)
        db_session.commit()
        return cloth

    return _make


@pytest.fixture(scope='function')
def dress(make_cloth):
    return make_cloth("DR-001")


@pytest.fixture(scope='function')
def suit(make_cloth):
    return make_cloth("SU-001")


def rent_item(cloth, delivery_date=D, days=3, price_cents=10000, **extra):
    item = {
        "cloth_id": cloth.id,
        "type": "rent",
        "price_cents": price_cents,
        "delivery_date": delivery_date.isoformat(),
        "days_of_rent": days,
    }
    item.update(extra)
    return item


def buy_item(cloth, price_cents=50000, **extra):
    item = {"cloth_id": cloth.id, "type": "buy", "price_cents": price_cents}
    item.update(extra)
    return item
