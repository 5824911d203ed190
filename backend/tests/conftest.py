"""
Pytest fixtures for the stock ledger tests.

Provides the in-memory database, a test client, two locations (A and B)
and a phone model to book units against.
"""

from datetime import date

import pytest

from hpstock import create_app
from hpstock.config import TestConfig
from hpstock.extensions import db
from hpstock.models import Brand, Location, PhoneModel
from hpstock.services import stock_service

# Business "today" used by service-level tests; every booked date is on or before it.
TODAY = date(2024, 3, 1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def today():
    return TODAY


@pytest.fixture(scope='function')
def loc_a(db_session):
    location = Location(name="A", description="Main shop")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def loc_b(db_session):
    location = Location(name="B", description="Second shop")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def brand(db_session):
    brand = Brand(name="Samsung")
    db_session.add(brand)
    db_session.commit()
    return brand


@pytest.fixture(scope='function')
def phone_model(db_session, brand):
    """Samsung A15 128, SRP Rp 1,500,000."""
    phone_model = PhoneModel(brand_id=brand.id, model="A15", storage_capacity="128", srp=1_500_000)
    db_session.add(phone_model)
    db_session.commit()
    return phone_model


@pytest.fixture(scope='function')
def other_model(db_session):
    brand = Brand(name="Xiaomi")
    db_session.add(brand)
    db_session.flush()
    phone_model = PhoneModel(brand_id=brand.id, model="Redmi 13", storage_capacity="256", srp=2_000_000)
    db_session.add(phone_model)
    db_session.commit()
    return phone_model


@pytest.fixture(scope='function')
def record(db_session):
    """Book one event through the full write path with TODAY as business date."""
    def _record(kind, imei, location, model, day, qty=1, metadata=None, notes=None):
        return stock_service.record_event(
            kind=kind,
            imei=imei,
            location_id=location.id,
            phone_model_id=model.id,
            occurred_on=day,
            qty=qty,
            metadata=metadata,
            notes=notes,
            today=TODAY,
        )
    return _record
