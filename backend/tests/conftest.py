"""
Pytest fixtures for OMS backend tests.

Provides an in-memory application, a pinned business clock, and catalog /
stock factories.
"""

from datetime import date, timedelta

import pytest
from oms import create_app
from oms.extensions import db
from oms.models import Customer, CustomerPrice, Product
from oms.services import ledger_service
from oms.time_utils import FixedClock


TODAY = date(2026, 3, 10)
OPENING_STOCK = 100
# earlier than any date the tests touch, so every day inherits the seeded stock
SEED_DATE = TODAY - timedelta(days=30)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SCHEDULER_ENABLED': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def clock(app):
    """Business clock pinned to TODAY for every test."""
    fixed = FixedClock(TODAY, app.config["BUSINESS_UTC_OFFSET_HOURS"])
    previous = app.extensions["business_clock"]
    app.extensions["business_clock"] = fixed
    yield fixed
    app.extensions["business_clock"] = previous


@pytest.fixture(scope='function')
def db_session(app, clock):
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
def customer(db_session):
    """Non-taxed customer."""
    c = Customer(customer_code="CUST-001", name="Toko Sumber Rejeki", address="Jl. Merdeka 1", tax_type="NON_PPN")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def taxed_customer(db_session):
    """Customer registered for PPN (11%)."""
    c = Customer(customer_code="CUST-PPN", name="PT Maju Jaya", address="Jl. Sudirman 9", tax_type="PPN")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def product_a(db_session):
    p = Product(code="PRD-A", name="Roti Tawar", unit="PCS")
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def product_b(db_session):
    p = Product(code="PRD-B", name="Roti Manis", unit="PCS")
    db_session.add(p)
    db_session.commit()
    return p


def add_price(session, customer, product, unit_price_cents):
    price = CustomerPrice(customer_id=customer.id, product_id=product.id, unit_price_cents=unit_price_cents)
    session.add(price)
    session.commit()
    return price


def seed_stock(session, product, quantity=OPENING_STOCK, business_date=None):
    ledger_service.record_incoming(
        product_id=product.id,
        quantity=quantity,
        business_date=business_date or SEED_DATE,
        note="Seed inventory",
    )
    session.commit()


@pytest.fixture(scope='function')
def catalog(db_session, customer, taxed_customer, product_a, product_b):
    """Both customers can buy A @ 1000 and B @ 500; both products hold OPENING_STOCK."""
    for c in (customer, taxed_customer):
        add_price(db_session, c, product_a, 1000)
        add_price(db_session, c, product_b, 500)
    seed_stock(db_session, product_a)
    seed_stock(db_session, product_b)
    return {"customer": customer, "taxed_customer": taxed_customer, "a": product_a, "b": product_b}


def closing_stock(product_id, business_date):
    snapshot = ledger_service.get_snapshot(product_id, business_date)
    return snapshot.closing_stock if snapshot else None
