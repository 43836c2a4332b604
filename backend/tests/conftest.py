"""
Pytest fixtures for gas ledger backend tests.

Provides test database setup, domain fixtures, and test client.
"""

import pytest
from gasledger import create_app
from gasledger.extensions import db
from gasledger.services import customer_service, products_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'RECONCILE_ON_STARTUP': False,
    'SYNC_AUTO_PUSH': False,
    'SYNC_REMOTE_URL': None,
    'LEDGER_REQUIRE_CUSTOMER': True,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
        app.config.update({
            'LEDGER_REQUIRE_CUSTOMER': True,
            'SYNC_REMOTE_URL': None,
            'SYNC_AUTO_PUSH': False,
        })


@pytest.fixture(scope='function')
def customer(db_session):
    """A customer with zero balances."""
    return customer_service.create_customer(patch={
        "name": "Al Noor Hospital",
        "customer_type": "Hospital",
        "city": "Khartoum",
        "phone": "0912345678",
    })


@pytest.fixture(scope='function')
def other_customer(db_session):
    return customer_service.create_customer(patch={"name": "Omdurman Clinic", "customer_type": "Clinic"})


@pytest.fixture(scope='function')
def product_12kg(db_session):
    """Create the 12kg cylinder product."""
    return products_service.create_product(patch={"name": "12kg", "size": "12kg"})


@pytest.fixture(scope='function')
def product_50kg(db_session):
    return products_service.create_product(patch={"name": "50kg", "size": "50kg"})

