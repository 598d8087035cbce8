"""
Pytest fixtures for stock ledger backend tests.

Provides test database setup, a product to sync against, and test client.
"""

from datetime import datetime

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Product


THEATER_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_RETRY_ATTEMPTS': 3,
        'STOCK_RETRY_BACKOFF_SECONDS': 0,
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
def product(db_session):
    """Popcorn in theater 1, no stock yet."""
    p = Product(theater_id=THEATER_ID, name="Popcorn Large", current_stock=0)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def low_alert_product(db_session):
    """Product with its own low-stock alert level."""
    p = Product(theater_id=THEATER_ID, name="Nachos", current_stock=0, low_stock_alert=20)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def now():
    """Fixed clock: 20 March 2024, midday."""
    return datetime(2024, 3, 20, 12, 0)
