"""
Pytest fixtures for parcelops backend tests.

Provides the application on an in-memory database, a per-test table wipe,
the test client and small factories for products, batches and orders.
"""

import itertools
from datetime import datetime, timedelta

import pytest
from parcelops import create_app
from parcelops.extensions import db
from parcelops.models import InventoryBatch
from parcelops.services import products_service, batch_service, order_service
from parcelops.services.status_sweep import StatusSweeper


# Fixed receive timestamps keep FIFO ordering deterministic
T0 = datetime(2026, 1, 1, 9, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SWEEP_REQUEST_DELAY_SECONDS': 0,
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
def sweeper(app):
    """Fresh status sweeper per test; the app's default is restored afterwards."""
    original = app.extensions["status_sweeper"]
    fresh = StatusSweeper()
    app.extensions["status_sweeper"] = fresh
    yield fresh
    app.extensions["status_sweeper"] = original


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(name, default_cogs_cents=0, current_stock=0):
        return products_service.create_product(
            name=name,
            default_cogs_cents=default_cogs_cents,
            current_stock=current_stock,
        )
    return _make


@pytest.fixture(scope='function')
def receive(db_session):
    """Receive a batch `days` after T0."""
    def _receive(product, quantity, unit_cost_cents, days=0):
        return batch_service.add_batch(
            product_id=product.id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            received_at=T0 + timedelta(days=days),
        )
    return _receive


@pytest.fixture(scope='function')
def make_order(db_session):
    counter = itertools.count(1)

    def _make(description=None, allocate=True, **kwargs):
        tracking_number = kwargs.pop("tracking_number", f"TRK{next(counter):05d}")
        order, _ = order_service.create_order(
            tracking_number=tracking_number,
            product_description=description,
            allocate=allocate,
            **kwargs,
        )
        return order
    return _make


def remove_batch(batch_id):
    """Simulate a batch row that vanished underneath the ledger."""
    db.session.query(InventoryBatch).filter_by(id=batch_id).delete()
    db.session.commit()


def remaining(batch_id):
    return db.session.get(InventoryBatch, batch_id).remaining_quantity
