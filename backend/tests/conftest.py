"""
Pytest fixtures for dairyledger backend tests.

Provides an app per test (in-memory SQLite), the ledger store, a
propagator factory pinned to a fixed clock, and the Flask test client.
"""

from datetime import datetime

import pytest

from dairyledger import create_app
from dairyledger.extensions import db
from dairyledger.services.propagation_service import ConsistencyPropagator


# Fixed wall clock for propagator tests: 2026-10-18 09:30 UTC (morning)
NOW = datetime(2026, 10, 18, 9, 30, 0)
TODAY = "2026-10-18"


@pytest.fixture(scope='function')
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
        app.extensions["projection_cache"].close()
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def store(app):
    return app.extensions["ledger_store"]


@pytest.fixture(scope='function')
def make_propagator(store):
    """Build a propagator on the app store; defaults to atomic mode and the fixed clock."""
    def _make(**kwargs):
        kwargs.setdefault("clock", lambda: NOW)
        return ConsistencyPropagator(kwargs.pop("store", store), **kwargs)
    return _make


@pytest.fixture(scope='function')
def propagator(make_propagator):
    return make_propagator()


def inventory_for(store, day: str):
    """All inventory documents for one day (helper for assertions)."""
    return [r for r in store.list_all("inventory") if r.get("date") == day]


def payments_for(store, order_id: str):
    return [p for p in store.list_all("payments") if p.get("orderId") == order_id]
