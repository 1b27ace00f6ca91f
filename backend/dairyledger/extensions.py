# Overview: Flask extension instances for database and migrations, plus accessors for the ledger runtime.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def get_store():
    """The application's ledger store (one per app)."""
    return current_app.extensions["ledger_store"]


def get_cache():
    """The application's live projection cache, started on first use."""
    cache = current_app.extensions["projection_cache"]
    cache.start()
    return cache


def get_propagator():
    """A consistency propagator configured from the current app config."""
    from .services.propagation_service import ConsistencyPropagator

    return ConsistencyPropagator.from_config(get_store(), current_app.config)
