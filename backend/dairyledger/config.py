# backend/dairyledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/dairyledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///dairyledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Side-effect propagation
    # PROPAGATION_ATOMIC=false falls back to plain read-modify-write on the store
    PROPAGATION_ATOMIC = _env_bool("PROPAGATION_ATOMIC", True)
    # "today" adjusts the wall-clock day, "order_date" adjusts the order's own day
    INVENTORY_DATE_POLICY = os.environ.get("INVENTORY_DATE_POLICY", "today")
    OUTBOX_ENABLED = _env_bool("OUTBOX_ENABLED", True)

    # Prices stamped on inventory records created implicitly by an order
    DEFAULT_BUYING_PRICE = float(os.environ.get("DEFAULT_BUYING_PRICE", "35"))
    DEFAULT_SELLING_PRICE = float(os.environ.get("DEFAULT_SELLING_PRICE", "60"))

    # Input limits (liters / currency per liter / days)
    LOW_STOCK_THRESHOLD = float(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
    MAX_ORDER_QUANTITY = float(os.environ.get("MAX_ORDER_QUANTITY", "1000"))
    MAX_PRICE_PER_LITER = float(os.environ.get("MAX_PRICE_PER_LITER", "1000"))
    MAX_DELIVERY_DAYS = int(os.environ.get("MAX_DELIVERY_DAYS", "7"))

    # Projection cache reconnect backoff
    SUBSCRIPTION_RETRY_BASE_SECONDS = float(os.environ.get("SUBSCRIPTION_RETRY_BASE_SECONDS", "1"))
    SUBSCRIPTION_RETRY_MAX_SECONDS = float(os.environ.get("SUBSCRIPTION_RETRY_MAX_SECONDS", "60"))
