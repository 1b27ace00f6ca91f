# Overview: Live Projection Cache; in-memory normalized collections fed by ledger store subscriptions.

from __future__ import annotations

import copy
import threading
import time
from typing import Any, Callable, Mapping, Optional

from flask import current_app

from .ledger_store import (
    COLLECTION_CUSTOMERS,
    COLLECTION_INVENTORY,
    COLLECTION_ORDERS,
    COLLECTION_PAYMENTS,
    LedgerStore,
    Subscription,
)
from .normalizer import index_profiles, normalize_orders
"""
Projection Cache Invariants (authoritative)

- State changes only inside subscription callbacks, under the cache lock.
- Readers always receive deep copies; no caller holds a reference into the cache.
- loading is True until inventory, orders and payments have each delivered
  one snapshot. Customer profiles never gate readiness.
- Orders are exposed normalized. Inventory and payments are exposed as stored.
- After a stream error the collection keeps its last state and is marked
  stale. A resubscribe is attempted on the next read once the backoff delay
  (base * 2^(failures-1), capped) has elapsed.
"""


TRACKED_COLLECTIONS = (COLLECTION_INVENTORY, COLLECTION_ORDERS, COLLECTION_PAYMENTS)


class _Stream:
    def __init__(self, collection: str):
        self.collection = collection
        self.subscription: Optional[Subscription] = None
        self.documents: list = []
        self.received = False
        self.stale = False
        self.failures = 0
        self.last_error: Optional[str] = None
        self.retry_at: Optional[float] = None


class LiveProjectionCache:
    """
    Continuously updated, read-only view of orders, inventory and payments.

    Usage:
        cache = LiveProjectionCache(store)
        cache.start()
        cache.orders()    # normalized orders, newest first
        cache.close()
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        track_profiles: bool = True,
        retry_base_seconds: float = 1.0,
        retry_max_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self._clock = clock
        self._lock = threading.RLock()
        names = TRACKED_COLLECTIONS + ((COLLECTION_CUSTOMERS,) if track_profiles else ())
        self._streams = {name: _Stream(name) for name in names}
        self._orders: list[dict] = []
        self._started = False

    @classmethod
    def from_config(cls, store: LedgerStore, config: Mapping) -> "LiveProjectionCache":
        return cls(
            store,
            retry_base_seconds=float(config.get("SUBSCRIPTION_RETRY_BASE_SECONDS", 1)),
            retry_max_seconds=float(config.get("SUBSCRIPTION_RETRY_MAX_SECONDS", 60)),
        )

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Subscribe to every tracked collection. Safe to call repeatedly."""
        with self._lock:
            if self._started:
                return
            self._started = True
        for stream in self._streams.values():
            self._subscribe(stream)

    def close(self) -> None:
        """Release every subscription; the cache keeps its last state."""
        with self._lock:
            subscriptions = [s.subscription for s in self._streams.values() if s.subscription]
            for stream in self._streams.values():
                stream.subscription = None
                stream.retry_at = None
            self._started = False
        for subscription in subscriptions:
            subscription.unsubscribe()

    # -- reads --------------------------------------------------------------

    @property
    def loading(self) -> bool:
        with self._lock:
            return not all(self._streams[name].received for name in TRACKED_COLLECTIONS)

    def orders(self) -> list[dict]:
        self._reconnect_due()
        with self._lock:
            return copy.deepcopy(self._orders)

    def inventory(self) -> list[dict]:
        self._reconnect_due()
        with self._lock:
            return copy.deepcopy(self._streams[COLLECTION_INVENTORY].documents)

    def payments(self) -> list[dict]:
        self._reconnect_due()
        with self._lock:
            return copy.deepcopy(self._streams[COLLECTION_PAYMENTS].documents)

    def get_order(self, order_id: str) -> Optional[dict]:
        self._reconnect_due()
        with self._lock:
            for order in self._orders:
                if order.get("id") == order_id:
                    return copy.deepcopy(order)
        return None

    def snapshot(self) -> dict:
        """All three collections plus the loading flag, read under one lock."""
        self._reconnect_due()
        with self._lock:
            return {
                "loading": self.loading,
                "orders": copy.deepcopy(self._orders),
                "inventory": copy.deepcopy(self._streams[COLLECTION_INVENTORY].documents),
                "payments": copy.deepcopy(self._streams[COLLECTION_PAYMENTS].documents),
            }

    def status(self) -> dict:
        now = self._clock()
        with self._lock:
            result = {}
            for name, stream in self._streams.items():
                retry_in = None
                if stream.stale and stream.retry_at is not None:
                    retry_in = round(max(stream.retry_at - now, 0.0), 3)
                result[name] = {
                    "ready": stream.received,
                    "stale": stream.stale,
                    "subscribed": stream.subscription is not None,
                    "failures": stream.failures,
                    "lastError": stream.last_error,
                    "retryInSeconds": retry_in,
                    "count": len(self._orders) if name == COLLECTION_ORDERS else len(stream.documents),
                }
            return {"loading": self.loading, "collections": result}

    # -- subscription callbacks ---------------------------------------------

    def _on_change(self, collection: str, documents: list) -> None:
        with self._lock:
            stream = self._streams[collection]
            stream.documents = documents
            stream.received = True
            stream.stale = False
            stream.failures = 0
            stream.last_error = None
            stream.retry_at = None
            if collection in (COLLECTION_ORDERS, COLLECTION_CUSTOMERS):
                self._renormalize()

    def _on_error(self, collection: str, exc: Exception) -> None:
        with self._lock:
            stream = self._streams[collection]
            stream.subscription = None
            stream.stale = True
            stream.failures += 1
            stream.last_error = f"{type(exc).__name__}: {exc}"
            delay = self._backoff(stream.failures)
            stream.retry_at = self._clock() + delay
            failures = stream.failures
        current_app.logger.error(
            "Projection of %s is stale after stream failure #%d; resubscribing in %.1fs",
            collection,
            failures,
            delay,
        )

    def _renormalize(self) -> None:
        profiles: dict[str, Any] = {}
        if COLLECTION_CUSTOMERS in self._streams:
            profiles = index_profiles(self._streams[COLLECTION_CUSTOMERS].documents)
        self._orders = normalize_orders(self._streams[COLLECTION_ORDERS].documents, profiles)

    # -- reconnect ----------------------------------------------------------

    def _backoff(self, failures: int) -> float:
        return min(self.retry_base_seconds * (2 ** max(failures - 1, 0)), self.retry_max_seconds)

    def _reconnect_due(self) -> None:
        now = self._clock()
        with self._lock:
            if not self._started:
                return
            due = [
                stream
                for stream in self._streams.values()
                if stream.stale and stream.subscription is None and stream.retry_at is not None and stream.retry_at <= now
            ]
        for stream in due:
            current_app.logger.info("Resubscribing to %s after %d failure(s)", stream.collection, stream.failures)
            self._subscribe(stream)

    def _subscribe(self, stream: _Stream) -> None:
        collection = stream.collection
        subscription = self.store.subscribe(
            collection,
            lambda documents: self._on_change(collection, documents),
            lambda exc: self._on_error(collection, exc),
        )
        with self._lock:
            # The initial snapshot may already have failed and been reported
            if subscription.active:
                stream.subscription = subscription
