# Overview: Ledger Store Adapter; document collections with read/write/subscribe primitives.

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LedgerDocument
from .concurrency import lock_for_update, run_with_retry
from .derivation import parse_numeric_value, round_quantity
from ..time_utils import to_utc_z, utcnow
"""
Ledger Store Invariants (authoritative)

- Collections are independent; there is no cross-collection transaction.
- list_all() is a full snapshot, newest write first (createdAt descending).
- Document ids are generated by the store; an "id" inside a payload is ignored.
- Subscribers receive full snapshots, never diffs: one on subscribe, then
  one after every committed write to that collection.
- A snapshot read failure terminates every stream on that collection and is
  reported through on_error. Resubscribing is the caller's decision.
- unsubscribe() is synchronous and idempotent; no callback fires after it returns.
- increment() / insert_unique() are the only atomic primitives. They are
  keyed by (collection, natural_key).
- A document stored without a natural key is adopted by increment() /
  insert_unique() when its key field (NATURAL_KEY_FIELDS) matches.
"""


COLLECTION_INVENTORY = "inventory"
COLLECTION_ORDERS = "orders"
COLLECTION_PAYMENTS = "payments"
COLLECTION_CUSTOMERS = "customers"

COLLECTIONS = (
    COLLECTION_INVENTORY,
    COLLECTION_ORDERS,
    COLLECTION_PAYMENTS,
    COLLECTION_CUSTOMERS,
)

# Document field that carries the natural key, per keyed collection
NATURAL_KEY_FIELDS = {
    COLLECTION_INVENTORY: "date",
    COLLECTION_PAYMENTS: "orderId",
}

# Sentinel for update(): leave the natural key unchanged
KEEP_KEY = object()

OnChange = Callable[[list], None]
OnError = Callable[[Exception], None]


class LedgerStoreError(Exception):
    """Raised for ledger store operation errors."""
    pass


class UnknownCollection(LedgerStoreError):
    pass


class DocumentNotFound(LedgerStoreError):
    pass


class DuplicateKey(LedgerStoreError):
    """A document with the same natural key already exists in the collection."""
    pass


@dataclass
class _Listener:
    on_change: OnChange
    on_error: Optional[OnError]


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to release the listener."""

    def __init__(self, store: "LedgerStore", collection: str, listener_id: int):
        self._store = store
        self.collection = collection
        self._listener_id = listener_id

    @property
    def active(self) -> bool:
        return self._store._has_listener(self.collection, self._listener_id)

    def unsubscribe(self) -> None:
        self._store._remove_listener(self.collection, self._listener_id)

    def __repr__(self) -> str:
        return f"<Subscription collection={self.collection!r} active={self.active}>"


class LedgerStore:
    """
    Contract consumed by the propagator and the projection cache.

    Subclasses implement storage (list_all, get, find_by_key, insert, update,
    delete, increment, insert_unique). Subscription bookkeeping and snapshot
    fan-out live here.
    """

    def __init__(self):
        self._listeners: dict[str, dict[int, _Listener]] = {name: {} for name in COLLECTIONS}
        self._listener_ids = itertools.count(1)
        self._lock = threading.RLock()

    # -- storage primitives -------------------------------------------------

    def list_all(self, collection: str) -> list[dict]:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    def find_by_key(self, collection: str, key: str) -> Optional[dict]:
        raise NotImplementedError

    def insert(self, collection: str, doc: Mapping, *, key: Optional[str] = None) -> str:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, partial: Mapping, *, key: Any = KEEP_KEY) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def increment(
        self,
        collection: str,
        key: str,
        deltas: Mapping[str, float],
        defaults: Optional[Mapping] = None,
    ) -> str:
        raise NotImplementedError

    def insert_unique(self, collection: str, key: str, doc: Mapping) -> tuple[str, bool]:
        raise NotImplementedError

    # -- subscriptions ------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        on_change: OnChange,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        """
        Stream full snapshots of a collection.

        The current snapshot is delivered before this returns.
        """
        self._check_collection(collection)
        listener_id = next(self._listener_ids)
        with self._lock:
            self._listeners[collection][listener_id] = _Listener(on_change, on_error)
        subscription = Subscription(self, collection, listener_id)
        self._deliver(collection, only=listener_id)
        return subscription

    def publish(self, collection: str) -> None:
        """Deliver the current snapshot of a collection to every subscriber."""
        self._check_collection(collection)
        self._deliver(collection)

    def listener_count(self, collection: str) -> int:
        with self._lock:
            return len(self._listeners.get(collection, {}))

    def _deliver(self, collection: str, only: Optional[int] = None) -> None:
        with self._lock:
            targets = [
                (listener_id, listener)
                for listener_id, listener in self._listeners[collection].items()
                if only is None or listener_id == only
            ]
        if not targets:
            return

        try:
            snapshot = self.list_all(collection)
        except Exception as exc:
            self._fail_stream(collection, targets, exc)
            return

        for listener_id, listener in targets:
            # Skip listeners removed while an earlier callback ran
            if not self._has_listener(collection, listener_id):
                continue
            try:
                listener.on_change(copy.deepcopy(snapshot))
            except Exception:
                current_app.logger.exception(
                    "Subscriber on %s raised while handling a snapshot", collection
                )

    def _fail_stream(self, collection: str, targets: list, exc: Exception) -> None:
        current_app.logger.error("Snapshot stream on %s failed: %s", collection, exc)
        with self._lock:
            for listener_id, _ in targets:
                self._listeners[collection].pop(listener_id, None)
        for _, listener in targets:
            if listener.on_error is None:
                continue
            try:
                listener.on_error(exc)
            except Exception:
                current_app.logger.exception("Error handler on %s raised", collection)

    def _has_listener(self, collection: str, listener_id: int) -> bool:
        with self._lock:
            return listener_id in self._listeners.get(collection, {})

    def _remove_listener(self, collection: str, listener_id: int) -> None:
        with self._lock:
            self._listeners.get(collection, {}).pop(listener_id, None)

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in COLLECTIONS:
            raise UnknownCollection(f"Unknown collection: {collection}. Must be one of {list(COLLECTIONS)}")


class SqlLedgerStore(LedgerStore):
    """
    Ledger store backed by the ledger_documents table (Flask-SQLAlchemy).

    Every write commits on its own; snapshots are published after commit.
    Requires an application context.
    """

    def list_all(self, collection: str) -> list[dict]:
        self._check_collection(collection)
        rows = (
            db.session.query(LedgerDocument)
            .filter_by(collection=collection)
            .order_by(LedgerDocument.created_at.desc(), LedgerDocument.id.desc())
            .all()
        )
        return [row.to_dict() for row in rows]

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        self._check_collection(collection)
        row = db.session.query(LedgerDocument).filter_by(collection=collection, id=doc_id).first()
        return row.to_dict() if row else None

    def find_by_key(self, collection: str, key: str) -> Optional[dict]:
        self._check_collection(collection)
        row = db.session.query(LedgerDocument).filter_by(collection=collection, natural_key=key).first()
        return row.to_dict() if row else None

    def insert(self, collection: str, doc: Mapping, *, key: Optional[str] = None) -> str:
        self._check_collection(collection)
        data = _payload(doc)
        data.setdefault("createdAt", to_utc_z(utcnow()))

        def _op():
            row = LedgerDocument(id=uuid.uuid4().hex, collection=collection, natural_key=key, data=data)
            db.session.add(row)
            db.session.commit()
            return row.id

        try:
            doc_id = run_with_retry(_op)
        except IntegrityError:
            db.session.rollback()
            raise DuplicateKey(f"{collection} already has a document keyed {key!r}")

        self.publish(collection)
        return doc_id

    def update(self, collection: str, doc_id: str, partial: Mapping, *, key: Any = KEEP_KEY) -> None:
        self._check_collection(collection)
        changes = _payload(partial)

        def _op():
            row = self._row(collection, doc_id)
            data = dict(row.data or {})
            data.update(changes)
            row.data = data
            if key is not KEEP_KEY:
                row.natural_key = key
            db.session.commit()

        try:
            run_with_retry(_op)
        except IntegrityError:
            db.session.rollback()
            raise DuplicateKey(f"{collection} already has a document keyed {key!r}")
        self.publish(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        self._check_collection(collection)

        def _op():
            row = self._row(collection, doc_id)
            db.session.delete(row)
            db.session.commit()

        run_with_retry(_op)
        self.publish(collection)

    def increment(
        self,
        collection: str,
        key: str,
        deltas: Mapping[str, float],
        defaults: Optional[Mapping] = None,
    ) -> str:
        """
        Atomically add deltas to numeric fields of the document keyed `key`.

        Adopts an unkeyed document whose key field matches, else creates the
        document from `defaults`. A concurrent writer surfaces as
        StaleDataError / IntegrityError and the whole read-modify-write is
        retried on fresh data.
        """
        self._check_collection(collection)

        def _op():
            query = db.session.query(LedgerDocument).filter_by(collection=collection, natural_key=key)
            row = lock_for_update(query).first() or self._adopt_unkeyed(collection, key)
            if row is None:
                data = _payload(defaults or {})
                data.setdefault("createdAt", to_utc_z(utcnow()))
                row = LedgerDocument(id=uuid.uuid4().hex, collection=collection, natural_key=key, data=data)
                db.session.add(row)
            data = dict(row.data or {})
            for name, delta in deltas.items():
                data[name] = round_quantity(parse_numeric_value(data.get(name)) + delta)
            row.data = data
            db.session.commit()
            return row.id

        doc_id = run_with_retry(_op, attempts=5, retry_on=(IntegrityError,))
        self.publish(collection)
        return doc_id

    def insert_unique(self, collection: str, key: str, doc: Mapping) -> tuple[str, bool]:
        """Insert unless a document keyed `key` exists. Returns (id, created)."""
        self._check_collection(collection)
        existing = self.find_by_key(collection, key)
        if existing:
            return existing["id"], False

        def _adopt():
            row = self._adopt_unkeyed(collection, key)
            if row is None:
                return None
            db.session.commit()
            return row.id

        try:
            adopted = run_with_retry(_adopt)
        except IntegrityError:
            db.session.rollback()
            adopted = None
        if adopted:
            return adopted, False

        try:
            return self.insert(collection, doc, key=key), True
        except DuplicateKey:
            # Lost the race to a concurrent insert of the same key
            winner = self.find_by_key(collection, key)
            if winner is None:
                raise
            return winner["id"], False

    def _adopt_unkeyed(self, collection: str, key: str) -> Optional[LedgerDocument]:
        """
        Give the oldest unkeyed document whose key field equals `key` the
        natural key. Caller commits.

        Documents written by imports or raw inserts carry no natural key and
        would otherwise be invisible to the keyed primitives.
        """
        key_field = NATURAL_KEY_FIELDS.get(collection)
        if key_field is None:
            return None
        rows = (
            db.session.query(LedgerDocument)
            .filter_by(collection=collection, natural_key=None)
            .order_by(LedgerDocument.created_at.asc(), LedgerDocument.id.asc())
            .all()
        )
        for row in rows:
            if str((row.data or {}).get(key_field) or "").strip() == key:
                row.natural_key = key
                return row
        return None

    def _row(self, collection: str, doc_id: str) -> LedgerDocument:
        row = db.session.query(LedgerDocument).filter_by(collection=collection, id=doc_id).first()
        if row is None:
            raise DocumentNotFound(f"{collection} document {doc_id} not found")
        return row


def _payload(doc: Any) -> dict:
    if not isinstance(doc, Mapping):
        raise LedgerStoreError("Document payload must be a JSON object")
    data = copy.deepcopy(dict(doc))
    data.pop("id", None)
    return data
