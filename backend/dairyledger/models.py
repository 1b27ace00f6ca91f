# backend/dairyledger/models.py
from __future__ import annotations
from .extensions import db
from .time_utils import utcnow, to_utc_z


class LedgerDocument(db.Model):
    """
    One document of a logical collection (inventory, orders, payments, customers).

    Documents are schemaless JSON so upstream drift never blocks a write;
    shape is recovered on read by the order normalizer.

    natural_key is optional and unique per collection:
    - inventory: the calendar-day key ("YYYY-MM-DD")
    - payments: the orderId the payment settles
    It is what makes the keyed increment and payment insert atomic.
    """
    __tablename__ = "ledger_documents"
    __table_args__ = (
        db.UniqueConstraint("collection", "natural_key", name="uq_ledger_documents_collection_key"),
        db.Index("ix_ledger_documents_collection_created", "collection", "created_at"),
    )

    id = db.Column(db.String(32), primary_key=True)
    collection = db.Column(db.String(32), nullable=False, index=True)
    natural_key = db.Column(db.String(128), nullable=True)
    data = db.Column(db.JSON, nullable=False, default=dict)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    # Python-side defaults keep sub-second ordering on SQLite
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<LedgerDocument id={self.id} collection={self.collection!r} key={self.natural_key!r}>"

    def to_dict(self) -> dict:
        doc = dict(self.data or {})
        doc["id"] = self.id
        return doc


class OutboxEvent(db.Model):
    """
    Side effect of an order write, recorded before it is dispatched.

    Lifecycle: PENDING -> DONE | FAILED. FAILED events are replayed by
    outbox_service.retry_failed(). Rows are never deleted automatically.
    """
    __tablename__ = "outbox_events"
    __table_args__ = (
        db.Index("ix_outbox_events_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    order_id = db.Column(db.String(32), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent id={self.id} type={self.event_type} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "order_id": self.order_id,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
        }
