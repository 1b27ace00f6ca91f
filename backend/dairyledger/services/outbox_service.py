# Overview: Service-layer operations for the side-effect outbox; records, dispatches and replays order side effects.

from __future__ import annotations

from typing import Callable, Optional

from flask import current_app

from ..extensions import db
from ..models import OutboxEvent
from ..time_utils import utcnow
"""
Outbox Invariants (authoritative)

- An order side effect (inventory adjustment, payment creation) is recorded
  here AFTER its order write succeeded and BEFORE it is attempted.
- Status moves PENDING -> DONE or PENDING -> FAILED; FAILED -> DONE on replay.
- The outbox never blocks or fails the order write: recording and dispatch
  errors are logged, not raised.
- Handlers must be safe to replay (payment creation is keyed by orderId;
  inventory adjustments are NOT idempotent, so only FAILED events replay).
"""


EVENT_INVENTORY_ADJUST = "INVENTORY_ADJUST"
EVENT_PAYMENT_CREATE = "PAYMENT_CREATE"

STATUS_PENDING = "PENDING"
STATUS_DONE = "DONE"
STATUS_FAILED = "FAILED"


def record_event(event_type: str, payload: dict, *, order_id: Optional[str] = None) -> Optional[OutboxEvent]:
    """
    Append a PENDING outbox event. Returns None if the outbox itself is unavailable.
    """
    try:
        event = OutboxEvent(event_type=event_type, order_id=order_id, payload=payload, status=STATUS_PENDING)
        db.session.add(event)
        db.session.commit()
        return event
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record %s outbox event for order %s", event_type, order_id)
        return None


def mark_done(event: Optional[OutboxEvent]) -> None:
    _finish(event, STATUS_DONE, None)


def mark_failed(event: Optional[OutboxEvent], error: Exception) -> None:
    _finish(event, STATUS_FAILED, f"{type(error).__name__}: {error}")


def _finish(event: Optional[OutboxEvent], status: str, error: Optional[str]) -> None:
    if event is None:
        return
    try:
        event.status = status
        event.attempts = (event.attempts or 0) + 1
        event.last_error = error
        event.processed_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark outbox event %s as %s", event.id, status)


def list_events(status: Optional[str] = None, limit: int = 100) -> list[OutboxEvent]:
    query = db.session.query(OutboxEvent)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(OutboxEvent.created_at.desc(), OutboxEvent.id.desc()).limit(limit).all()


def retry_failed(handlers: dict[str, Callable[[dict], None]], limit: int = 100) -> dict:
    """
    Replay FAILED events through the handler registered for their type.

    Returns counts: {"retried": n, "succeeded": n, "failed": n}.
    """
    events = (
        db.session.query(OutboxEvent)
        .filter_by(status=STATUS_FAILED)
        .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        .limit(limit)
        .all()
    )
    result = {"retried": 0, "succeeded": 0, "failed": 0}
    for event in events:
        handler = handlers.get(event.event_type)
        if handler is None:
            continue
        result["retried"] += 1
        try:
            handler(dict(event.payload or {}))
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Replay of outbox event %s failed", event.id)
            mark_failed(event, exc)
            result["failed"] += 1
        else:
            mark_done(event)
            result["succeeded"] += 1
    return result
