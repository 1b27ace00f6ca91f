# Overview: Service-layer operations for orders, inventory and payments; propagates order side effects across collections.

"""
Consistency Propagator

WHY: Orders, inventory records and payments live in independent collections
with no multi-document transaction. Every order lifecycle change has side
effects in the other two collections that must follow it.

DESIGN PRINCIPLES:
- The order write is primary: its failure is raised to the caller.
- Side effects run after the order write succeeded. Their failures are
  logged and swallowed, never rolled back, never surfaced. The order counts
  as written even when its side effects fail.
- Side effects are recorded in the outbox first (when enabled), so a failed
  one stays inspectable and can be replayed.
- Inventory adjustments target today's record by default (see
  INVENTORY_DATE_POLICY). A negative stockRemaining is a backlog, not an error.
- At most one payment per non-empty orderId.

ATOMIC vs LEGACY MODE:
- atomic=True: inventory uses store.increment() keyed by day, payments use
  store.insert_unique() keyed by orderId. Concurrent writers cannot lose an
  update or duplicate a payment.
- atomic=False: plain read-modify-write through list_all/update/insert.
  Two concurrent orders on the same day can lose one adjustment, and two
  concurrent completions can create two payments.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from flask import current_app

from ..extensions import db
from . import outbox_service
from .derivation import parse_numeric_value, round_money, round_quantity
from .ledger_store import (
    COLLECTION_INVENTORY,
    COLLECTION_ORDERS,
    COLLECTION_PAYMENTS,
    DocumentNotFound,
    DuplicateKey,
    LedgerStore,
)
from .normalizer import (
    DEFAULT_CUSTOMER_NAME,
    PAYMENT_OFFLINE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    map_status,
    normalize_order,
)
from ..time_utils import clock_hhmm, day_key, parse_day, to_utc_z, utcnow
from ..validation import ConflictError


class OrderNotFound(DocumentNotFound):
    """Raised when updating or deleting an order that does not exist."""
    pass


DATE_POLICY_TODAY = "today"
DATE_POLICY_ORDER_DATE = "order_date"
VALID_DATE_POLICIES = (DATE_POLICY_TODAY, DATE_POLICY_ORDER_DATE)

PAYMENT_STATUS_COMPLETED = "completed"


class ConsistencyPropagator:
    """Entry point for every consumer mutation of orders, inventory and payments."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        atomic: bool = True,
        inventory_date_policy: str = DATE_POLICY_TODAY,
        outbox_enabled: bool = True,
        default_buying_price: float = 35.0,
        default_selling_price: float = 60.0,
        clock: Callable[[], Any] = utcnow,
    ):
        if inventory_date_policy not in VALID_DATE_POLICIES:
            raise ValueError(
                f"Invalid inventory date policy: {inventory_date_policy}. Must be one of {list(VALID_DATE_POLICIES)}"
            )
        self.store = store
        self.atomic = atomic
        self.inventory_date_policy = inventory_date_policy
        self.outbox_enabled = outbox_enabled
        self.default_buying_price = default_buying_price
        self.default_selling_price = default_selling_price
        self._clock = clock

    @classmethod
    def from_config(cls, store: LedgerStore, config: Mapping) -> "ConsistencyPropagator":
        return cls(
            store,
            atomic=config.get("PROPAGATION_ATOMIC", True),
            inventory_date_policy=config.get("INVENTORY_DATE_POLICY", DATE_POLICY_TODAY),
            outbox_enabled=config.get("OUTBOX_ENABLED", True),
            default_buying_price=config.get("DEFAULT_BUYING_PRICE", 35.0),
            default_selling_price=config.get("DEFAULT_SELLING_PRICE", 60.0),
        )

    # =========================================================================
    # ORDERS
    # =========================================================================

    def add_order(self, order: Mapping) -> str:
        """
        Create an order, then deplete inventory and (if completed) record the payment.

        Returns:
            The new order id

        Raises:
            LedgerStoreError / SQLAlchemyError: if the order write fails
        """
        now = self._clock()
        stamp = to_utc_z(now)
        hhmm = clock_hhmm(now)

        data = dict(order)
        data.pop("id", None)
        data["createdAt"] = stamp
        data["updatedAt"] = stamp
        data["orderTime"] = hhmm
        # Canonical status, so a completed transaction stamps completedTime too
        status = normalize_order(data)["status"]
        if status == STATUS_COMPLETED:
            data["completedTime"] = hhmm
        elif status == STATUS_CANCELLED:
            data["cancelledTime"] = hhmm

        order_id = self.store.insert(COLLECTION_ORDERS, data)

        canonical = normalize_order({**data, "id": order_id})
        self._adjust_inventory_for_order(order_id, _stocked_quantity(data, canonical), canonical["orderDate"])
        if canonical["status"] == STATUS_COMPLETED:
            self._create_payment_for_order(order_id, canonical)
        return order_id

    def update_order(self, order_id: str, updates: Mapping) -> None:
        """
        Apply a partial update to an order.

        Side effects:
        - status moving into completed -> payment (idempotent)
        - quantity change -> inventory adjusted by the difference from the
          stored quantity, on the original order's day
        """
        current_raw = self.store.get(COLLECTION_ORDERS, order_id)
        if current_raw is None:
            raise OrderNotFound(f"Order {order_id} not found")
        current = normalize_order(current_raw)

        now = self._clock()
        hhmm = clock_hhmm(now)

        data = dict(updates)
        data.pop("id", None)
        data["updatedAt"] = to_utc_z(now)

        becomes_completed = False
        if "status" in updates:
            new_status = map_status(updates.get("status"))
            if new_status == STATUS_COMPLETED and current["status"] != STATUS_COMPLETED:
                becomes_completed = True
                data["completedTime"] = hhmm
            elif new_status == STATUS_CANCELLED and current["status"] != STATUS_CANCELLED:
                data["cancelledTime"] = hhmm

        self.store.update(COLLECTION_ORDERS, order_id, data)

        if becomes_completed:
            merged = {**current, **data, "id": order_id}
            self._create_payment_for_order(order_id, merged)

        if "quantity" in updates:
            delta = parse_numeric_value(updates.get("quantity")) - _stocked_quantity(current_raw, current)
            if delta:
                self._adjust_inventory_for_order(order_id, delta, current["orderDate"])

    def delete_order(self, order_id: str) -> None:
        """Delete an order and restock its quantity on its original day."""
        current_raw = self.store.get(COLLECTION_ORDERS, order_id)
        if current_raw is None:
            raise OrderNotFound(f"Order {order_id} not found")

        self.store.delete(COLLECTION_ORDERS, order_id)

        current = normalize_order(current_raw)
        quantity = _stocked_quantity(current_raw, current)
        if quantity:
            self._adjust_inventory_for_order(order_id, -quantity, current["orderDate"])

    # =========================================================================
    # INVENTORY AND PAYMENTS (direct consumer writes, no side effects)
    # =========================================================================

    def add_inventory_record(self, record: Mapping) -> str:
        """One record per calendar day; a second record for the same date is a ConflictError."""
        data = dict(record)
        data["createdAt"] = to_utc_z(self._clock())
        day = data.get("date") or None
        try:
            return self.store.insert(COLLECTION_INVENTORY, data, key=day)
        except DuplicateKey:
            raise ConflictError(f"An inventory record for {day} already exists")

    def update_inventory_record(self, record_id: str, updates: Mapping) -> None:
        if not updates.get("date"):
            self.store.update(COLLECTION_INVENTORY, record_id, updates)
            return
        # Re-dating a record moves its natural key with it
        try:
            self.store.update(COLLECTION_INVENTORY, record_id, updates, key=updates["date"])
        except DuplicateKey:
            raise ConflictError(f"An inventory record for {updates['date']} already exists")

    def delete_inventory_record(self, record_id: str) -> None:
        self.store.delete(COLLECTION_INVENTORY, record_id)

    def add_payment(self, payment: Mapping) -> str:
        """Record a manual payment; a second payment for the same orderId is a ConflictError."""
        data = dict(payment)
        data["createdAt"] = to_utc_z(self._clock())
        order_id = str(data.get("orderId") or "").strip()
        try:
            return self.store.insert(COLLECTION_PAYMENTS, data, key=order_id or None)
        except DuplicateKey:
            raise ConflictError(f"Order {order_id} already has a payment")

    # =========================================================================
    # SIDE EFFECT HANDLERS
    # =========================================================================

    def apply_inventory_adjustment(self, payload: Mapping) -> None:
        """
        Add `quantity` to stockSold and subtract it from stockRemaining for `date`.

        A missing record is created with stockReceived=0 (explicit backlog).
        """
        quantity = parse_numeric_value(payload.get("quantity"))
        day = payload.get("date") or day_key(self._clock())
        defaults = self._new_inventory_record(day)

        if self.atomic:
            self.store.increment(
                COLLECTION_INVENTORY,
                day,
                {"stockSold": quantity, "stockRemaining": -quantity},
                defaults=defaults,
            )
            return

        records = [r for r in self.store.list_all(COLLECTION_INVENTORY) if r.get("date") == day]
        if records:
            record = records[0]
            self.store.update(
                COLLECTION_INVENTORY,
                record["id"],
                {
                    "stockSold": round_quantity(parse_numeric_value(record.get("stockSold")) + quantity),
                    "stockRemaining": round_quantity(parse_numeric_value(record.get("stockRemaining")) - quantity),
                },
            )
        else:
            defaults["stockSold"] = round_quantity(quantity)
            defaults["stockRemaining"] = round_quantity(-quantity)
            defaults["createdAt"] = to_utc_z(self._clock())
            self.store.insert(COLLECTION_INVENTORY, defaults, key=day)

    def create_payment(self, payload: Mapping) -> Optional[str]:
        """
        Create the completed payment for an order unless one already exists.

        Returns the id of the payment that now settles the order, or None
        when an existing one was left in place (legacy mode).
        """
        order = payload.get("order") or {}
        order_id = str(order.get("id") or "").strip()
        record = {
            "orderId": order_id,
            "customerName": order.get("customerName") or DEFAULT_CUSTOMER_NAME,
            "amount": round_money(order.get("totalAmount")),
            "type": order.get("paymentType") or PAYMENT_OFFLINE,
            "status": PAYMENT_STATUS_COMPLETED,
            "date": order.get("deliveryDate") or day_key(self._clock()),
            "createdAt": to_utc_z(self._clock()),
        }

        if self.atomic and order_id:
            payment_id, _created = self.store.insert_unique(COLLECTION_PAYMENTS, order_id, record)
            return payment_id

        existing = [p for p in self.store.list_all(COLLECTION_PAYMENTS) if p.get("orderId") == order_id]
        if existing:
            return None
        return self.store.insert(COLLECTION_PAYMENTS, record)

    def retry_failed_side_effects(self, limit: int = 100) -> dict:
        """Replay FAILED outbox events through the handlers above."""
        return outbox_service.retry_failed(
            {
                outbox_service.EVENT_INVENTORY_ADJUST: self.apply_inventory_adjustment,
                outbox_service.EVENT_PAYMENT_CREATE: self.create_payment,
            },
            limit=limit,
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _adjust_inventory_for_order(self, order_id: str, quantity: float, order_date: Optional[str]) -> None:
        if not quantity:
            return
        payload = {
            "quantity": round_quantity(quantity),
            "date": self._inventory_day(order_date),
            "orderDate": order_date,
        }
        self._dispatch(outbox_service.EVENT_INVENTORY_ADJUST, payload, order_id, self.apply_inventory_adjustment)

    def _create_payment_for_order(self, order_id: str, order: Mapping) -> None:
        payload = {
            "order": {
                "id": order_id,
                "customerName": order.get("customerName"),
                "totalAmount": parse_numeric_value(order.get("totalAmount")),
                "paymentType": order.get("paymentType"),
                "deliveryDate": order.get("deliveryDate"),
            }
        }
        self._dispatch(outbox_service.EVENT_PAYMENT_CREATE, payload, order_id, self.create_payment)

    def _dispatch(self, event_type: str, payload: dict, order_id: str, handler: Callable[[dict], Any]) -> None:
        event = outbox_service.record_event(event_type, payload, order_id=order_id) if self.outbox_enabled else None
        try:
            handler(payload)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception(
                "%s failed for order %s; the order write is kept", event_type, order_id
            )
            outbox_service.mark_failed(event, exc)
        else:
            outbox_service.mark_done(event)

    def _inventory_day(self, order_date: Optional[str]) -> str:
        if self.inventory_date_policy == DATE_POLICY_ORDER_DATE:
            parsed = parse_day(order_date)
            if parsed:
                return parsed.isoformat()
        return day_key(self._clock())

    def _new_inventory_record(self, day: str) -> dict:
        return {
            "date": day,
            "stockReceived": 0,
            "stockSold": 0,
            "stockRemaining": 0,
            "buyingPrice": self.default_buying_price,
            "sellingPrice": self.default_selling_price,
        }


def _stocked_quantity(raw: Mapping, canonical: Mapping) -> float:
    """
    Quantity inventory was last adjusted by for this order.

    add_order and quantity updates write a top-level quantity; orders that
    only carry line items fall back to the normalized item sum.
    """
    if raw.get("quantity") is not None:
        return parse_numeric_value(raw.get("quantity"))
    return canonical["quantity"]
