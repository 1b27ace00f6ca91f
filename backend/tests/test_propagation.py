import pytest

from dairyledger.extensions import db
from dairyledger.models import OutboxEvent
from dairyledger.services.ledger_store import LedgerStoreError, SqlLedgerStore
from dairyledger.services.propagation_service import ConsistencyPropagator, OrderNotFound
from dairyledger.validation import ConflictError

from conftest import TODAY, inventory_for, payments_for


MODES = pytest.mark.parametrize("atomic", [True, False], ids=["atomic", "legacy"])


def _order(**overrides):
    order = {
        "customerName": "Asha",
        "customerPhone": "9876543210",
        "quantity": 5,
        "pricePerLiter": 60,
        "totalAmount": 300,
        "status": "pending",
        "orderDate": TODAY,
        "deliveryDate": "2026-10-19",
    }
    order.update(overrides)
    return order


def _seed_inventory(propagator, received=50, sold=10, day=TODAY):
    return propagator.add_inventory_record({
        "date": day,
        "stockReceived": received,
        "stockSold": sold,
        "stockRemaining": received - sold,
        "buyingPrice": 35,
        "sellingPrice": 60,
    })


# =============================================================================
# INVENTORY ADJUSTMENTS
# =============================================================================

@MODES
def test_order_depletes_existing_record(make_propagator, store, atomic):
    propagator = make_propagator(atomic=atomic)
    _seed_inventory(propagator, received=50, sold=10)

    propagator.add_order(_order(quantity=5))

    records = inventory_for(store, TODAY)
    assert len(records) == 1
    assert records[0]["stockReceived"] == 50
    assert records[0]["stockSold"] == 15
    assert records[0]["stockRemaining"] == 35


@MODES
def test_order_without_record_creates_backlog(make_propagator, store, atomic):
    propagator = make_propagator(atomic=atomic)

    propagator.add_order(_order(quantity=7, totalAmount=420))

    records = inventory_for(store, TODAY)
    assert len(records) == 1
    assert records[0]["stockReceived"] == 0
    assert records[0]["stockSold"] == 7
    assert records[0]["stockRemaining"] == -7
    assert records[0]["buyingPrice"] == 35
    assert records[0]["sellingPrice"] == 60


@MODES
def test_delete_restocks_original_quantity(make_propagator, store, atomic):
    propagator = make_propagator(atomic=atomic)
    _seed_inventory(propagator, received=20, sold=0)
    order_id = propagator.add_order(_order(quantity=12, totalAmount=720))
    assert inventory_for(store, TODAY)[0]["stockSold"] == 12

    propagator.delete_order(order_id)

    record = inventory_for(store, TODAY)[0]
    assert record["stockSold"] == 0
    assert record["stockRemaining"] == 20
    assert store.get("orders", order_id) is None


@MODES
def test_quantity_update_applies_the_difference(make_propagator, store, atomic):
    propagator = make_propagator(atomic=atomic)
    _seed_inventory(propagator, received=50, sold=0)
    order_id = propagator.add_order(_order(quantity=5))

    propagator.update_order(order_id, {"quantity": 8})
    assert inventory_for(store, TODAY)[0]["stockSold"] == 8

    propagator.update_order(order_id, {"quantity": 2})
    assert inventory_for(store, TODAY)[0]["stockSold"] == 2


def test_quantity_update_to_zero_is_honoured(propagator, store):
    _seed_inventory(propagator, received=50, sold=0)
    order_id = propagator.add_order(_order(quantity=5))

    propagator.update_order(order_id, {"quantity": 0})

    record = inventory_for(store, TODAY)[0]
    assert record["stockSold"] == 0
    assert record["stockRemaining"] == 50


def test_update_without_quantity_leaves_inventory(propagator, store):
    _seed_inventory(propagator, received=50, sold=0)
    order_id = propagator.add_order(_order(quantity=5))

    propagator.update_order(order_id, {"notes": "ring the bell"})

    assert inventory_for(store, TODAY)[0]["stockSold"] == 5
    assert store.get("orders", order_id)["notes"] == "ring the bell"


def test_today_policy_ignores_order_date(make_propagator, store):
    propagator = make_propagator(inventory_date_policy="today")
    propagator.add_order(_order(orderDate="2026-10-20", deliveryDate="2026-10-21"))

    assert inventory_for(store, TODAY)[0]["stockSold"] == 5
    assert inventory_for(store, "2026-10-20") == []


def test_order_date_policy_adjusts_the_order_day(make_propagator, store):
    propagator = make_propagator(inventory_date_policy="order_date")
    propagator.add_order(_order(orderDate="2026-10-20", deliveryDate="2026-10-21"))

    assert inventory_for(store, TODAY) == []
    assert inventory_for(store, "2026-10-20")[0]["stockSold"] == 5


def test_invalid_date_policy_rejected(store):
    with pytest.raises(ValueError):
        ConsistencyPropagator(store, inventory_date_policy="tomorrow")


# =============================================================================
# PAYMENTS
# =============================================================================

@MODES
def test_completing_twice_yields_one_payment(make_propagator, store, atomic):
    propagator = make_propagator(atomic=atomic)
    order_id = propagator.add_order(_order(paymentType="online"))

    propagator.update_order(order_id, {"status": "completed"})
    propagator.update_order(order_id, {"status": "completed"})
    propagator.create_payment({"order": {"id": order_id, "totalAmount": 300}})

    payments = payments_for(store, order_id)
    assert len(payments) == 1
    payment = payments[0]
    assert payment["amount"] == 300
    assert payment["type"] == "online"
    assert payment["status"] == "completed"
    assert payment["date"] == "2026-10-19"
    assert payment["customerName"] == "Asha"


def test_order_created_completed_gets_payment(propagator, store):
    order_id = propagator.add_order(_order(status="completed"))

    payments = payments_for(store, order_id)
    assert len(payments) == 1
    assert payments[0]["type"] == "offline"
    assert store.get("orders", order_id)["completedTime"] == "09:30"


def test_pending_order_has_no_payment(propagator, store):
    order_id = propagator.add_order(_order())
    assert payments_for(store, order_id) == []


def test_manual_payment_blocks_automatic_duplicate(propagator, store):
    order_id = propagator.add_order(_order())
    propagator.add_payment({"orderId": order_id, "customerName": "Asha", "amount": 300,
                            "type": "offline", "status": "completed", "date": TODAY})

    propagator.update_order(order_id, {"status": "completed"})

    assert len(payments_for(store, order_id)) == 1


def test_manual_payment_duplicate_order_is_conflict(propagator):
    payment = {"orderId": "ord-9", "customerName": "Asha", "amount": 10, "date": TODAY}
    propagator.add_payment(payment)
    with pytest.raises(ConflictError):
        propagator.add_payment(payment)


def test_manual_payments_without_order_are_independent(propagator, store):
    propagator.add_payment({"customerName": "Walk-in", "amount": 10, "date": TODAY})
    propagator.add_payment({"customerName": "Walk-in", "amount": 10, "date": TODAY})
    assert len(store.list_all("payments")) == 2


# =============================================================================
# RAW UPSTREAM ORDERS
# =============================================================================

def test_raw_order_side_effects_use_normalized_values(propagator, store):
    raw_id = store.insert("orders", {
        "userName": "Ravi",
        "cartItems": [{"name": "Buffalo Milk", "qty": "2 L", "price": "₹70"}],
        "status": "confirmed",
        "deliverySlot": {"date": "2026-10-19"},
    })

    propagator.update_order(raw_id, {"status": "delivered"})

    payments = payments_for(store, raw_id)
    assert len(payments) == 1
    assert payments[0]["amount"] == 140
    assert payments[0]["customerName"] == "Ravi"
    assert payments[0]["date"] == "2026-10-19"

    propagator.delete_order(raw_id)
    record = inventory_for(store, TODAY)[0]
    assert record["stockSold"] == -2


# =============================================================================
# TIMESTAMPS
# =============================================================================

def test_timestamps_are_stamped(propagator, store):
    order_id = propagator.add_order(_order(id="client-id"))
    stored = store.get("orders", order_id)
    assert order_id != "client-id"
    assert stored["createdAt"] == "2026-10-18T09:30:00Z"
    assert stored["updatedAt"] == "2026-10-18T09:30:00Z"
    assert stored["orderTime"] == "09:30"
    assert "completedTime" not in stored

    propagator.update_order(order_id, {"status": "cancelled"})
    stored = store.get("orders", order_id)
    assert stored["cancelledTime"] == "09:30"
    assert stored["status"] == "cancelled"


# =============================================================================
# FAILURE POLICY
# =============================================================================

def test_missing_order_update_and_delete_raise(propagator):
    with pytest.raises(OrderNotFound):
        propagator.update_order("nope", {"status": "completed"})
    with pytest.raises(OrderNotFound):
        propagator.delete_order("nope")


class BrokenOrdersStore(SqlLedgerStore):
    def insert(self, collection, doc, *, key=None):
        if collection == "orders":
            raise LedgerStoreError("orders collection unavailable")
        return super().insert(collection, doc, key=key)


def test_primary_write_failure_propagates_without_side_effects(app, make_propagator):
    broken = BrokenOrdersStore()
    propagator = make_propagator(store=broken)

    with pytest.raises(LedgerStoreError):
        propagator.add_order(_order(status="completed"))

    assert broken.list_all("inventory") == []
    assert broken.list_all("payments") == []
    assert db.session.query(OutboxEvent).count() == 0


def test_side_effect_failure_is_swallowed_and_recorded(propagator, store):
    def boom(payload):
        raise RuntimeError("inventory backend down")

    propagator.apply_inventory_adjustment = boom
    order_id = propagator.add_order(_order(status="completed"))

    # Order and payment survive the failed inventory adjustment
    assert store.get("orders", order_id) is not None
    assert len(payments_for(store, order_id)) == 1
    assert inventory_for(store, TODAY) == []

    events = {e.event_type: e for e in db.session.query(OutboxEvent).all()}
    assert events["INVENTORY_ADJUST"].status == "FAILED"
    assert "inventory backend down" in events["INVENTORY_ADJUST"].last_error
    assert events["PAYMENT_CREATE"].status == "DONE"


def test_failed_side_effects_can_be_replayed(propagator, store):
    def boom(payload):
        raise RuntimeError("inventory backend down")

    propagator.apply_inventory_adjustment = boom
    propagator.add_order(_order(quantity=4, totalAmount=240))
    del propagator.apply_inventory_adjustment

    result = propagator.retry_failed_side_effects()

    assert result == {"retried": 1, "succeeded": 1, "failed": 0}
    assert inventory_for(store, TODAY)[0]["stockSold"] == 4
    event = db.session.query(OutboxEvent).one()
    assert event.status == "DONE"
    assert event.attempts == 2

    # Nothing left to replay
    assert propagator.retry_failed_side_effects()["retried"] == 0


def test_outbox_can_be_disabled(make_propagator, store):
    propagator = make_propagator(outbox_enabled=False)
    propagator.add_order(_order(status="completed"))

    assert db.session.query(OutboxEvent).count() == 0
    assert inventory_for(store, TODAY)[0]["stockSold"] == 5


# =============================================================================
# MANUAL INVENTORY
# =============================================================================

def test_second_inventory_record_for_a_day_is_conflict(propagator):
    _seed_inventory(propagator)
    with pytest.raises(ConflictError):
        _seed_inventory(propagator)


def test_redating_inventory_record(propagator, store):
    first = _seed_inventory(propagator, day="2026-10-17")
    _seed_inventory(propagator, day=TODAY)

    propagator.update_inventory_record(first, {"date": "2026-10-16"})
    assert store.get("inventory", first)["date"] == "2026-10-16"

    with pytest.raises(ConflictError):
        propagator.update_inventory_record(first, {"date": TODAY})

    propagator.delete_inventory_record(first)
    assert store.get("inventory", first) is None


def test_orders_adjust_the_manual_record_for_the_day(propagator, store):
    record_id = _seed_inventory(propagator, received=30, sold=0)
    propagator.add_order(_order(quantity=5))

    records = inventory_for(store, TODAY)
    assert [r["id"] for r in records] == [record_id]
    assert records[0]["stockRemaining"] == 25


# =============================================================================
# UNKEYED AND ITEM-ONLY DOCUMENTS
# =============================================================================

@MODES
def test_order_depletes_record_stored_without_key(make_propagator, store, atomic):
    record_id = store.insert("inventory", {
        "date": TODAY, "stockReceived": 50, "stockSold": 10, "stockRemaining": 40,
        "buyingPrice": 35, "sellingPrice": 60,
    })
    propagator = make_propagator(atomic=atomic)

    propagator.add_order(_order(quantity=5))

    records = inventory_for(store, TODAY)
    assert [r["id"] for r in records] == [record_id]
    assert records[0]["stockSold"] == 15
    assert records[0]["stockRemaining"] == 35


def test_payment_stored_without_key_blocks_automatic_duplicate(propagator, store):
    order_id = propagator.add_order(_order())
    store.insert("payments", {"orderId": order_id, "customerName": "Asha", "amount": 300,
                              "status": "completed", "date": TODAY})

    propagator.update_order(order_id, {"status": "completed"})

    assert len(payments_for(store, order_id)) == 1
    assert store.find_by_key("payments", order_id)["orderId"] == order_id


@MODES
def test_item_only_order_quantity_updates_do_not_drift(make_propagator, store, atomic):
    propagator = make_propagator(atomic=atomic)
    order_id = propagator.add_order({
        "customerName": "Ravi",
        "cartItems": [{"name": "Cow Milk", "qty": 5, "price": 60}],
        "orderDate": TODAY,
    })
    assert inventory_for(store, TODAY)[0]["stockSold"] == 5

    propagator.update_order(order_id, {"quantity": 8})
    propagator.update_order(order_id, {"quantity": 8})
    assert inventory_for(store, TODAY)[0]["stockSold"] == 8

    propagator.delete_order(order_id)
    record = inventory_for(store, TODAY)[0]
    assert record["stockSold"] == 0
    assert record["stockRemaining"] == 0


def test_completed_transaction_stamps_completed_time(propagator, store):
    order_id = propagator.add_order(_order(status="confirmed", transaction={"status": "completed"}))

    assert store.get("orders", order_id)["completedTime"] == "09:30"
    assert len(payments_for(store, order_id)) == 1
