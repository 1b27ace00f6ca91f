from datetime import date

import pytest

from dairyledger.config import Config
from dairyledger.validation import (
    INVENTORY_POLICY,
    ORDER_POLICY,
    PAYMENT_POLICY,
    ValidationError,
    enforce_rules_inventory,
    enforce_rules_order,
    enforce_rules_payment,
    validate_payload,
)


CONFIG = {"MAX_ORDER_QUANTITY": Config.MAX_ORDER_QUANTITY, "MAX_PRICE_PER_LITER": 1000, "MAX_DELIVERY_DAYS": 7}
TODAY = date(2026, 10, 18)


def _order_payload(**overrides):
    payload = {
        "customerName": " Asha ",
        "customerPhone": "98765 43210",
        "quantity": "5",
        "pricePerLiter": 60,
        "orderDate": "2026-10-18",
        "deliveryDate": "2026-10-19",
    }
    payload.update(overrides)
    return payload


def _valid_order(**overrides):
    patch = validate_payload(payload=_order_payload(**overrides), policy=ORDER_POLICY, partial=False)
    enforce_rules_order(patch, config=CONFIG, today=TODAY)
    return patch


# =============================================================================
# PAYLOAD POLICY
# =============================================================================

def test_valid_order_is_cleaned():
    patch = _valid_order()
    assert patch["customerName"] == "Asha"
    assert patch["customerPhone"] == "9876543210"
    assert patch["quantity"] == 5.0
    assert patch["totalAmount"] == 300.0


def test_missing_required_fields_listed():
    with pytest.raises(ValidationError, match="customerPhone, quantity"):
        validate_payload(
            payload={"customerName": "Asha", "customerPhone": "", "pricePerLiter": 60,
                     "orderDate": "2026-10-18", "deliveryDate": "2026-10-18"},
            policy=ORDER_POLICY,
            partial=False,
        )


@pytest.mark.parametrize(
    "payload",
    [
        {"id": "client"},
        {"quantity": "5 L"},
        {"quantity": True},
        {"quantity": "nan"},
        {"quantity": None},
        {"status": "shipped"},
        {"orderDate": "18-10-2026"},
        {"orderDate": "2026-10-18T10:00"},
        {"notes": "x" * 501},
        {"customerName": 42},
    ],
)
def test_invalid_patches_rejected(payload):
    with pytest.raises(ValidationError):
        validate_payload(payload=payload, policy=ORDER_POLICY, partial=True)


def test_patch_validates_only_given_fields():
    patch = validate_payload(payload={"status": " Completed ", "notes": None}, policy=ORDER_POLICY, partial=True)
    assert patch == {"status": "completed", "notes": None}


def test_non_object_payload_rejected():
    with pytest.raises(ValidationError):
        validate_payload(payload=["a"], policy=ORDER_POLICY, partial=True)


# =============================================================================
# ORDER RULES
# =============================================================================

@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"customerName": "A"}, "at least 2"),
        ({"customerPhone": "12345"}, "10-digit"),
        ({"quantity": 0}, "positive"),
        ({"quantity": 1001}, "cannot exceed"),
        ({"pricePerLiter": -1}, "positive"),
        ({"deliveryDate": "2026-10-17"}, "before order date"),
        ({"deliveryDate": "2026-10-26"}, "more than 7 days"),
    ],
)
def test_order_rules(overrides, message):
    with pytest.raises(ValidationError, match=message):
        _valid_order(**overrides)


def test_insufficient_stock_for_today():
    patch = validate_payload(payload=_order_payload(quantity=8), policy=ORDER_POLICY, partial=False)
    with pytest.raises(ValidationError, match="Insufficient stock"):
        enforce_rules_order(patch, config=CONFIG, available_stock=5, today=TODAY)


def test_stock_check_skipped_for_other_days_and_empty_stock():
    future = validate_payload(
        payload=_order_payload(quantity=8, orderDate="2026-10-19", deliveryDate="2026-10-19"),
        policy=ORDER_POLICY,
        partial=False,
    )
    enforce_rules_order(future, config=CONFIG, available_stock=5, today=TODAY)

    unknown = validate_payload(payload=_order_payload(quantity=8), policy=ORDER_POLICY, partial=False)
    enforce_rules_order(unknown, config=CONFIG, available_stock=0, today=TODAY)


def test_update_recomputes_total_from_current_values():
    current = {"quantity": 2, "pricePerLiter": 60, "orderDate": "2026-10-18", "deliveryDate": "2026-10-18"}
    patch = {"quantity": 3.0}
    enforce_rules_order(patch, config=CONFIG, current=current, today=TODAY)
    assert patch["totalAmount"] == 180.0


def test_update_checks_delivery_against_current_order_date():
    current = {"orderDate": "2026-10-18", "deliveryDate": "2026-10-18"}
    with pytest.raises(ValidationError):
        enforce_rules_order({"deliveryDate": "2026-10-10"}, config=CONFIG, current=current)


# =============================================================================
# INVENTORY AND PAYMENT RULES
# =============================================================================

def _inventory(**overrides):
    payload = {"date": "2026-10-18", "stockReceived": 50, "buyingPrice": 35, "sellingPrice": 60}
    payload.update(overrides)
    patch = validate_payload(payload=payload, policy=INVENTORY_POLICY, partial=False)
    enforce_rules_inventory(patch)
    return patch


def test_inventory_create_defaults_and_remaining():
    patch = _inventory(stockSold=10)
    assert patch["stockRemaining"] == 40

    patch = _inventory()
    assert patch["stockSold"] == 0.0
    assert patch["stockRemaining"] == 50


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"stockReceived": -1}, "non-negative"),
        ({"stockReceived": 10001}, "cannot exceed"),
        ({"stockSold": 60}, "cannot exceed stock received"),
        ({"buyingPrice": 1001}, "cannot exceed"),
        ({"sellingPrice": 30}, "higher than buying"),
    ],
)
def test_inventory_rules(overrides, message):
    with pytest.raises(ValidationError, match=message):
        _inventory(**overrides)


def test_inventory_update_uses_current_values():
    current = {"stockReceived": 50, "stockSold": 10, "buyingPrice": 35, "sellingPrice": 60}
    patch = {"stockSold": 20.0}
    enforce_rules_inventory(patch, current=current)
    assert patch["stockRemaining"] == 30

    with pytest.raises(ValidationError):
        enforce_rules_inventory({"sellingPrice": 20.0}, current=current)


def test_payment_defaults_and_amount():
    patch = validate_payload(
        payload={"customerName": "Asha", "amount": "120.456", "date": "2026-10-18"},
        policy=PAYMENT_POLICY,
        partial=False,
    )
    enforce_rules_payment(patch)
    assert patch["amount"] == 120.46
    assert patch["type"] == "offline"
    assert patch["status"] == "completed"

    with pytest.raises(ValidationError):
        enforce_rules_payment({"amount": 0.0})
