from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Mapping, Optional

from .services.derivation import parse_numeric_value, round_money, round_quantity
from .services.normalizer import CANONICAL_STATUSES, PAYMENT_OFFLINE, PAYMENT_ONLINE
from .time_utils import parse_day, utcnow


# Inventory input limits (liters / currency per liter)
MAX_STOCK_RECEIVED = 10_000
MAX_INVENTORY_PRICE = 1_000

MAX_TEXT_LENGTH = 500

_PHONE = re.compile(r"^[0-9]{10}$")

PAYMENT_TYPES = (PAYMENT_ONLINE, PAYMENT_OFFLINE)
PAYMENT_STATUSES = ("completed", "pending")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., a second inventory record for one day)."""


# Field kinds understood by validate_payload
TEXT = "text"
NUMBER = "number"
DAY = "day"


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set, mapped to a field kind
      (TEXT, NUMBER, DAY, or a tuple of allowed string values)
    - required_on_create: fields required for POST
    """
    writable_fields: dict[str, Any]
    required_on_create: frozenset = field(default_factory=frozenset)


ORDER_POLICY = PayloadPolicy(
    writable_fields={
        "customerName": TEXT,
        "customerPhone": TEXT,
        "customerAddress": TEXT,
        "locationLink": TEXT,
        "quantity": NUMBER,
        "pricePerLiter": NUMBER,
        "totalAmount": NUMBER,
        "status": CANONICAL_STATUSES,
        "orderDate": DAY,
        "deliveryDate": DAY,
        "deliveryTime": TEXT,
        "paymentType": PAYMENT_TYPES,
        "paymentMethod": TEXT,
        "notes": TEXT,
    },
    required_on_create=frozenset(
        {"customerName", "customerPhone", "quantity", "pricePerLiter", "orderDate", "deliveryDate"}
    ),
)

INVENTORY_POLICY = PayloadPolicy(
    writable_fields={
        "date": DAY,
        "stockReceived": NUMBER,
        "stockSold": NUMBER,
        "buyingPrice": NUMBER,
        "sellingPrice": NUMBER,
        "notes": TEXT,
    },
    required_on_create=frozenset({"date", "stockReceived", "buyingPrice", "sellingPrice"}),
)

PAYMENT_POLICY = PayloadPolicy(
    writable_fields={
        "orderId": TEXT,
        "customerName": TEXT,
        "amount": NUMBER,
        "type": PAYMENT_TYPES,
        "status": PAYMENT_STATUSES,
        "date": DAY,
        "notes": TEXT,
    },
    required_on_create=frozenset({"customerName", "amount", "date"}),
)


def _coerce_value(key: str, kind: Any, value: Any):
    if isinstance(kind, tuple):
        text = str(value).strip().lower() if isinstance(value, str) else None
        if text not in kind:
            raise ValidationError(f"{key} must be one of {list(kind)}")
        return text

    if kind == NUMBER:
        # Strict: client input is not upstream data, so "12 L" is rejected here
        if isinstance(value, bool):
            raise ValidationError(f"{key} must be a number")
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str) and value.strip():
            try:
                number = float(value.strip())
            except ValueError:
                raise ValidationError(f"{key} must be a number")
        else:
            raise ValidationError(f"{key} must be a number")
        if not math.isfinite(number):
            raise ValidationError(f"{key} must be a finite number")
        return number

    if kind == DAY:
        if not isinstance(value, str) or len(value.strip()) != 10 or parse_day(value) is None:
            raise ValidationError(f"{key} must be a date in YYYY-MM-DD format")
        return value.strip()

    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    text = value.strip()
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"{key} exceeds max length {MAX_TEXT_LENGTH}")
    return text


def validate_payload(*, payload: Any, policy: PayloadPolicy, partial: bool) -> dict:
    """
    Validates + normalizes incoming JSON against a policy.
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        if raw is None:
            if k in policy.required_on_create:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue
        patch[k] = _coerce_value(k, policy.writable_fields[k], raw)
    return patch


def _merged(patch: Mapping, current: Optional[Mapping], key: str) -> Any:
    if key in patch:
        return patch[key]
    return (current or {}).get(key)


def enforce_rules_order(
    patch: dict,
    *,
    config: Mapping,
    current: Optional[Mapping] = None,
    available_stock: Optional[float] = None,
    today: Optional[date] = None,
) -> None:
    """
    Business rules for order input. `current` is the canonical order being
    updated (None on create). Fills totalAmount from quantity x pricePerLiter.
    """
    if "customerName" in patch:
        name = patch["customerName"] or ""
        if len(name) < 2:
            raise ValidationError("Customer name must be at least 2 characters")

    if "customerPhone" in patch:
        phone = re.sub(r"\s", "", patch["customerPhone"] or "")
        if not _PHONE.match(phone):
            raise ValidationError("Please enter a valid 10-digit phone number")
        patch["customerPhone"] = phone

    max_quantity = float(config.get("MAX_ORDER_QUANTITY", 1000))
    if "quantity" in patch:
        quantity = patch["quantity"]
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be a positive number")
        if quantity > max_quantity:
            raise ValidationError(f"Quantity cannot exceed {max_quantity:g} liters")

    max_price = float(config.get("MAX_PRICE_PER_LITER", 1000))
    if "pricePerLiter" in patch:
        price = patch["pricePerLiter"]
        if price is None or price <= 0:
            raise ValidationError("Price must be a positive number")
        if price > max_price:
            raise ValidationError(f"Price per liter cannot exceed {max_price:g}")

    if "orderDate" in patch or "deliveryDate" in patch:
        order_day = parse_day(_merged(patch, current, "orderDate"))
        delivery_day = parse_day(_merged(patch, current, "deliveryDate"))
        if order_day and delivery_day:
            max_days = int(config.get("MAX_DELIVERY_DAYS", 7))
            if delivery_day < order_day:
                raise ValidationError("Delivery date cannot be before order date")
            if delivery_day > order_day + timedelta(days=max_days):
                raise ValidationError(f"Delivery date cannot be more than {max_days} days after order date")

    if "quantity" in patch and available_stock is not None and available_stock > 0:
        today_key = (today or utcnow().date()).isoformat()
        if _merged(patch, current, "orderDate") == today_key and patch["quantity"] > available_stock:
            raise ValidationError(f"Insufficient stock. Only {available_stock:g}L available for today")

    if "quantity" in patch or "pricePerLiter" in patch:
        quantity = parse_numeric_value(_merged(patch, current, "quantity"))
        price = parse_numeric_value(_merged(patch, current, "pricePerLiter"))
        if quantity > 0 and price > 0:
            patch["totalAmount"] = round_money(quantity * price)


def enforce_rules_inventory(patch: dict, *, current: Optional[Mapping] = None) -> None:
    """Business rules for manual inventory records; recomputes stockRemaining."""
    received = _merged(patch, current, "stockReceived")
    sold = _merged(patch, current, "stockSold")
    received = parse_numeric_value(received)
    sold = parse_numeric_value(sold)

    if "stockReceived" in patch:
        if patch["stockReceived"] is None or received < 0:
            raise ValidationError("Stock received must be a non-negative number")
        if received > MAX_STOCK_RECEIVED:
            raise ValidationError(f"Stock received cannot exceed {MAX_STOCK_RECEIVED:,} liters")

    if "stockSold" in patch or "stockReceived" in patch:
        if sold < 0:
            raise ValidationError("Stock sold must be a non-negative number")
        if sold > received:
            raise ValidationError("Stock sold cannot exceed stock received")

    for key, label in (("buyingPrice", "Buying price"), ("sellingPrice", "Selling price")):
        if key in patch:
            price = patch[key]
            if price is None or price < 0:
                raise ValidationError(f"{label} must be a positive number")
            if price > MAX_INVENTORY_PRICE:
                raise ValidationError(f"{label} cannot exceed {MAX_INVENTORY_PRICE:,} per liter")

    if "buyingPrice" in patch or "sellingPrice" in patch:
        buying = parse_numeric_value(_merged(patch, current, "buyingPrice"))
        selling = parse_numeric_value(_merged(patch, current, "sellingPrice"))
        if selling <= buying:
            raise ValidationError("Selling price must be higher than buying price")

    if current is None:
        patch.setdefault("stockSold", 0.0)
    if "stockReceived" in patch or "stockSold" in patch:
        patch["stockRemaining"] = round_quantity(received - sold)


def enforce_rules_payment(patch: dict) -> None:
    if "amount" in patch:
        if patch["amount"] is None or patch["amount"] <= 0:
            raise ValidationError("Amount must be a positive number")
        patch["amount"] = round_money(patch["amount"])
    patch.setdefault("type", PAYMENT_OFFLINE)
    patch.setdefault("status", "completed")
