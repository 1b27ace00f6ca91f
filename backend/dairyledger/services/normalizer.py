# Overview: Projects raw upstream order documents onto the canonical order shape.

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from .derivation import (
    dig,
    field,
    first_list,
    parse_flag,
    parse_numeric_value,
    resolve_number,
    resolve_text,
    round_money,
    round_quantity,
)
from ..time_utils import clock_hhmm, coerce_timestamp, day_key, parse_day, to_utc_z, utcnow
"""
Order Normalizer Invariants (authoritative)

- normalize_order() is pure: no I/O, no logging, never raises.
- Every numeric output is a finite number; missing or unparseable input is 0.
- Canonical status is one of: pending, completed, cancelled.
- A completed payment transaction wins over the delivery-status vocabulary.
- Already-canonical documents come back with the same values (no-op).
- The normalized order is a projection; it is never written back.
"""


STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

CANONICAL_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_CANCELLED)

# Upstream (subscription / delivery) vocabulary -> canonical tri-state
STATUS_MAP = {
    "pending": STATUS_PENDING,
    "confirmed": STATUS_PENDING,
    "active": STATUS_PENDING,
    "paused": STATUS_PENDING,
    "completed": STATUS_COMPLETED,
    "delivered": STATUS_COMPLETED,
    "cancelled": STATUS_CANCELLED,
    "canceled": STATUS_CANCELLED,
}

PAYMENT_ONLINE = "online"
PAYMENT_OFFLINE = "offline"

ONLINE_PAYMENT_METHODS = {
    "online", "upi", "card", "credit_card", "debit_card", "netbanking",
    "net_banking", "wallet", "razorpay", "paytm", "gpay", "phonepe",
}

DEFAULT_CUSTOMER_NAME = "Customer"
DEFAULT_CUSTOMER_PHONE = "N/A"
DEFAULT_CUSTOMER_ADDRESS = "Address not provided"
DEFAULT_CATEGORY = "Milk & Dairy Products"
DEFAULT_ORDER_ITEM_NAME = "Milk Order"
DEFAULT_PAYMENT_METHOD = "cash"

ORDER_ITEM_KEYS = ("orderItems", "items", "cartItems", "cart", "products")
TRANSACTION_KEYS = ("transaction", "paymentTransaction", "payment")

ADDRESS_PARTS = (
    "address", "line1", "houseNo", "flatNo", "street", "line2", "landmark",
    "area", "locality", "city", "state", "pincode", "zip", "postalCode",
)


# =============================================================================
# DERIVATION CHAINS (order = field priority)
# =============================================================================

def _line_total_per_unit(item):
    total = resolve_number(item, (field("total"), field("lineTotal"), field("subtotal"), field("amount")))
    if total <= 0:
        return None
    quantity = resolve_number(item, ITEM_QUANTITY_CHAIN)
    return total / quantity if quantity > 0 else total


# Explicit quantity fields first; label/text fields are the last resort.
ITEM_QUANTITY_CHAIN = (
    field("quantity"),
    field("qty"),
    field("count"),
    field("units"),
    field("liters"),
    field("litres"),
    field("quantityLabel"),
    field("label"),
)

ITEM_PRICE_CHAIN = (
    field("price"),
    field("unitPrice"),
    field("pricePerUnit"),
    field("pricePerLiter"),
    field("rate"),
    field("sellingPrice"),
    _line_total_per_unit,
)

ITEM_BASE_PRICE_CHAIN = (
    field("basePrice"),
    field("originalPrice"),
    field("mrp"),
    field("listPrice"),
)

ITEM_NAME_CHAIN = (
    field("name"),
    field("productName"),
    field("title"),
    field("product", "name"),
)

ITEM_CATEGORY_CHAIN = (
    field("category"),
    field("categoryName"),
    field("product", "category"),
)

ORDER_UNIT_PRICE_CHAIN = (
    field("pricePerLiter"),
    field("pricePerUnit"),
    field("unitPrice"),
    field("price"),
    field("rate"),
)

ORDER_QUANTITY_CHAIN = (
    field("quantity"),
    field("totalQuantity"),
    field("qty"),
    field("liters"),
    field("litres"),
    field("dailyQuantity"),
)

ORDER_AMOUNT_CHAIN = (
    field("totalAmount"),
    field("amount"),
    field("total"),
    field("grandTotal"),
    field("transaction", "amount"),
    field("paymentTransaction", "amount"),
    field("payment", "amount"),
)


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_order(raw: Any, profile: Any = None) -> dict:
    """
    Convert one raw order document (and optional customer profile) to a canonical order.

    Args:
        raw: Order document as stored by the upstream ordering surface or by add_order
        profile: Customer profile document ({"name", "phone", "addresses": [...]}) if known

    Returns:
        Canonical order dict (see CanonicalOrder in the data model)
    """
    raw = raw if isinstance(raw, Mapping) else {}
    profile = profile if isinstance(profile, Mapping) else {}
    default_address = _default_profile_address(profile)
    transaction = _transaction(raw)

    customer_name = resolve_text(
        {"raw": raw, "profile": profile},
        (
            field("profile", "name"),
            field("profile", "displayName"),
            field("profile", "fullName"),
            field("raw", "customerName"),
            field("raw", "customer", "name"),
            field("raw", "userName"),
            field("raw", "name"),
            field("raw", "address", "name"),
            field("raw", "deliveryAddress", "name"),
        ),
        DEFAULT_CUSTOMER_NAME,
    )
    customer_phone = resolve_text(
        {"raw": raw, "profile": profile},
        (
            field("profile", "phone"),
            field("profile", "phoneNumber"),
            field("raw", "customerPhone"),
            field("raw", "customer", "phone"),
            field("raw", "phone"),
            field("raw", "phoneNumber"),
            field("raw", "mobile"),
            field("raw", "address", "phone"),
        ),
        DEFAULT_CUSTOMER_PHONE,
    )
    customer_address = _resolve_address(raw, profile, default_address)
    location_link = _resolve_location_link(raw, default_address)

    # Line items
    default_unit_price = resolve_number(raw, ORDER_UNIT_PRICE_CHAIN)
    raw_items = first_list(raw, ORDER_ITEM_KEYS)
    items = [_normalize_item(item, default_unit_price) for item in (raw_items or [])]

    total_quantity = sum(item["quantity"] for item in items)
    total_amount = sum(item["quantity"] * item["price"] for item in items)
    if total_quantity <= 0:
        total_quantity = resolve_number(raw, ORDER_QUANTITY_CHAIN)
    if total_amount <= 0:
        total_amount = resolve_number(raw, ORDER_AMOUNT_CHAIN)
        if total_amount <= 0 and total_quantity > 0 and default_unit_price > 0:
            total_amount = total_quantity * default_unit_price
    if total_quantity <= 0 and total_amount > 0:
        total_quantity = 1.0

    total_quantity = round_quantity(total_quantity)
    total_amount = round_money(total_amount)

    explicit_rate = parse_numeric_value(raw.get("pricePerLiter"))
    if explicit_rate > 0:
        price_per_liter = explicit_rate
    elif total_quantity > 0:
        price_per_liter = total_amount / total_quantity
    else:
        price_per_liter = default_unit_price
    price_per_liter = round_money(price_per_liter)

    if not raw_items and (total_quantity > 0 or total_amount > 0):
        items = [_default_item(raw, total_quantity, total_amount, price_per_liter)]

    # Dates
    created = (
        coerce_timestamp(raw.get("createdAt"))
        or coerce_timestamp(dig(transaction, "timestamp"))
        or coerce_timestamp(dig(transaction, "createdAt"))
        or coerce_timestamp(dig(transaction, "paidAt"))
    )
    reference = created or utcnow()
    order_date = _day(raw.get("orderDate")) or day_key(reference)
    order_time = resolve_text(raw, (field("orderTime"),), clock_hhmm(reference))
    delivery_date = (
        _day(raw.get("deliveryDate"))
        or _day(dig(raw, "deliverySlot", "date"))
        or _day(raw.get("startDate"))
        or _day(raw.get("scheduledDate"))
        or order_date
    )
    delivery_time = resolve_text(
        raw,
        (
            field("deliveryTime"),
            field("deliverySlot", "time"),
            field("deliverySlot", "label"),
            field("timeSlot"),
            field("preferredTime"),
        ),
    )

    payment_method = resolve_text(
        {"raw": raw, "transaction": transaction},
        (
            field("raw", "paymentMethod"),
            field("transaction", "method"),
            field("transaction", "paymentMethod"),
        ),
        DEFAULT_PAYMENT_METHOD,
    )

    return {
        "id": resolve_text(raw, (field("id"), field("orderId"))),
        "customerName": customer_name,
        "customerPhone": customer_phone,
        "customerAddress": customer_address,
        "locationLink": location_link,
        "orderItems": items,
        "quantity": total_quantity,
        "pricePerLiter": price_per_liter,
        "totalAmount": total_amount,
        "status": map_status(raw.get("status"), dig(transaction, "status")),
        "orderDate": order_date,
        "orderTime": order_time,
        "deliveryDate": delivery_date,
        "deliveryTime": delivery_time,
        "paymentMethod": payment_method,
        "paymentType": _payment_type(raw, payment_method),
        "notes": resolve_text(
            raw,
            (
                field("notes"),
                field("note"),
                field("instructions"),
                field("deliveryInstructions"),
                field("specialInstructions"),
            ),
        ),
        "createdAt": to_utc_z(created),
        "updatedAt": to_utc_z(coerce_timestamp(raw.get("updatedAt"))),
        "completedTime": _optional_text(raw.get("completedTime")),
        "cancelledTime": _optional_text(raw.get("cancelledTime")),
    }


def map_status(status: Any, transaction_status: Any = None) -> str:
    """
    Map upstream status vocabulary to pending / completed / cancelled.

    A transaction reporting "completed" is authoritative and overrides
    whatever the delivery status says. Unknown values map to pending.
    """
    if isinstance(transaction_status, str) and transaction_status.strip().lower() == STATUS_COMPLETED:
        return STATUS_COMPLETED
    if isinstance(status, str):
        return STATUS_MAP.get(status.strip().lower(), STATUS_PENDING)
    return STATUS_PENDING


def normalize_orders(docs: Iterable[Any], profiles: Optional[Mapping[str, Mapping]] = None) -> list[dict]:
    """Normalize a snapshot of order documents, resolving profiles from an index."""
    profiles = profiles or {}
    return [normalize_order(doc, lookup_profile(doc, profiles)) for doc in docs]


def index_profiles(profile_docs: Iterable[Any]) -> dict[str, Mapping]:
    """Index customer profiles by id, uid and phone for lookup_profile()."""
    index: dict[str, Mapping] = {}
    for doc in profile_docs:
        if not isinstance(doc, Mapping):
            continue
        for key in ("id", "uid", "userId", "phone", "phoneNumber"):
            value = doc.get(key)
            if isinstance(value, str) and value.strip():
                index.setdefault(value.strip(), doc)
    return index


def lookup_profile(raw: Any, profiles: Mapping[str, Mapping]) -> Optional[Mapping]:
    if not isinstance(raw, Mapping) or not profiles:
        return None
    for key in ("userId", "customerId", "uid", "customerPhone", "phone"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip() in profiles:
            return profiles[value.strip()]
    return None


# =============================================================================
# HELPERS
# =============================================================================

def _normalize_item(item: Any, default_unit_price: float) -> dict:
    if isinstance(item, str):
        item = {"name": item}
    elif not isinstance(item, Mapping):
        item = {}

    quantity = resolve_number(item, ITEM_QUANTITY_CHAIN)
    price = resolve_number(item, ITEM_PRICE_CHAIN) or default_unit_price
    base_price = resolve_number(item, ITEM_BASE_PRICE_CHAIN) or price

    # One priced line is at least one unit
    if quantity <= 0 and price > 0:
        quantity = 1.0

    return {
        "name": resolve_text(item, ITEM_NAME_CHAIN, "Item"),
        "category": resolve_text(item, ITEM_CATEGORY_CHAIN, DEFAULT_CATEGORY),
        "quantity": quantity,
        "price": price,
        "basePrice": base_price,
    }


def _default_item(raw: Mapping, quantity: float, amount: float, rate: float) -> dict:
    frequency = resolve_text(raw, (field("frequency"), field("plan", "frequency"), field("subscription", "frequency")))
    unit_price = amount / quantity if quantity > 0 else rate
    return {
        "name": f"{frequency.title()} Plan" if frequency else DEFAULT_ORDER_ITEM_NAME,
        "category": DEFAULT_CATEGORY,
        "quantity": quantity,
        "price": unit_price,
        "basePrice": rate or unit_price,
    }


def _transaction(raw: Mapping) -> Mapping:
    for key in TRANSACTION_KEYS:
        value = raw.get(key)
        if isinstance(value, Mapping):
            return value
    return {}


def _default_profile_address(profile: Mapping) -> Mapping:
    addresses = profile.get("addresses")
    if not isinstance(addresses, list):
        return {}
    candidates = [a for a in addresses if isinstance(a, Mapping)]
    for address in candidates:
        if parse_flag(address.get("isDefault")):
            return address
    return candidates[0] if candidates else {}


def _format_address(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if not isinstance(value, Mapping):
        return ""
    parts: list[str] = []
    for key in ADDRESS_PARTS:
        part = value.get(key)
        if isinstance(part, (int, float)) and not isinstance(part, bool):
            part = str(part)
        if isinstance(part, str) and part.strip() and part.strip() not in parts:
            parts.append(part.strip())
    return ", ".join(parts)


def _resolve_address(raw: Mapping, profile: Mapping, default_address: Mapping) -> str:
    candidates = (
        default_address.get("address"),
        profile.get("address"),
        raw.get("customerAddress"),
        raw.get("address"),
        raw.get("deliveryAddress"),
        raw.get("shippingAddress"),
        raw,  # flat street/city/pincode fields on the order itself
    )
    for candidate in candidates:
        if candidate is raw:
            flat = {k: raw.get(k) for k in ADDRESS_PARTS if k != "address"}
            text = _format_address(flat)
        else:
            text = _format_address(candidate)
        if text:
            return text
    return DEFAULT_CUSTOMER_ADDRESS


def _resolve_location_link(raw: Mapping, default_address: Mapping) -> Optional[str]:
    link = resolve_text(
        {"raw": raw, "default": default_address},
        (
            field("default", "liveLocationLink"),
            field("default", "locationLink"),
            field("default", "link"),
            field("raw", "locationLink"),
            field("raw", "liveLocationLink"),
            field("raw", "address", "liveLocationLink"),
            field("raw", "address", "locationLink"),
            field("raw", "location", "link"),
        ),
    )
    if link:
        return link
    for source in (default_address, dig(raw, "address"), dig(raw, "location")):
        if not isinstance(source, Mapping):
            continue
        lat = parse_numeric_value(source.get("lat", source.get("latitude")))
        lng = parse_numeric_value(source.get("lng", source.get("longitude")))
        if lat and lng:
            return f"https://www.google.com/maps?q={lat},{lng}"
    return None


def _payment_type(raw: Mapping, payment_method: str) -> str:
    declared = raw.get("paymentType")
    if isinstance(declared, str) and declared.strip().lower() in (PAYMENT_ONLINE, PAYMENT_OFFLINE):
        return declared.strip().lower()
    if payment_method.strip().lower() in ONLINE_PAYMENT_METHODS or parse_flag(raw.get("isOnlinePayment")):
        return PAYMENT_ONLINE
    return PAYMENT_OFFLINE


def _day(value: Any) -> Optional[str]:
    if isinstance(value, str):
        parsed = parse_day(value)
        if parsed:
            return parsed.isoformat()
    moment = coerce_timestamp(value) if not isinstance(value, str) else None
    return day_key(moment) if isinstance(moment, datetime) else None


def _optional_text(value: Any) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None
