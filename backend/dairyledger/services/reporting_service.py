# Overview: Read-side reports over projected collections; daily stock, inventory metrics, customers and time periods.

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping, Optional

from .derivation import parse_numeric_value, round_money, round_quantity
from .normalizer import CANONICAL_STATUSES, STATUS_COMPLETED
from ..time_utils import coerce_timestamp, parse_day, utcnow


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


STOCK_OUT = "out"
STOCK_LOW = "low"
STOCK_SUFFICIENT = "sufficient"

PERIOD_ALL = "all"
PERIOD_MORNING = "morning"
PERIOD_EVENING = "evening"
PERIOD_NIGHT = "night"
TIME_PERIODS = (PERIOD_ALL, PERIOD_MORNING, PERIOD_EVENING, PERIOD_NIGHT)

PERIOD_LABELS = {
    PERIOD_MORNING: "Morning (6 AM - 12 PM)",
    PERIOD_EVENING: "Evening (6 PM - 12 AM)",
    PERIOD_NIGHT: "Night (12 AM - 6 AM)",
    PERIOD_ALL: "All Day",
}

DATE_RANGES = ("all", "today", "week", "month")
DATE_RANGE_DAYS = {"week": 7, "month": 30}

ACTIVE_CUSTOMER_DAYS = 30


def _today(today: Optional[date]) -> date:
    return today or utcnow().date()


# =============================================================================
# DAILY STOCK
# =============================================================================

def daily_stock_info(
    inventory: Iterable[Mapping],
    orders: Iterable[Mapping],
    *,
    today: Optional[date] = None,
    low_threshold: float = 10,
) -> dict:
    """
    Today's stock position: received on today's records minus the quantity
    of today's completed orders.

    available is clamped at 0; status is judged on the unclamped value.
    """
    day = _today(today).isoformat()
    received = sum(parse_numeric_value(r.get("stockReceived")) for r in inventory if r.get("date") == day)
    sold = sum(
        parse_numeric_value(o.get("quantity"))
        for o in orders
        if o.get("status") == STATUS_COMPLETED and o.get("orderDate") == day
    )
    available = received - sold

    if available <= 0:
        status = STOCK_OUT
    elif available < low_threshold:
        status = STOCK_LOW
    else:
        status = STOCK_SUFFICIENT

    return {
        "date": day,
        "totalReceived": round_quantity(received),
        "totalSold": round_quantity(sold),
        "availableStock": round_quantity(max(0.0, available)),
        "stockStatus": status,
    }


# =============================================================================
# INVENTORY METRICS
# =============================================================================

def inventory_metrics(record: Mapping) -> dict:
    """Revenue, profit and margin (markup over buying price, in percent) for one record."""
    sold = parse_numeric_value(record.get("stockSold"))
    buying = parse_numeric_value(record.get("buyingPrice"))
    selling = parse_numeric_value(record.get("sellingPrice"))
    margin = (selling - buying) / buying * 100.0 if buying and selling else 0.0
    return {
        **record,
        "revenue": round_money(sold * selling),
        "profit": round_money(sold * (selling - buying)),
        "profitMargin": round(margin, 2),
    }


def inventory_report(
    inventory: Iterable[Mapping],
    *,
    low_threshold: float = 10,
) -> dict:
    records = [inventory_metrics(r) for r in inventory]
    low = [r for r in records if 0 < parse_numeric_value(r.get("stockRemaining")) < low_threshold]
    out = [r for r in records if parse_numeric_value(r.get("stockRemaining")) <= 0]
    count = len(records)
    return {
        "records": records,
        "lowStock": low,
        "outOfStock": out,
        "totals": {
            "stockReceived": round_quantity(sum(parse_numeric_value(r.get("stockReceived")) for r in records)),
            "stockSold": round_quantity(sum(parse_numeric_value(r.get("stockSold")) for r in records)),
            "revenue": round_money(sum(r["revenue"] for r in records)),
            "profit": round_money(sum(r["profit"] for r in records)),
            "averageMargin": round(sum(r["profitMargin"] for r in records) / count, 2) if count else 0.0,
        },
    }


# =============================================================================
# CUSTOMERS
# =============================================================================

def customer_summaries(
    orders: Iterable[Mapping],
    profiles: Iterable[Mapping] = (),
    *,
    today: Optional[date] = None,
) -> list[dict]:
    """
    Aggregate normalized orders by customer phone.

    Spend counts completed orders only. A customer is active when the last
    order date is within the last 30 days. Profiles matched by phone add
    email, the default address and its location.
    """
    customers: dict[str, dict] = {}
    for order in orders:
        phone = order.get("customerPhone") or ""
        order_date = order.get("orderDate") or ""
        customer = customers.get(phone)
        if customer is None:
            customer = customers[phone] = {
                "id": phone,
                "name": order.get("customerName"),
                "phone": phone,
                "address": order.get("customerAddress"),
                "email": None,
                "location": {"link": order["locationLink"]} if order.get("locationLink") else None,
                "totalOrders": 0,
                "totalSpent": 0.0,
                "lastOrderDate": "",
                "joinDate": order_date,
            }
        customer["totalOrders"] += 1
        if order.get("status") == STATUS_COMPLETED:
            customer["totalSpent"] += parse_numeric_value(order.get("totalAmount"))
        if order_date > customer["lastOrderDate"]:
            customer["lastOrderDate"] = order_date
        if order_date and (not customer["joinDate"] or order_date < customer["joinDate"]):
            customer["joinDate"] = order_date

    cutoff = _today(today) - timedelta(days=ACTIVE_CUSTOMER_DAYS)
    for customer in customers.values():
        customer["totalSpent"] = round_money(customer["totalSpent"])
        customer["averageOrderValue"] = (
            round_money(customer["totalSpent"] / customer["totalOrders"]) if customer["totalOrders"] else 0.0
        )
        last = parse_day(customer["lastOrderDate"])
        customer["status"] = "active" if last and last > cutoff else "inactive"

    for profile in profiles:
        phone = profile.get("phone") or profile.get("phoneNumber")
        customer = customers.get(phone) if phone else None
        if customer is None:
            continue
        customer["email"] = profile.get("email")
        addresses = [a for a in profile.get("addresses") or [] if isinstance(a, Mapping)]
        if addresses:
            default = next((a for a in addresses if a.get("isDefault")), addresses[0])
            customer["address"] = default.get("address") or customer["address"]
            customer["location"] = {
                "lat": default.get("lat"),
                "lng": default.get("lng"),
                "link": default.get("liveLocationLink"),
            }

    return sorted(customers.values(), key=lambda c: (str(c["name"] or "").lower(), c["phone"]))


# =============================================================================
# TIME PERIODS
# =============================================================================

def _item_time(item: Mapping) -> Optional[datetime]:
    if item.get("createdAt"):
        stamp = coerce_timestamp(item.get("createdAt"))
        if stamp:
            return stamp
    return coerce_timestamp(item.get("date") or item.get("orderDate"))


def time_period_of(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    if 6 <= moment.hour < 12:
        return PERIOD_MORNING
    if 18 <= moment.hour < 24:
        return PERIOD_EVENING
    if 0 <= moment.hour < 6:
        return PERIOD_NIGHT
    return None


def filter_by_time_period(items: Iterable[Mapping], period: str) -> list:
    if period not in TIME_PERIODS:
        raise ReportError(f"time period must be one of {list(TIME_PERIODS)}")
    items = list(items)
    if period == PERIOD_ALL:
        return items
    return [item for item in items if time_period_of(_item_time(item)) == period]


def time_period_stats(items: Iterable[Mapping]) -> dict:
    items = list(items)
    stats = {"total": len(items), PERIOD_MORNING: 0, PERIOD_EVENING: 0, PERIOD_NIGHT: 0}
    for item in items:
        period = time_period_of(_item_time(item))
        if period:
            stats[period] += 1
    return stats


# =============================================================================
# ORDER FILTERS
# =============================================================================

def filter_orders(
    orders: Iterable[Mapping],
    *,
    status: Optional[str] = None,
    search: Optional[str] = None,
    date_range: Optional[str] = None,
    time_period: Optional[str] = None,
    today: Optional[date] = None,
) -> list:
    """Apply the order list filters in order: time period, status, search, date range."""
    result = filter_by_time_period(orders, time_period or PERIOD_ALL)

    if status and status != "all":
        if status not in CANONICAL_STATUSES:
            raise ReportError(f"status must be one of {['all', *CANONICAL_STATUSES]}")
        result = [o for o in result if o.get("status") == status]

    term = (search or "").strip().lower()
    if term:
        result = [
            o
            for o in result
            if term in str(o.get("customerName") or "").lower()
            or term in str(o.get("customerPhone") or "")
            or term in str(o.get("id") or "")
        ]

    if date_range and date_range != "all":
        if date_range not in DATE_RANGES:
            raise ReportError(f"date_range must be one of {list(DATE_RANGES)}")
        day = _today(today)
        if date_range == "today":
            result = [o for o in result if o.get("orderDate") == day.isoformat()]
        else:
            since = day - timedelta(days=DATE_RANGE_DAYS[date_range])
            result = [o for o in result if _within(o.get("orderDate"), since, day)]

    return result


def _within(value: Any, since: date, day: date) -> bool:
    parsed = parse_day(value)
    return bool(parsed) and (parsed > since or parsed == day)
