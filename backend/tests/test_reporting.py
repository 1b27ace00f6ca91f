from datetime import date, datetime

import pytest

from dairyledger.services.reporting_service import (
    ReportError,
    customer_summaries,
    daily_stock_info,
    filter_by_time_period,
    filter_orders,
    inventory_metrics,
    inventory_report,
    time_period_of,
    time_period_stats,
)


TODAY = date(2026, 10, 18)


def _order(**overrides):
    order = {
        "id": "o1",
        "customerName": "Asha",
        "customerPhone": "9876543210",
        "customerAddress": "12 MG Road",
        "locationLink": None,
        "quantity": 2,
        "totalAmount": 120,
        "status": "completed",
        "orderDate": "2026-10-18",
        "createdAt": "2026-10-18T07:15:00Z",
    }
    order.update(overrides)
    return order


# =============================================================================
# DAILY STOCK
# =============================================================================

def test_daily_stock_counts_todays_completed_orders_only():
    inventory = [
        {"date": "2026-10-18", "stockReceived": 50},
        {"date": "2026-10-17", "stockReceived": 80},
    ]
    orders = [
        _order(quantity=5),
        _order(quantity=3, status="pending"),
        _order(quantity=4, orderDate="2026-10-17"),
    ]

    info = daily_stock_info(inventory, orders, today=TODAY)

    assert info == {
        "date": "2026-10-18",
        "totalReceived": 50,
        "totalSold": 5,
        "availableStock": 45,
        "stockStatus": "sufficient",
    }


@pytest.mark.parametrize(
    "received, sold, available, status",
    [
        (20, 15, 5, "low"),
        (20, 20, 0, "out"),
        (20, 26, 0, "out"),
        (20, 10, 10, "sufficient"),
    ],
)
def test_daily_stock_status(received, sold, available, status):
    info = daily_stock_info(
        [{"date": "2026-10-18", "stockReceived": received}],
        [_order(quantity=sold)],
        today=TODAY,
    )
    assert info["availableStock"] == available
    assert info["stockStatus"] == status


def test_daily_stock_without_records_is_out():
    assert daily_stock_info([], [], today=TODAY)["stockStatus"] == "out"


# =============================================================================
# INVENTORY
# =============================================================================

def test_inventory_metrics():
    record = inventory_metrics({"stockSold": 10, "buyingPrice": 40, "sellingPrice": 60})
    assert record["revenue"] == 600
    assert record["profit"] == 200
    assert record["profitMargin"] == 50.0
    assert record["stockSold"] == 10


def test_inventory_metrics_without_prices_has_zero_margin():
    assert inventory_metrics({"stockSold": 10, "sellingPrice": 60})["profitMargin"] == 0.0


def test_inventory_report_buckets_and_totals():
    records = [
        {"id": "a", "stockReceived": 50, "stockSold": 10, "stockRemaining": 40, "buyingPrice": 40, "sellingPrice": 60},
        {"id": "b", "stockReceived": 20, "stockSold": 15, "stockRemaining": 5, "buyingPrice": 40, "sellingPrice": 50},
        {"id": "c", "stockReceived": 0, "stockSold": 7, "stockRemaining": -7, "buyingPrice": 35, "sellingPrice": 60},
    ]

    report = inventory_report(records, low_threshold=10)

    assert [r["id"] for r in report["lowStock"]] == ["b"]
    assert [r["id"] for r in report["outOfStock"]] == ["c"]
    totals = report["totals"]
    assert totals["stockReceived"] == 70
    assert totals["stockSold"] == 32
    assert totals["revenue"] == 600 + 750 + 420
    assert totals["profit"] == 200 + 150 + 175
    assert totals["averageMargin"] == round((50.0 + 25.0 + 71.43) / 3, 2)


def test_inventory_report_empty():
    report = inventory_report([])
    assert report["records"] == []
    assert report["totals"]["averageMargin"] == 0.0


# =============================================================================
# CUSTOMERS
# =============================================================================

def test_customer_summaries_group_by_phone():
    orders = [
        _order(id="o1", totalAmount=120, orderDate="2026-10-18"),
        _order(id="o2", totalAmount=80, status="pending", orderDate="2026-10-01"),
        _order(id="o3", customerName="Ravi", customerPhone="9000000001", orderDate="2026-08-01"),
    ]

    customers = customer_summaries(orders, today=TODAY)

    assert [c["name"] for c in customers] == ["Asha", "Ravi"]
    asha, ravi = customers
    assert asha["totalOrders"] == 2
    assert asha["totalSpent"] == 120
    assert asha["averageOrderValue"] == 60
    assert asha["lastOrderDate"] == "2026-10-18"
    assert asha["joinDate"] == "2026-10-01"
    assert asha["status"] == "active"
    assert ravi["status"] == "inactive"


def test_customer_summaries_enriched_from_profile():
    profiles = [{
        "phone": "9876543210",
        "email": "asha@example.com",
        "addresses": [
            {"address": "Old flat"},
            {"address": "New house", "isDefault": True, "lat": 18.5, "lng": 73.8},
        ],
    }]

    customer = customer_summaries([_order()], profiles, today=TODAY)[0]

    assert customer["email"] == "asha@example.com"
    assert customer["address"] == "New house"
    assert customer["location"] == {"lat": 18.5, "lng": 73.8, "link": None}


# =============================================================================
# TIME PERIODS
# =============================================================================

@pytest.mark.parametrize(
    "hour, period",
    [(0, "night"), (5, "night"), (6, "morning"), (11, "morning"), (12, None), (17, None), (18, "evening"), (23, "evening")],
)
def test_time_period_of(hour, period):
    assert time_period_of(datetime(2026, 10, 18, hour, 30)) == period


def test_filter_and_stats_by_time_period():
    orders = [
        _order(id="m", createdAt="2026-10-18T07:00:00Z"),
        _order(id="e", createdAt="2026-10-18T19:30:00Z"),
        _order(id="n", createdAt="2026-10-18T02:00:00Z"),
        _order(id="a", createdAt="2026-10-18T14:00:00Z"),
    ]

    assert [o["id"] for o in filter_by_time_period(orders, "evening")] == ["e"]
    assert len(filter_by_time_period(orders, "all")) == 4
    assert time_period_stats(orders) == {"total": 4, "morning": 1, "evening": 1, "night": 1}

    with pytest.raises(ReportError):
        filter_by_time_period(orders, "afternoon")


# =============================================================================
# ORDER FILTERS
# =============================================================================

def test_filter_orders():
    orders = [
        _order(id="o1", customerName="Asha", orderDate="2026-10-18"),
        _order(id="o2", customerName="Ravi", customerPhone="9000000001", status="pending", orderDate="2026-10-14"),
        _order(id="o3", customerName="Meera", customerPhone="9000000002", status="cancelled", orderDate="2026-09-01"),
    ]

    assert [o["id"] for o in filter_orders(orders, status="pending")] == ["o2"]
    assert [o["id"] for o in filter_orders(orders, search="asha")] == ["o1"]
    assert [o["id"] for o in filter_orders(orders, search="0000002")] == ["o3"]
    assert [o["id"] for o in filter_orders(orders, date_range="today", today=TODAY)] == ["o1"]
    assert [o["id"] for o in filter_orders(orders, date_range="week", today=TODAY)] == ["o1", "o2"]
    assert len(filter_orders(orders, date_range="all")) == 3


@pytest.mark.parametrize("kwargs", [{"status": "shipped"}, {"date_range": "year"}, {"time_period": "noon"}])
def test_filter_orders_rejects_unknown_values(kwargs):
    with pytest.raises(ReportError):
        filter_orders([_order()], **kwargs)
