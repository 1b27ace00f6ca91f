# Overview: Flask API routes for customer summaries aggregated from orders.

from flask import Blueprint, request, jsonify

from ..extensions import get_cache, get_store
from ..services import reporting_service
from ..services.ledger_store import COLLECTION_CUSTOMERS


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")

SORT_KEYS = {
    "name": (lambda c: str(c["name"] or "").lower(), False),
    "totalSpent": (lambda c: c["totalSpent"], True),
    "totalOrders": (lambda c: c["totalOrders"], True),
    "lastOrder": (lambda c: c["lastOrderDate"], True),
}


@customers_bp.get("")
def list_customers_route():
    """
    Customers aggregated by phone from normalized orders.

    Query params:
    - search: matches name or phone
    - sort: name | totalSpent | totalOrders | lastOrder
    """
    customers = reporting_service.customer_summaries(
        get_cache().orders(),
        get_store().list_all(COLLECTION_CUSTOMERS),
    )

    term = (request.args.get("search") or "").strip().lower()
    if term:
        customers = [
            c for c in customers
            if term in str(c["name"] or "").lower() or term in str(c["phone"] or "")
        ]

    sort = request.args.get("sort", "name")
    if sort not in SORT_KEYS:
        return jsonify({"error": f"sort must be one of {list(SORT_KEYS)}"}), 400
    key, reverse = SORT_KEYS[sort]
    customers.sort(key=key, reverse=reverse)

    return jsonify({
        "customers": customers,
        "count": len(customers),
        "active": sum(1 for c in customers if c["status"] == "active"),
        "totalRevenue": round(sum(c["totalSpent"] for c in customers), 2),
    })
