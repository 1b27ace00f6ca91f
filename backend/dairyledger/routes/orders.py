# Overview: Flask API routes for orders; parses input, calls the propagator and returns JSON responses.

# backend/dairyledger/routes/orders.py
"""
Order API Routes

WHY: Orders are the only entity whose writes carry side effects. Every
mutation here goes through the ConsistencyPropagator so inventory and
payments follow the order.

DESIGN:
- Reads come from the live projection cache (normalized orders)
- POST/PATCH validate client input before the propagator sees it
- POST /raw is the upstream write path: the raw document is stored as-is,
  with no validation and no side effects
- Side-effect failures never fail the request (see propagation_service)
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import get_cache, get_propagator, get_store
from ..services import reporting_service
from ..services.ledger_store import COLLECTION_ORDERS, LedgerStoreError
from ..services.propagation_service import OrderNotFound
from ..services.reporting_service import ReportError
from ..validation import (
    ORDER_POLICY,
    ValidationError,
    enforce_rules_order,
    validate_payload,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _available_stock() -> float:
    cache = get_cache()
    info = reporting_service.daily_stock_info(
        cache.inventory(),
        cache.orders(),
        low_threshold=current_app.config["LOW_STOCK_THRESHOLD"],
    )
    return info["availableStock"]


@orders_bp.get("")
def list_orders_route():
    """
    List normalized orders, newest first.

    Query params:
    - status: all | pending | completed | cancelled
    - search: matches customer name, phone or order id
    - date_range: all | today | week | month
    - time_period: all | morning | evening | night
    """
    cache = get_cache()
    try:
        orders = reporting_service.filter_orders(
            cache.orders(),
            status=request.args.get("status"),
            search=request.args.get("search"),
            date_range=request.args.get("date_range"),
            time_period=request.args.get("time_period"),
        )
    except ReportError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "orders": orders,
        "count": len(orders),
        "stats": reporting_service.time_period_stats(orders),
        "loading": cache.loading,
    })


@orders_bp.get("/<order_id>")
def get_order_route(order_id: str):
    order = get_cache().get_order(order_id)
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order})


@orders_bp.post("")
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "customerName": "Asha",
        "customerPhone": "9876543210",
        "quantity": 2,
        "pricePerLiter": 60,
        "orderDate": "2026-10-18",
        "deliveryDate": "2026-10-19",
        "status": "pending",           (optional)
        "paymentType": "offline"       (optional)
    }

    Returns:
        201: Order created; inventory adjusted, payment created if completed
        400: Invalid input
        500: Order write failed
    """
    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(payload=payload, policy=ORDER_POLICY, partial=False)
        enforce_rules_order(patch, config=current_app.config, available_stock=_available_stock())
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    patch.setdefault("status", "pending")
    patch.setdefault("paymentType", "offline")

    try:
        order_id = get_propagator().add_order(patch)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"id": order_id, "order": get_cache().get_order(order_id)}), 201


@orders_bp.patch("/<order_id>")
def update_order_route(order_id: str):
    """
    Partially update an order.

    Returns:
        200: Order updated
        400: Invalid input
        404: Order not found
    """
    current = get_cache().get_order(order_id)
    if current is None:
        return jsonify({"error": "Order not found"}), 404

    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(payload=payload, policy=ORDER_POLICY, partial=True)
        enforce_rules_order(patch, config=current_app.config, current=current)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        get_propagator().update_order(order_id, patch)
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to update order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"order": get_cache().get_order(order_id)})


@orders_bp.delete("/<order_id>")
def delete_order_route(order_id: str):
    try:
        get_propagator().delete_order(order_id)
    except OrderNotFound:
        return jsonify({"error": "Order not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to delete order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
    return "", 204


@orders_bp.post("/raw")
def ingest_raw_order_route():
    """
    Store an upstream order document verbatim (no validation, no side effects).

    The document only has to be a JSON object; shape is recovered by the
    normalizer on read.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    try:
        order_id = get_store().insert(COLLECTION_ORDERS, payload)
    except LedgerStoreError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to store raw order")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"id": order_id, "order": get_cache().get_order(order_id)}), 201
