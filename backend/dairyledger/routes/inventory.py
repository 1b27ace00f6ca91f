# backend/dairyledger/routes/inventory.py
"""
Inventory record routes.

One record per calendar day. Records are written here directly by staff
and implicitly by order side effects (see propagation_service).

Time semantics:
- date is a "YYYY-MM-DD" day key; stockRemaining = stockReceived - stockSold
  on manual writes, and may go negative through order adjustments (backlog).
"""
from flask import Blueprint, request, current_app

from ..extensions import get_cache, get_propagator
from ..services import reporting_service
from ..services.ledger_store import DocumentNotFound
from ..services.reporting_service import ReportError
from ..validation import (
    INVENTORY_POLICY,
    ConflictError,
    ValidationError,
    enforce_rules_inventory,
    validate_payload,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _find_record(record_id: str):
    for record in get_cache().inventory():
        if record.get("id") == record_id:
            return record
    return None


@inventory_bp.get("")
def list_inventory_route():
    """
    Inventory records with revenue/profit/margin, plus low and out-of-stock lists.

    Query params:
    - time_period: all | morning | evening | night
    """
    try:
        records = reporting_service.filter_by_time_period(
            get_cache().inventory(),
            request.args.get("time_period") or reporting_service.PERIOD_ALL,
        )
    except ReportError as e:
        return {"error": str(e)}, 400

    return reporting_service.inventory_report(
        records,
        low_threshold=current_app.config["LOW_STOCK_THRESHOLD"],
    )


@inventory_bp.get("/daily-stock")
def daily_stock_route():
    cache = get_cache()
    return reporting_service.daily_stock_info(
        cache.inventory(),
        cache.orders(),
        low_threshold=current_app.config["LOW_STOCK_THRESHOLD"],
    )


@inventory_bp.post("")
def create_inventory_record_route():
    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(payload=payload, policy=INVENTORY_POLICY, partial=False)
        enforce_rules_inventory(patch)
        record_id = get_propagator().add_inventory_record(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"id": record_id, "record": _find_record(record_id)}, 201


@inventory_bp.patch("/<record_id>")
def update_inventory_record_route(record_id: str):
    current = _find_record(record_id)
    if current is None:
        return {"error": "Inventory record not found"}, 404

    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(payload=payload, policy=INVENTORY_POLICY, partial=True)
        enforce_rules_inventory(patch, current=current)
        get_propagator().update_inventory_record(record_id, patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except DocumentNotFound:
        return {"error": "Inventory record not found"}, 404

    return {"record": _find_record(record_id)}


@inventory_bp.delete("/<record_id>")
def delete_inventory_record_route(record_id: str):
    try:
        get_propagator().delete_inventory_record(record_id)
    except DocumentNotFound:
        return {"error": "Inventory record not found"}, 404
    return "", 204
