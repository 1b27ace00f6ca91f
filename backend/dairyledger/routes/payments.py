# Overview: Flask API routes for payments; parses input and returns JSON responses.

# backend/dairyledger/routes/payments.py
"""
Payment API Routes

Payments are created automatically when an order is completed, or
manually here. Either way there is at most one payment per orderId.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import get_cache, get_propagator
from ..services import reporting_service
from ..services.derivation import parse_numeric_value, round_money
from ..validation import (
    PAYMENT_POLICY,
    ConflictError,
    ValidationError,
    enforce_rules_payment,
    validate_payload,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.get("")
def list_payments_route():
    """
    List payments, newest first.

    Query params:
    - status: completed | pending
    - type: online | offline
    """
    payments = get_cache().payments()
    status = request.args.get("status")
    payment_type = request.args.get("type")
    if status:
        payments = [p for p in payments if p.get("status") == status]
    if payment_type:
        payments = [p for p in payments if p.get("type") == payment_type]

    return jsonify({
        "payments": payments,
        "count": len(payments),
        "totalAmount": round_money(sum(parse_numeric_value(p.get("amount")) for p in payments)),
        "stats": reporting_service.time_period_stats(payments),
    })


@payments_bp.post("")
def add_payment_route():
    """
    Record a manual payment.

    Request body:
    {
        "customerName": "Asha",
        "amount": 120,
        "date": "2026-10-18",
        "orderId": "...",          (optional)
        "type": "offline",         (optional)
        "status": "completed"      (optional)
    }

    Returns:
        201: Payment created
        400: Invalid input
        409: The order already has a payment
    """
    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(payload=payload, policy=PAYMENT_POLICY, partial=False)
        enforce_rules_payment(patch)
        payment_id = get_propagator().add_payment(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to add payment")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"id": payment_id}), 201
