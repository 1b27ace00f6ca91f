# backend/dairyledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and the projection cache's per-collection
subscription state.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, get_cache
from ..models import LedgerDocument, OutboxEvent
from ..services.outbox_service import STATUS_FAILED
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        document_count = db.session.query(LedgerDocument).count()
        failed_events = db.session.query(OutboxEvent).filter_by(status=STATUS_FAILED).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "documents": document_count,
                "failed_side_effects": failed_events,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_projection_health() -> dict:
    """Stale collections degrade the service; they still serve their last state."""
    status = get_cache().status()
    stale = [name for name, info in status["collections"].items() if info["stale"]]
    if stale:
        return {"status": "degraded", "warning": f"Stale collections: {', '.join(stale)}", "details": status}
    return {"status": "healthy", "details": status}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unhealthy
    """
    database_health = check_database_health()
    projection_health = check_projection_health() if database_health["status"] == "healthy" else {
        "status": "unknown"
    }

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif projection_health["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
            "projection_cache": projection_health,
        }
    }

    return response, http_status
