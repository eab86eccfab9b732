# backend/apexflow/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports reconciliation intents that still
need attention.
"""

import time
from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import Order, ReconciliationIntent
from apexflow.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        open_intents = (
            db.session.query(ReconciliationIntent)
            .filter(ReconciliationIntent.status.in_(("PENDING", "FAILED")))
            .count()
        )
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "open_reconciliation_intents": open_intents,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503
