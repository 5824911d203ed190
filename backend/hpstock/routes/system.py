# backend/hpstock/routes/system.py
"""
Health endpoint: database reachability plus basic ledger counts.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Location, StockEntry, StockEvent
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "locations": db.session.query(Location).count(),
            "stock_events": db.session.query(StockEvent).count(),
            "stock_entries": db.session.query(StockEntry).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "checked_at": to_utc_z(utcnow()),
        "database": database,
    }
    return body, 200 if healthy else 503
