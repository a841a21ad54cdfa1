# backend/warehouse/routes/system.py
"""
System health endpoint.

Reports database and identity provider reachability. Public; returns 503
when the database is down. An unreachable identity provider degrades but
does not fail the check, since stock reads and writes do not need it.
"""

import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db, get_idp
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_idp_health() -> dict:
    start_time = time.time()
    available = get_idp().available()
    elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": "healthy" if available else "unhealthy",
        "latency_ms": round(elapsed_ms, 2),
    }


@system_bp.get("/health")
def health():
    database = check_database_health()
    idp = check_idp_health()

    if database["status"] != "healthy":
        status, code = "unhealthy", 503
    elif idp["status"] != "healthy":
        status, code = "degraded", 200
    else:
        status, code = "healthy", 200

    return jsonify({
        "status": status,
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database, "identity_provider": idp},
    }), code
