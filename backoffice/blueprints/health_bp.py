"""
Health check blueprint.

Endpoints:
    GET /health/ready  — simple 200 for load balancers
    GET /health/live   — dependency status (database, document queue)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from backoffice.models import db
from backoffice.services import document_queue
from backoffice.services.queue_runner import queue_runner

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Document queue ───────────────────────────────────────────────
    if overall:
        counts = document_queue.status_counts()
        checks["document_queue"] = {
            "status": "ok",
            "counts": counts,
            "drain_running": queue_runner.running,
        }

    checks["app"] = {
        "name": "Billing Back Office",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
