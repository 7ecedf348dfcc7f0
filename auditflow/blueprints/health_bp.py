"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — detailed health (DB, live-event backend)
    GET /api/v1/health/ready  — simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from auditflow.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("", methods=["GET"])
def health():
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
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Live events ──────────────────────────────────────────────────
    backend = current_app.extensions.get("live_events")
    if backend is None:
        checks["live_events"] = {"status": "not_configured"}
    else:
        try:
            ok = backend.ping()
            checks["live_events"] = {"status": "ok" if ok else "error", "backend": backend.name}
            overall = overall and ok
        except Exception as exc:
            checks["live_events"] = {"status": "error", "backend": backend.name, "detail": str(exc)}
            overall = False
            logger.error("Health check — live events failed: %s", exc)

    status = "healthy" if overall else "degraded"
    return jsonify({"status": status, "checks": checks}), 200 if overall else 503
