"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  - simple 200 for load balancers
    GET /api/v1/health/live   - dependency status (database, AAA gateway config, last sweep)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from fpo_service.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check - always 200 if app is running."""
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
        logger.error("Health check - database failed: %s", exc)

    # ── AAA gateway (configuration only; no outbound call) ───────────
    gateway = current_app.extensions.get("aaa_gateway")
    if gateway is None:
        checks["aaa_gateway"] = {"status": "not_configured"}
        overall = False
    else:
        checks["aaa_gateway"] = {"status": "ok", "base_url": getattr(gateway, "base_url", None)}

    # ── Setup retry sweep (informational) ────────────────────────────
    scheduler = current_app.extensions.get("scheduler")
    last = scheduler.last_run("fpo_setup_retry_sweep") if scheduler else None
    checks["setup_retry_sweep"] = (
        {"status": last["status"], "started_at": last["started_at"]} if last else {"status": "never_run"}
    )

    status_code = 200 if overall else 503
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), status_code
