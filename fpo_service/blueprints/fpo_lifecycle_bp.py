"""
FPO lifecycle endpoints.

Endpoints:
    POST   /api/v1/fpos                              - register (DRAFT)
    GET    /api/v1/fpos/<id>                         - detail
    GET    /api/v1/fpos/by-org/<aaa_org_id>          - lookup by AAA org id
    POST   /api/v1/fpos/<id>/transition              - lifecycle transition
    POST   /api/v1/fpos/<id>/reset-setup-attempts    - lift the retry cap
    DELETE /api/v1/fpos/<id>                         - compliance erasure
    GET    /api/v1/fpos/<id>/history                 - audit ledger, oldest first

The request id comes from ``g.request_id`` (X-Request-ID header or
generated by the timing middleware).
"""

import logging

from flask import Blueprint, g, jsonify, request

from fpo_service.blueprints import page_args
from fpo_service.core.exceptions import AuditLedgerError, LifecycleError
from fpo_service.models import db
from fpo_service.services.fpo_lifecycle import (
    erase_fpo,
    get_fpo,
    get_fpo_by_aaa_org_id,
    get_history,
    register_fpo,
    reset_setup_attempts,
    transition_fpo,
)
from fpo_service.utils.errors import E, api_error, lifecycle_error_response

logger = logging.getLogger(__name__)

fpo_lifecycle_bp = Blueprint("fpo_lifecycle", __name__, url_prefix="/api/v1/fpos")


@fpo_lifecycle_bp.errorhandler(LifecycleError)
def _handle_lifecycle_error(exc):
    db.session.rollback()
    return lifecycle_error_response(exc)


@fpo_lifecycle_bp.errorhandler(AuditLedgerError)
def _handle_ledger_error(exc):
    db.session.rollback()
    return api_error(
        E.AUDIT_LEDGER,
        "The change was saved but its audit entry could not be written",
        details={"fpo_id": exc.fpo_id, "action": exc.action, "current_status": exc.current_status},
    )


def _json_body() -> dict | None:
    """Request JSON as a dict: ``{}`` when there is no body, None when it is not an object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _actor(data: dict) -> str | None:
    return data.get("actor_id") or request.headers.get("X-Actor-ID")


def _timeout(data: dict):
    raw = data.get("timeout")
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return False
    return value if value > 0 else False


# ═════════════════════════════════════════════════════════════════════════════
# Registration & reads
# ═════════════════════════════════════════════════════════════════════════════

@fpo_lifecycle_bp.route("", methods=["POST"])
def create_fpo():
    """Register a new FPO in DRAFT."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "request body must be a JSON object")
    actor_id = _actor(data)
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

    result = register_fpo(data, created_by=actor_id, request_id=g.request_id)
    return jsonify(result), 201


@fpo_lifecycle_bp.route("/<fpo_id>", methods=["GET"])
def get_fpo_endpoint(fpo_id):
    return jsonify(get_fpo(fpo_id))


@fpo_lifecycle_bp.route("/by-org/<aaa_org_id>", methods=["GET"])
def get_fpo_by_org_endpoint(aaa_org_id):
    return jsonify(get_fpo_by_aaa_org_id(aaa_org_id))


@fpo_lifecycle_bp.route("/<fpo_id>/history", methods=["GET"])
def history_endpoint(fpo_id):
    """Audit ledger for one FPO, oldest first."""
    page, per_page = page_args()
    return jsonify(get_history(fpo_id, page=page, per_page=per_page))


# ═════════════════════════════════════════════════════════════════════════════
# Transitions & overrides
# ═════════════════════════════════════════════════════════════════════════════

@fpo_lifecycle_bp.route("/<fpo_id>/transition", methods=["POST"])
def transition_endpoint(fpo_id):
    """Execute an FPO lifecycle transition."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "request body must be a JSON object")
    action = data.get("action")
    actor_id = _actor(data)

    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    timeout = _timeout(data)
    if timeout is False:
        return api_error(E.VALIDATION_INVALID, "timeout must be a positive number of seconds")

    result = transition_fpo(
        fpo_id, action, actor_id,
        reason=data.get("reason"),
        request_id=g.request_id,
        timeout=timeout,
    )
    return jsonify(result)


@fpo_lifecycle_bp.route("/<fpo_id>/reset-setup-attempts", methods=["POST"])
def reset_setup_attempts_endpoint(fpo_id):
    """Reset setup_attempts for a SETUP_FAILED FPO (operator override)."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "request body must be a JSON object")
    actor_id = _actor(data)
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

    result = reset_setup_attempts(fpo_id, actor_id, reason=data.get("reason"), request_id=g.request_id)
    return jsonify(result)


@fpo_lifecycle_bp.route("/<fpo_id>", methods=["DELETE"])
def erase_fpo_endpoint(fpo_id):
    """Compliance erasure of an ARCHIVED FPO."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "request body must be a JSON object")
    actor_id = _actor(data)
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

    result = erase_fpo(fpo_id, actor_id, reason=data.get("reason"), request_id=g.request_id)
    return jsonify(result)
