"""
FPO Lifecycle - Permission adapter

Lifecycle actions are authorized by the AAA service, not locally. Each
action maps to a verb on the ``fpo_lifecycle`` resource; the gateway's
``check_permission`` answers allow / deny.

Usage:
    from fpo_service.services.permission import check_permission

    # Raises Forbidden / LifecycleTimeout / ExternalServiceError
    check_permission(fpo, actor_id="user-1", action="approve")
"""

import logging

from flask import current_app

from fpo_service.constants import AAA_RESOURCE_FPO_LIFECYCLE
from fpo_service.core.exceptions import ExternalServiceError, Forbidden, LifecycleTimeout
from fpo_service.integrations.aaa_gateway import get_aaa_gateway

logger = logging.getLogger(__name__)

# Action → required permission verb
_ACTION_PERMISSION = {
    "submit": "submit",
    "approve": "approve",
    "reject": "approve",         # reviewer permission
    "resubmit": "submit",
    "begin-setup": "provision",
    "retry-setup": "provision",
    "suspend": "manage",
    "deactivate": "manage",
    "reinstate": "manage",
    "reactivate": "manage",
    "archive": "archive",
    "reset-setup-attempts": "override",
    "erase": "erase",
}


def permission_for(action: str) -> str:
    """Permission verb for a lifecycle action (unknown actions need ``manage``)."""
    return _ACTION_PERMISSION.get(action, "manage")


def check_permission(fpo, actor_id: str, action: str, *, deadline=None, request_id: str | None = None) -> None:
    """
    Confirm ``actor_id`` may perform ``action`` on ``fpo``.

    Args:
        fpo: FPORef being transitioned (its ``aaa_org_id`` scopes the check
             once the organization exists).
        actor_id: Who is performing the action.
        action: Lifecycle action string.
        deadline: Optional ``Deadline`` bounding the call.
        request_id: Propagated to the AAA service.

    Raises:
        Forbidden: The AAA service denied the permission.
        LifecycleTimeout: The check did not answer within the deadline.
        ExternalServiceError: The AAA service failed in any other way.
    """
    verb = permission_for(action)
    gateway = get_aaa_gateway()
    timeout = current_app.config.get("AAA_TIMEOUT_SECONDS", 10)
    kwargs = {"request_id": request_id}
    if deadline is not None:
        timeout = deadline.clip(timeout)
        kwargs["deadline"] = deadline.expires_at

    result = gateway.check_permission(
        actor_id, AAA_RESOURCE_FPO_LIFECYCLE, verb, fpo.aaa_org_id,
        timeout=timeout, **kwargs,
    )
    ctx = {"fpo_id": fpo.id, "action": action, "current_status": fpo.status}

    if not result.ok:
        if result.transient and current_app.config.get("AAA_PERMISSION_FAIL_OPEN"):
            logger.warning(
                "Permission check unavailable, allowing actor=%s action=%s (fail-open): %s",
                actor_id, action, result.error,
                extra={"fpo_id": fpo.id, "action": action},
            )
            return
        if result.timed_out:
            raise LifecycleTimeout(
                f"Permission check timed out for FPO {fpo.id}",
                details={"step": "permission_check", **result.to_log_dict()},
                **ctx,
            )
        raise ExternalServiceError(
            f"Permission check failed: {result.error}",
            details={"step": "permission_check", **result.to_log_dict()},
            **ctx,
        )

    if not (result.data or {}).get("allowed"):
        raise Forbidden(actor_id, verb, details={"permission": verb}, **ctx)
