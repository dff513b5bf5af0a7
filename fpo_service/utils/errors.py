"""JSON error bodies for the HTTP layer.

Body shape: ``{"error": <message>, "code": <ERR_*>, "details": {...}}``.
``details`` is omitted when empty. For lifecycle failures it always holds
``current_status`` once the organization was found.

    from fpo_service.utils.errors import E, api_error

    return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
"""

from __future__ import annotations

from flask import jsonify

from fpo_service.core.exceptions import (
    ConcurrentModification,
    ConflictError,
    ExternalServiceError,
    Forbidden,
    InvalidTransition,
    LifecycleError,
    LifecycleTimeout,
    NotFoundError,
    RetryExhausted,
    TransitionCancelled,
    ValidationError,
)


class E:
    """Error codes. Lifecycle codes are read off the exception classes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = ValidationError.code
    NOT_FOUND = NotFoundError.code
    CONFLICT_DUPLICATE = ConflictError.code
    INVALID_TRANSITION = InvalidTransition.code
    CONCURRENT_MODIFICATION = ConcurrentModification.code
    RETRY_EXHAUSTED = RetryExhausted.code
    CANCELLED = TransitionCancelled.code
    FORBIDDEN = Forbidden.code
    EXTERNAL_SERVICE = ExternalServiceError.code
    TIMEOUT = LifecycleTimeout.code
    INTERNAL = "ERR_INTERNAL"
    AUDIT_LEDGER = "ERR_AUDIT_LEDGER"


_CODES_BY_STATUS = {
    400: (E.VALIDATION_REQUIRED, E.VALIDATION_INVALID),
    403: (E.FORBIDDEN,),
    404: (E.NOT_FOUND,),
    409: (
        E.CONFLICT_DUPLICATE,
        E.INVALID_TRANSITION,
        E.CONCURRENT_MODIFICATION,
        E.RETRY_EXHAUSTED,
        E.CANCELLED,
    ),
    500: (E.INTERNAL, E.AUDIT_LEDGER),
    502: (E.EXTERNAL_SERVICE,),
    504: (E.TIMEOUT,),
}

HTTP_STATUS: dict[str, int] = {
    code: status for status, codes in _CODES_BY_STATUS.items() for code in codes
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a Flask view.

    ``status`` defaults to the code's entry in ``HTTP_STATUS`` (400 for
    unknown codes).
    """
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or HTTP_STATUS.get(code, 400)


def lifecycle_error_response(exc: LifecycleError):
    """Render a ``LifecycleError`` with the organization's status after the call."""
    details = {**exc.details}
    if exc.current_status is not None:
        details["current_status"] = exc.current_status
    if exc.action is not None and "action" not in details:
        details["action"] = exc.action
    return api_error(exc.code, str(exc), details=details)
