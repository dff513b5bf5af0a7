"""
Service-wide exception hierarchy.

Every lifecycle failure a caller can recover from derives from
``LifecycleError`` and carries the organization's true status after the
failed call (``current_status``), so the HTTP layer can report it without a
second read. Blueprints register handlers against these types once and get
consistent status codes everywhere.

Usage:
    from fpo_service.core.exceptions import InvalidTransition, NotFoundError

    raise NotFoundError(resource="FPO", resource_id=fpo_id)
    raise InvalidTransition(fpo_id, "approve", FPOStatus.DRAFT)
"""


def _status_value(status):
    return getattr(status, "value", status)


class LifecycleError(Exception):
    """Base class for recoverable lifecycle failures.

    Args:
        message: Human-readable explanation.
        fpo_id: Organization the call targeted.
        action: Requested lifecycle action (string form).
        current_status: Status of the organization after the failed call.
        details: Extra structured context, copied into the audit entry.
    """

    code = "ERR_LIFECYCLE"

    def __init__(
        self,
        message: str,
        *,
        fpo_id: str | None = None,
        action=None,
        current_status=None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.fpo_id = fpo_id
        self.action = _status_value(action)
        self.current_status = _status_value(current_status)
        self.details = details or {}


class NotFoundError(LifecycleError):
    """Raised when a requested resource does not exist (or was erased).

    Args:
        resource: Human-readable entity name (e.g. "FPO").
        resource_id: The key that was looked up.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: str | None = None, *, action=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, fpo_id=resource_id, action=action)


class Forbidden(LifecycleError):
    """Raised when the permission check denies the actor."""

    code = "ERR_FORBIDDEN"

    def __init__(self, actor_id: str, permission: str, **kwargs) -> None:
        super().__init__(
            f"Actor {actor_id} does not have permission '{permission}'", **kwargs,
        )
        self.actor_id = actor_id
        self.permission = permission


class InvalidTransition(LifecycleError):
    """Raised when the action is not valid from the current status."""

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, fpo_id: str | None, action, from_status, reason: str | None = None) -> None:
        msg = f"Cannot '{_status_value(action)}' FPO {fpo_id} (status={_status_value(from_status)})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, fpo_id=fpo_id, action=action, current_status=from_status)
        self.from_status = _status_value(from_status)
        self.reason = reason


class ConcurrentModification(LifecycleError):
    """Raised when the optimistic-lock guard finds the record changed underneath."""

    code = "ERR_CONCURRENT_MODIFICATION"


class RetryExhausted(LifecycleError):
    """Raised when setup retry is requested with ``setup_attempts`` at the cap."""

    code = "ERR_RETRY_EXHAUSTED"

    def __init__(self, fpo_id: str, attempts: int, max_attempts: int, **kwargs) -> None:
        super().__init__(
            f"FPO {fpo_id} reached the maximum setup attempts ({attempts}/{max_attempts})",
            fpo_id=fpo_id,
            details={"setup_attempts": attempts, "max_attempts": max_attempts},
            **kwargs,
        )
        self.attempts = attempts
        self.max_attempts = max_attempts


class LifecycleTimeout(LifecycleError):
    """Raised when a blocking external call or the transition deadline expires."""

    code = "ERR_TIMEOUT"


class TransitionCancelled(LifecycleError):
    """Raised when the caller cancels a transition before it commits."""

    code = "ERR_CANCELLED"


class ExternalServiceError(LifecycleError):
    """Raised when the AAA service answers with an unexpected error."""

    code = "ERR_EXTERNAL_SERVICE"


class ValidationError(LifecycleError):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, details=details)


class ConflictError(LifecycleError):
    """Raised when an operation would violate a unique constraint."""

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class ProvisioningFailed:
    """Describes a failed provisioning step.

    Not an exception: a failed step is an expected business outcome that the
    lifecycle service absorbs into ``SETUP_FAILED``.
    """

    def __init__(self, step: str, cause: str, *, transient: bool = False) -> None:
        self.step = step
        self.cause = cause
        self.transient = transient

    def to_dict(self) -> dict:
        return {"step": self.step, "cause": self.cause, "transient": self.transient}

    def __repr__(self):
        return f"<ProvisioningFailed step={self.step} transient={self.transient}>"


class ImmutableRecordError(Exception):
    """Raised when code tries to update or delete an audit ledger row."""

    def __init__(self, entity_type: str, entity_id: str | None, operation: str) -> None:
        super().__init__(f"{entity_type} {entity_id} is immutable ({operation} blocked)")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation


class AuditLedgerError(Exception):
    """Raised when the ledger write fails after the record commit.

    Fatal: the record store and the ledger have drifted and need operator
    reconciliation.
    """

    def __init__(self, fpo_id: str, action: str, current_status, cause: Exception) -> None:
        super().__init__(f"Audit ledger write failed for FPO {fpo_id} action={action}: {cause}")
        self.fpo_id = fpo_id
        self.action = action
        self.current_status = _status_value(current_status)
        self.cause = cause
