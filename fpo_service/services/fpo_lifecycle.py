"""
FPO Lifecycle Service - Lifecycle Controller

Single entry point for every FPO status change:
  1. Load the record (NotFoundError if absent or erased)
  2. Permission check through the AAA service (Forbidden)
  3. Transition validation against FPO_TRANSITIONS (InvalidTransition),
     plus the setup-attempt cap for retry-setup (RetryExhausted)
  4. Provisioning, collapsed into ACTIVE / SETUP_FAILED, when the target
     is PENDING_SETUP
  5. Version-guarded UPDATE of the lifecycle fields (ConcurrentModification)
  6. Audit ledger entry

Failed attempts in steps 1-4 leave the status untouched and are written to
the ledger with ``outcome="failed"``. NotFound is audited only for erased
records (an unknown id has no row to key the entry to). ConcurrentModification
is never audited.

Provisioning actions take the record's setup claim before the first AAA call,
so a competing setup fails with ConcurrentModification without side effects.

The record update and the ledger entry are committed separately; the record
is authoritative. A ledger write failing after the record commit is logged
at CRITICAL and raised as AuditLedgerError.

Usage:
    from fpo_service.services.fpo_lifecycle import transition_fpo

    result = transition_fpo(
        fpo_id="abc",
        action="approve",
        actor_id="user-1",
        reason="documents verified",
        request_id="req-42",
    )
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from fpo_service.core.exceptions import (
    AuditLedgerError,
    ConcurrentModification,
    ConflictError,
    InvalidTransition,
    LifecycleError,
    LifecycleTimeout,
    NotFoundError,
    TransitionCancelled,
    ValidationError,
)
from fpo_service.models import db
from fpo_service.models.audit import OUTCOME_FAILED, OUTCOME_SUCCESS, history_query, write_audit
from fpo_service.models.fpo import (
    VERIFICATION_PENDING,
    VERIFICATION_REJECTED,
    VERIFICATION_VERIFIED,
    FPOAction,
    FPORef,
    FPOStatus,
    empty_setup_progress,
)
from fpo_service.services import fpo_provisioning
from fpo_service.services.fpo_transitions import available_actions, coerce_action, next_status
from fpo_service.services.permission import check_permission
from fpo_service.utils.deadline import Deadline

logger = logging.getLogger(__name__)

ACTION_REGISTER = "register"
ACTION_RESET_SETUP_ATTEMPTS = "reset-setup-attempts"
ACTION_ERASE = "erase"

_MAX_PER_PAGE = 200


def _utcnow():
    return datetime.now(timezone.utc)


def _value(obj):
    return getattr(obj, "value", obj)


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════

def _load(fpo_id: str, action=None) -> FPORef:
    """Return a live (not erased) FPO or raise NotFoundError."""
    fpo = db.session.get(FPORef, fpo_id) if fpo_id else None
    if fpo is None or fpo.is_deleted:
        raise NotFoundError("FPO", fpo_id, action=action)
    return fpo


def _load_for_write(fpo_id: str, action: str, actor_id: str, reason, request_id) -> FPORef:
    """``_load`` for audited calls: a call against an erased record is audited."""
    fpo = db.session.get(FPORef, fpo_id) if fpo_id else None
    if fpo is not None and fpo.is_deleted:
        exc = NotFoundError("FPO", fpo_id, action=action)
        _record_failure(fpo_id, action, fpo.status, actor_id, reason, request_id, exc)
        # Erased records answer like unknown ids.
        exc.current_status = None
        raise exc
    return _load(fpo_id, action=action)


def _current_status(fpo_id: str):
    return db.session.execute(
        db.select(FPORef.status).where(FPORef.id == fpo_id)
    ).scalar_one_or_none()


def _checkpoint(fpo_id: str, action: str, status, deadline: Deadline) -> None:
    """Raise if the caller cancelled or the deadline passed."""
    if deadline.cancelled:
        raise TransitionCancelled(
            f"Transition '{action}' on FPO {fpo_id} was cancelled",
            fpo_id=fpo_id, action=action, current_status=status,
        )
    if deadline.expired:
        raise LifecycleTimeout(
            f"Transition '{action}' on FPO {fpo_id} exceeded its {deadline.seconds}s deadline",
            fpo_id=fpo_id, action=action, current_status=status,
            details={"timeout_seconds": deadline.seconds},
        )


def _append_ledger(*, fpo_id: str, action: str, current_status, **fields):
    """Write and commit one ledger entry; drift after a record commit is fatal."""
    try:
        log = write_audit(fpo_id=fpo_id, action=action, **fields)
        db.session.commit()
        return log
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.critical(
            "Audit ledger write failed for FPO %s action=%s: %s",
            fpo_id, action, exc,
            extra={"fpo_id": fpo_id, "action": action, "ledger_fields": {
                k: _value(v) for k, v in fields.items() if k != "details"
            }},
        )
        raise AuditLedgerError(fpo_id, action, current_status, exc) from exc


def _record_failure(fpo_id: str, action: str, status, actor_id: str, reason, request_id, exc: LifecycleError):
    """Audit a rejected attempt and stamp the error with the true status."""
    db.session.rollback()
    exc.fpo_id = exc.fpo_id or fpo_id
    exc.action = exc.action or action
    exc.current_status = _value(status)
    details = {"error": str(exc), **exc.details}
    log = _append_ledger(
        fpo_id=fpo_id,
        action=action,
        current_status=status,
        previous_state=status,
        new_state=status,
        outcome=OUTCOME_FAILED,
        error_code=exc.code,
        reason=reason,
        performed_by=actor_id,
        details=details,
        request_id=request_id,
    )
    logger.info(
        "FPO %s %s rejected: %s (%s)", fpo_id, action, exc.code, exc,
        extra={"fpo_id": fpo_id, "action": action, "request_id": request_id},
    )
    return log


def _concurrent_modification(fpo_id: str, action: str, version: int, status) -> ConcurrentModification:
    current = _current_status(fpo_id)
    logger.warning(
        "Concurrent modification of FPO %s during %s (expected version=%s status=%s, now %s)",
        fpo_id, action, version, _value(status), _value(current),
        extra={"fpo_id": fpo_id, "action": action},
    )
    return ConcurrentModification(
        f"FPO {fpo_id} was modified concurrently; reload and retry",
        fpo_id=fpo_id, action=action, current_status=current,
        details={"expected_version": version, "expected_status": _value(status)},
    )


def _apply_guarded(fpo_id: str, action: str, version: int, status, values: dict, claim=None) -> None:
    """Version/status-guarded UPDATE; zero rows means someone else won.

    With a setup ``claim`` the row must still carry it, and it is released
    in the same statement.
    """
    values = {**values, "version": version + 1, "updated_at": _utcnow()}
    stmt = update(FPORef).where(
        FPORef.id == fpo_id,
        FPORef.version == version,
        FPORef.status == status,
        FPORef.not_deleted(),
    )
    if claim is not None:
        stmt = stmt.where(FPORef.setup_claim == claim.token)
        values.update(setup_claim=None, setup_claimed_at=None)
    result = db.session.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if result.rowcount != 1:
        db.session.rollback()
        raise _concurrent_modification(fpo_id, action, version, status)
    db.session.commit()


def _side_effects(action: FPOAction, actor_id: str, reason: str | None, now) -> dict:
    """Verification bookkeeping written together with the status change."""
    if action == FPOAction.SUBMIT:
        return {"verification_status": VERIFICATION_PENDING}
    if action == FPOAction.APPROVE:
        return {
            "verification_status": VERIFICATION_VERIFIED,
            "verified_at": now,
            "verified_by": actor_id,
            "verification_notes": reason,
        }
    if action == FPOAction.REJECT:
        return {"verification_status": VERIFICATION_REJECTED, "verification_notes": reason}
    if action == FPOAction.RESUBMIT:
        return {
            "verification_status": None,
            "verified_at": None,
            "verified_by": None,
            "verification_notes": None,
        }
    return {}


def _serialize(fpo: FPORef) -> dict:
    data = fpo.to_dict()
    data["available_actions"] = available_actions(fpo.status)
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def transition_fpo(
    fpo_id: str,
    action,
    actor_id: str,
    *,
    reason: str | None = None,
    request_id: str | None = None,
    timeout: float | None = None,
    cancel_event=None,
) -> dict:
    """
    Execute an FPO lifecycle transition.

    Args:
        fpo_id: UUID of the FPO.
        action: FPOAction or its string value (e.g. "approve").
        actor_id: Who is performing the action.
        reason: Free-text reason, stored on the record and the ledger entry.
        request_id: Correlation id, stored on the ledger entry.
        timeout: Deadline in seconds for the blocking part of the call
                 (default FPO_TRANSITION_TIMEOUT_SECONDS).
        cancel_event: ``threading.Event``; setting it before the record
                      update abandons the call.

    Returns:
        {"fpo_id", "action", "previous_status", "new_status", "outcome",
         "version", "audit_log_id"} plus "setup" for provisioning actions.

    Raises:
        NotFoundError, Forbidden, InvalidTransition, RetryExhausted,
        LifecycleTimeout, TransitionCancelled, ExternalServiceError,
        ConcurrentModification, AuditLedgerError.
    """
    action_str = _value(action)
    fpo = _load_for_write(fpo_id, action_str, actor_id, reason, request_id)

    # Snapshot for the optimistic guard; provisioning commits expire ``fpo``.
    from_status = fpo.status
    version = fpo.version
    setup_attempts = fpo.setup_attempts

    if timeout is None:
        timeout = current_app.config.get("FPO_TRANSITION_TIMEOUT_SECONDS")
    deadline = Deadline(timeout, cancel_event)
    log_extra = {"fpo_id": fpo_id, "action": action_str, "request_id": request_id}

    outcome = None
    claim = None
    try:
        _checkpoint(fpo_id, action_str, from_status, deadline)
        check_permission(fpo, actor_id, action_str, deadline=deadline, request_id=request_id)
        target = next_status(from_status, action_str, fpo_id=fpo_id)
        act = coerce_action(action_str)

        if target == FPOStatus.PENDING_SETUP:
            max_attempts = current_app.config.get("FPO_MAX_SETUP_ATTEMPTS", 3)
            if act == FPOAction.RETRY_SETUP:
                fpo_provisioning.ensure_retry_allowed(fpo, max_attempts)
            claim = fpo_provisioning.claim_setup(fpo_id, version, from_status)
            if claim is None:
                raise _concurrent_modification(fpo_id, action_str, version, from_status)
            if act == FPOAction.RETRY_SETUP:
                outcome = fpo_provisioning.retry_setup(
                    fpo, max_attempts, deadline=deadline, request_id=request_id, claim=claim,
                )
            else:
                outcome = fpo_provisioning.run_setup(
                    fpo, deadline=deadline, request_id=request_id, claim=claim,
                )

        _checkpoint(fpo_id, action_str, from_status, deadline)
    except ConcurrentModification as exc:
        # Lost race: not audited, and any claim we held is already gone.
        exc.action = exc.action or action_str
        exc.current_status = _value(_current_status(fpo_id))
        raise
    except LifecycleError as exc:
        if claim is not None:
            fpo_provisioning.release_claim(claim)
        if outcome is not None:
            exc.details = {**exc.details, "setup": outcome.to_dict()}
        _record_failure(fpo_id, action_str, from_status, actor_id, reason, request_id, exc)
        raise
    except Exception:
        if claim is not None:
            fpo_provisioning.release_claim(claim)
        raise

    # ── Step 4 outcome: collapse PENDING_SETUP ───────────────────────────
    now = _utcnow()
    values = {
        "previous_status": from_status,
        "status_reason": reason,
        "status_changed_at": now,
        "status_changed_by": actor_id,
        **_side_effects(act, actor_id, reason, now),
    }
    details = {}
    if outcome is not None:
        internal = FPOAction.SETUP_SUCCEEDED if outcome.succeeded else FPOAction.SETUP_FAILED
        new_status = next_status(target, internal, fpo_id=fpo_id, allow_internal=True)
        values["last_setup_at"] = now
        if outcome.succeeded:
            values["setup_errors"] = None
        else:
            values["setup_attempts"] = FPORef.setup_attempts + 1
            values["setup_errors"] = {outcome.failed_step: outcome.cause}
        details["setup"] = outcome.to_dict()
    else:
        new_status = target
    values["status"] = new_status

    # ── Step 5: persist (critical section, no more cancellation) ─────────
    try:
        _apply_guarded(fpo_id, action_str, version, from_status, values, claim=claim)
    except ConcurrentModification:
        if claim is not None:
            fpo_provisioning.release_claim(claim)
        raise

    # ── Step 6: ledger ───────────────────────────────────────────────────
    if outcome is not None and not outcome.succeeded:
        details["setup_attempts"] = setup_attempts + 1
    log = _append_ledger(
        fpo_id=fpo_id,
        action=action_str,
        current_status=new_status,
        previous_state=from_status,
        new_state=new_status,
        outcome=OUTCOME_SUCCESS,
        reason=reason,
        performed_by=actor_id,
        details=details,
        request_id=request_id,
    )

    if outcome is not None and not outcome.succeeded:
        logger.warning(
            "FPO %s setup failed at %s: %s", fpo_id, outcome.failed_step, outcome.cause, extra=log_extra,
        )
    logger.info(
        "FPO %s %s: %s → %s", fpo_id, action_str, _value(from_status), _value(new_status), extra=log_extra,
    )

    result = {
        "fpo_id": fpo_id,
        "action": action_str,
        "previous_status": _value(from_status),
        "new_status": _value(new_status),
        "outcome": OUTCOME_SUCCESS,
        "version": version + 1,
        "audit_log_id": log.id,
    }
    if outcome is not None:
        result["setup"] = outcome.to_dict()
    return result


def submit_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.SUBMIT, actor_id, reason=reason, request_id=request_id, **opts)


def approve_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.APPROVE, actor_id, reason=reason, request_id=request_id, **opts)


def reject_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.REJECT, actor_id, reason=reason, request_id=request_id, **opts)


def resubmit_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.RESUBMIT, actor_id, reason=reason, request_id=request_id, **opts)


def begin_setup(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.BEGIN_SETUP, actor_id, reason=reason, request_id=request_id, **opts)


def retry_setup(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.RETRY_SETUP, actor_id, reason=reason, request_id=request_id, **opts)


def suspend_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.SUSPEND, actor_id, reason=reason, request_id=request_id, **opts)


def deactivate_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.DEACTIVATE, actor_id, reason=reason, request_id=request_id, **opts)


def reinstate_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.REINSTATE, actor_id, reason=reason, request_id=request_id, **opts)


def reactivate_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.REACTIVATE, actor_id, reason=reason, request_id=request_id, **opts)


def archive_fpo(fpo_id, actor_id, reason=None, request_id=None, **opts):
    return transition_fpo(fpo_id, FPOAction.ARCHIVE, actor_id, reason=reason, request_id=request_id, **opts)


# ═════════════════════════════════════════════════════════════════════════════
# Overrides
# ═════════════════════════════════════════════════════════════════════════════

def _guarded_admin_action(fpo_id, action, actor_id, required_status, values_fn, *,
                          reason=None, request_id=None, timeout=None):
    """Shared flow for audited non-transition writes (override, erasure)."""
    fpo = _load_for_write(fpo_id, action, actor_id, reason, request_id)
    status = fpo.status
    version = fpo.version
    if timeout is None:
        timeout = current_app.config.get("FPO_TRANSITION_TIMEOUT_SECONDS")
    deadline = Deadline(timeout)

    try:
        check_permission(fpo, actor_id, action, deadline=deadline, request_id=request_id)
        if status != required_status:
            raise InvalidTransition(
                fpo_id, action, status, reason=f"only allowed in {required_status.value}",
            )
        values, details = values_fn(fpo)
        _checkpoint(fpo_id, action, status, deadline)
    except LifecycleError as exc:
        _record_failure(fpo_id, action, status, actor_id, reason, request_id, exc)
        raise

    _apply_guarded(fpo_id, action, version, status, values)
    log = _append_ledger(
        fpo_id=fpo_id,
        action=action,
        current_status=status,
        previous_state=status,
        new_state=status,
        outcome=OUTCOME_SUCCESS,
        reason=reason,
        performed_by=actor_id,
        details=details,
        request_id=request_id,
    )
    logger.info(
        "FPO %s %s by %s", fpo_id, action, actor_id,
        extra={"fpo_id": fpo_id, "action": action, "request_id": request_id},
    )
    return {
        "fpo_id": fpo_id,
        "action": action,
        "previous_status": _value(status),
        "new_status": _value(status),
        "outcome": OUTCOME_SUCCESS,
        "version": version + 1,
        "audit_log_id": log.id,
    }


def reset_setup_attempts(fpo_id: str, actor_id: str, reason: str | None = None,
                         request_id: str | None = None, **opts) -> dict:
    """
    Lift the setup retry cap for a SETUP_FAILED organization.

    The only path that lowers ``setup_attempts``; audited as
    ``reset-setup-attempts`` with the status unchanged.
    """
    def _values(fpo):
        return {"setup_attempts": 0}, {"previous_setup_attempts": fpo.setup_attempts}

    result = _guarded_admin_action(
        fpo_id, ACTION_RESET_SETUP_ATTEMPTS, actor_id, FPOStatus.SETUP_FAILED, _values,
        reason=reason, request_id=request_id, **opts,
    )
    result["setup_attempts"] = 0
    return result


def erase_fpo(fpo_id: str, actor_id: str, reason: str | None = None,
              request_id: str | None = None, **opts) -> dict:
    """
    Compliance erasure of an ARCHIVED organization (soft delete).

    Afterwards every operation on the id answers NotFoundError; the ledger
    rows stay in place.
    """
    def _values(fpo):
        return {"deleted_at": _utcnow()}, {"registration_number": fpo.registration_number}

    return _guarded_admin_action(
        fpo_id, ACTION_ERASE, actor_id, FPOStatus.ARCHIVED, _values,
        reason=reason, request_id=request_id, **opts,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Registration & reads
# ═════════════════════════════════════════════════════════════════════════════

def _require_dict(data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object", details={key: "must be an object"})
    return value


def register_fpo(data: dict, created_by: str, request_id: str | None = None) -> dict:
    """
    Create a new FPO record in DRAFT.

    Required: ``name``, ``registration_number``, ``ceo_profile`` with
    ``first_name`` and a ``phone_number`` or ``email``.
    Optional: ``description``, ``business_config``, ``metadata``,
    ``parent_fpo_id``.
    """
    errors = {}
    name = (data.get("name") or "").strip() if isinstance(data.get("name"), str) else ""
    reg_no = data.get("registration_number")
    reg_no = reg_no.strip() if isinstance(reg_no, str) else ""
    if not name:
        errors["name"] = "required"
    if not reg_no:
        errors["registration_number"] = "required"

    ceo_profile = _require_dict(data, "ceo_profile")
    if not ceo_profile.get("first_name"):
        errors["ceo_profile.first_name"] = "required"
    if not (ceo_profile.get("phone_number") or ceo_profile.get("email")):
        errors["ceo_profile.contact"] = "phone_number or email is required"
    if errors:
        raise ValidationError("Invalid FPO registration", details=errors)

    business_config = _require_dict(data, "business_config")
    org_metadata = _require_dict(data, "metadata")

    parent_id = data.get("parent_fpo_id")
    if parent_id:
        parent = db.session.get(FPORef, parent_id)
        if parent is None or parent.is_deleted:
            raise ValidationError("Parent FPO not found", details={"parent_fpo_id": parent_id})

    exists = db.session.execute(
        db.select(FPORef.id).where(FPORef.registration_number == reg_no)
    ).first()
    if exists:
        raise ConflictError("FPO", "registration_number", reg_no)

    fpo = FPORef(
        name=name,
        registration_number=reg_no,
        description=data.get("description"),
        ceo_profile=ceo_profile,
        business_config=business_config,
        org_metadata=org_metadata,
        parent_fpo_id=parent_id or None,
        status=FPOStatus.DRAFT,
        version=1,
        setup_attempts=0,
        setup_progress=empty_setup_progress(),
    )
    db.session.add(fpo)
    db.session.flush()
    write_audit(
        fpo_id=fpo.id,
        action=ACTION_REGISTER,
        previous_state=None,
        new_state=FPOStatus.DRAFT,
        performed_by=created_by,
        details={"registration_number": reg_no},
        request_id=request_id,
    )
    db.session.commit()
    logger.info(
        "Registered FPO %s (%s)", fpo.id, reg_no,
        extra={"fpo_id": fpo.id, "action": ACTION_REGISTER, "request_id": request_id},
    )
    return _serialize(fpo)


def get_fpo(fpo_id: str) -> dict:
    return _serialize(_load(fpo_id))


def get_fpo_by_aaa_org_id(aaa_org_id: str) -> dict:
    fpo = FPORef.query_active().filter(FPORef.aaa_org_id == aaa_org_id).first()
    if fpo is None:
        raise NotFoundError("FPO", aaa_org_id)
    return _serialize(fpo)


def get_history(fpo_id: str, page: int = 1, per_page: int = 50) -> dict:
    """Ledger entries for one FPO, oldest first, paginated."""
    _load(fpo_id)
    page = max(int(page or 1), 1)
    per_page = min(max(int(per_page or 50), 1), _MAX_PER_PAGE)
    query = history_query(fpo_id)
    total = query.count()
    items = query.limit(per_page).offset((page - 1) * per_page).all()
    return {
        "fpo_id": fpo_id,
        "items": [entry.to_dict() for entry in items],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }
