"""
FPO Lifecycle - Provisioning Orchestrator

Materializes an FPO in the AAA service through three ordered steps:

  1. org_created     → create_organization(name, metadata)   → aaa_org_id
  2. ceo_created     → create_user(ceo profile)              → ceo_user_id
  3. roles_assigned  → assign_default_roles(org, catalog)

Each step is skipped when its ``setup_progress`` flag is already set, and
its flag (plus the external reference it produced) is committed before the
next step starts. A crash or failure after step N therefore resumes at
step N+1 on the next attempt and never repeats a completed side effect.

Only one run per record talks to AAA at a time. ``claim_setup`` stamps a
token on the row (guarded by version and status) before the first external
call, and every progress write is conditioned on that token and version.
A competing run finds the claim taken and stops before creating anything.

The orchestrator never changes ``status``: it returns a ``SetupOutcome``
and the lifecycle service decides ACTIVE vs SETUP_FAILED.

Usage:
    from fpo_service.services.fpo_provisioning import run_setup

    outcome = run_setup(fpo, deadline=deadline, request_id=rid)
    if outcome.succeeded:
        ...
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from fpo_service.constants import ROLE_FPO_CEO, default_role_catalog
from fpo_service.core.exceptions import ConcurrentModification, ProvisioningFailed, RetryExhausted
from fpo_service.integrations.aaa_gateway import get_aaa_gateway
from fpo_service.models import db
from fpo_service.models.fpo import (
    SETUP_STEPS,
    STEP_CEO_CREATED,
    STEP_ORG_CREATED,
    STEP_ROLES_ASSIGNED,
    FPOAction,
    FPORef,
    empty_setup_progress,
)

logger = logging.getLogger(__name__)

INTERRUPT_TIMEOUT = "timeout"
INTERRUPT_CANCELLED = "cancelled"


class SetupOutcome:
    """Result of one provisioning run.

    Attributes:
        succeeded:   True when every step is done.
        failure:     ProvisioningFailed for the step that failed, else None.
        interrupted: "timeout" / "cancelled" when the caller's deadline or
                     cancel event stopped the run between steps, else None.
        progress:    Step → bool after the run.
        steps_run:   Steps that made an external call during this run.
    """

    def __init__(self, progress: dict, steps_run: list[str], failure: ProvisioningFailed | None = None,
                 interrupted: str | None = None) -> None:
        self.progress = progress
        self.steps_run = steps_run
        self.failure = failure
        self.interrupted = interrupted

    @property
    def succeeded(self) -> bool:
        return self.failure is None and self.interrupted is None and all(self.progress.values())

    @property
    def failed_step(self) -> str | None:
        return self.failure.step if self.failure else None

    @property
    def cause(self) -> str | None:
        return self.failure.cause if self.failure else None

    def to_dict(self) -> dict:
        failure = self.failure.to_dict() if self.failure else {}
        return {
            "succeeded": self.succeeded,
            "progress": dict(self.progress),
            "steps_run": list(self.steps_run),
            "failed_step": failure.get("step"),
            "cause": failure.get("cause"),
            "transient": failure.get("transient", False),
            "interrupted": self.interrupted,
        }

    def __repr__(self):
        return f"<SetupOutcome succeeded={self.succeeded} failed_step={self.failed_step}>"


class SetupClaim:
    """Exclusive right to provision one FPO at one record version."""

    def __init__(self, fpo_id: str, token: str, version: int) -> None:
        self.fpo_id = fpo_id
        self.token = token
        self.version = version

    def guard(self):
        return FPORef.setup_claim == self.token, FPORef.version == self.version

    def __repr__(self):
        return f"<SetupClaim fpo={self.fpo_id} version={self.version}>"


def claim_setup(fpo_id: str, version: int, status) -> SetupClaim | None:
    """
    Take the provisioning claim for ``fpo_id`` if nobody holds a live one.

    Returns None when the record moved past ``version``/``status`` or another
    run holds a claim younger than FPO_SETUP_CLAIM_TTL_SECONDS.
    """
    now = datetime.now(timezone.utc)
    ttl = current_app.config.get("FPO_SETUP_CLAIM_TTL_SECONDS", 300)
    token = uuid.uuid4().hex
    result = db.session.execute(
        update(FPORef)
        .where(
            FPORef.id == fpo_id,
            FPORef.version == version,
            FPORef.status == status,
            FPORef.not_deleted(),
            or_(
                FPORef.setup_claim.is_(None),
                FPORef.setup_claimed_at < now - timedelta(seconds=ttl),
            ),
        )
        .values(setup_claim=token, setup_claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        return None
    db.session.commit()
    logger.debug("Setup claim taken for FPO %s at version %d", fpo_id, version, extra={"fpo_id": fpo_id})
    return SetupClaim(fpo_id, token, version)


def release_claim(claim: SetupClaim) -> None:
    """Drop ``claim`` without touching status; used when a run is abandoned."""
    db.session.rollback()
    db.session.execute(
        update(FPORef)
        .where(FPORef.id == claim.fpo_id, FPORef.setup_claim == claim.token)
        .values(setup_claim=None, setup_claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def _persist_progress(fpo_id: str, progress: dict, claim: SetupClaim | None = None, **fields) -> None:
    """Commit the progress map (and any external reference) for one step."""
    stmt = update(FPORef).where(FPORef.id == fpo_id)
    if claim is not None:
        stmt = stmt.where(*claim.guard())
    result = db.session.execute(
        stmt.values(setup_progress=dict(progress), **fields)
        .execution_options(synchronize_session=False)
    )
    if claim is not None and result.rowcount != 1:
        db.session.rollback()
        raise ConcurrentModification(
            f"FPO {fpo_id} setup claim was lost; progress not saved",
            fpo_id=fpo_id, details={"expected_version": claim.version},
        )
    db.session.commit()


def _call_kwargs(deadline, request_id):
    timeout = current_app.config.get("AAA_TIMEOUT_SECONDS", 10)
    kwargs = {"request_id": request_id, "timeout": timeout}
    if deadline is not None:
        kwargs["timeout"] = deadline.clip(timeout)
        kwargs["deadline"] = deadline.expires_at
    return kwargs


def _failed(step: str, result) -> ProvisioningFailed:
    return ProvisioningFailed(step, result.error or "unknown error", transient=result.transient)


def run_setup(fpo: FPORef, *, deadline=None, request_id: str | None = None,
              claim: SetupClaim | None = None) -> SetupOutcome:
    """
    Run every provisioning step not yet done for ``fpo``.

    Args:
        fpo: Organization being provisioned (status VERIFIED or SETUP_FAILED).
        deadline: Optional ``Deadline``; checked before each step and used to
                  clip per-call timeouts.
        request_id: Propagated to the AAA service.
        claim: ``SetupClaim`` from ``claim_setup``; when given, progress is
               only written while the claim still holds.

    Returns:
        SetupOutcome. Step failures are reported, never raised.

    Raises:
        ConcurrentModification: the claim was taken over mid-run.
    """
    gateway = get_aaa_gateway()
    fpo_id = fpo.id
    name = fpo.name
    registration_number = fpo.registration_number
    org_metadata = dict(fpo.org_metadata or {})
    ceo_profile = dict(fpo.ceo_profile or {})
    aaa_org_id = fpo.aaa_org_id
    ceo_user_id = fpo.ceo_user_id

    progress = empty_setup_progress()
    progress.update(fpo.setup_progress or {})
    steps_run: list[str] = []
    log_extra = {"fpo_id": fpo_id, "request_id": request_id}

    for step in SETUP_STEPS:
        if progress.get(step):
            logger.debug("Setup step %s already done for FPO %s, skipping", step, fpo_id, extra=log_extra)
            continue

        if deadline is not None and (deadline.cancelled or deadline.expired):
            interrupted = INTERRUPT_CANCELLED if deadline.cancelled else INTERRUPT_TIMEOUT
            logger.info("Setup of FPO %s interrupted before %s (%s)", fpo_id, step, interrupted, extra=log_extra)
            return SetupOutcome(progress, steps_run, interrupted=interrupted)

        steps_run.append(step)
        kwargs = _call_kwargs(deadline, request_id)

        if step == STEP_ORG_CREATED:
            metadata = {**org_metadata, "fpo_id": fpo_id, "registration_number": registration_number}
            result = gateway.create_organization(name, metadata, **kwargs)
            if not result.ok:
                return SetupOutcome(progress, steps_run, failure=_failed(step, result))
            new_org_id = (result.data or {}).get("org_id") or (result.data or {}).get("id")
            if not new_org_id:
                return SetupOutcome(progress, steps_run, failure=ProvisioningFailed(
                    step, "AAA response did not include an organization id",
                ))
            progress[step] = True
            try:
                _persist_progress(fpo_id, progress, claim, aaa_org_id=str(new_org_id))
            except IntegrityError:
                db.session.rollback()
                progress[step] = False
                logger.error(
                    "AAA organization %s is already linked to another FPO", new_org_id, extra=log_extra,
                )
                return SetupOutcome(progress, steps_run, failure=ProvisioningFailed(
                    step, f"AAA organization {new_org_id} is already linked to another FPO",
                ))
            aaa_org_id = str(new_org_id)

        elif step == STEP_CEO_CREATED:
            if not ceo_profile:
                return SetupOutcome(progress, steps_run, failure=ProvisioningFailed(
                    step, "FPO has no CEO profile",
                ))
            profile = {**ceo_profile, "org_id": aaa_org_id, "role": ROLE_FPO_CEO}
            result = gateway.create_user(profile, **kwargs)
            if not result.ok:
                return SetupOutcome(progress, steps_run, failure=_failed(step, result))
            new_user_id = (result.data or {}).get("id") or (result.data or {}).get("user_id")
            if not new_user_id:
                return SetupOutcome(progress, steps_run, failure=ProvisioningFailed(
                    step, "AAA response did not include a user id",
                ))
            progress[step] = True
            ceo_user_id = str(new_user_id)
            _persist_progress(fpo_id, progress, claim, ceo_user_id=ceo_user_id)

        elif step == STEP_ROLES_ASSIGNED:
            result = gateway.assign_default_roles(aaa_org_id, default_role_catalog(ceo_user_id), **kwargs)
            if not result.ok:
                return SetupOutcome(progress, steps_run, failure=_failed(step, result))
            progress[step] = True
            _persist_progress(fpo_id, progress, claim)

        logger.info("Setup step %s done for FPO %s", step, fpo_id, extra=log_extra)

    return SetupOutcome(progress, steps_run)


def ensure_retry_allowed(fpo: FPORef, max_attempts: int) -> None:
    """Raise RetryExhausted when ``fpo`` has used up its setup attempts."""
    if fpo.setup_attempts >= max_attempts:
        raise RetryExhausted(
            fpo.id, fpo.setup_attempts, max_attempts,
            action=FPOAction.RETRY_SETUP, current_status=fpo.status,
        )


def retry_setup(fpo: FPORef, max_attempts: int | None = None, **kwargs) -> SetupOutcome:
    """Re-run provisioning for a SETUP_FAILED organization below the attempt cap."""
    if max_attempts is None:
        max_attempts = current_app.config.get("FPO_MAX_SETUP_ATTEMPTS", 3)
    ensure_retry_allowed(fpo, max_attempts)
    logger.info(
        "Retrying setup for FPO %s (attempt %d of %d)",
        fpo.id, fpo.setup_attempts + 1, max_attempts,
        extra={"fpo_id": fpo.id},
    )
    return run_setup(fpo, **kwargs)
