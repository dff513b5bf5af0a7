"""
FPO Lifecycle Service
Scheduled Jobs.

Jobs:
    - fpo_setup_retry_sweep: retries provisioning of SETUP_FAILED FPOs that
      are still below FPO_MAX_SETUP_ATTEMPTS. Organizations at the cap are
      left alone for an operator to archive or reset.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fpo_service.core.exceptions import LifecycleError
from fpo_service.models import db
from fpo_service.models.fpo import FPORef, FPOStatus
from fpo_service.services.scheduler_service import register_job

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system:setup-retry-sweep"


# ═══════════════════════════════════════════════════════════════════════════
#  Job: Setup retry sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("fpo_setup_retry_sweep")
def sweep_failed_setups(app) -> dict[str, Any]:
    """Retry provisioning for SETUP_FAILED FPOs below the attempt cap."""
    from fpo_service.services.fpo_lifecycle import retry_setup

    results = {"candidates": 0, "activated": 0, "failed": 0, "errors": 0, "skipped": False}
    if not app.config.get("FPO_AUTO_RETRY_ENABLED", True):
        results["skipped"] = True
        logger.info("Setup retry sweep disabled (FPO_AUTO_RETRY_ENABLED=false)")
        return results

    max_attempts = app.config.get("FPO_MAX_SETUP_ATTEMPTS", 3)
    fpo_ids = [
        row[0] for row in db.session.execute(
            db.select(FPORef.id)
            .where(
                FPORef.status == FPOStatus.SETUP_FAILED,
                FPORef.setup_attempts < max_attempts,
                FPORef.not_deleted(),
            )
            .order_by(FPORef.last_setup_at.asc(), FPORef.id.asc())
        ).all()
    ]
    results["candidates"] = len(fpo_ids)
    sweep_id = f"sweep-{uuid.uuid4().hex[:12]}"

    for fpo_id in fpo_ids:
        try:
            outcome = retry_setup(
                fpo_id, SYSTEM_ACTOR,
                reason="automatic setup retry",
                request_id=f"{sweep_id}-{fpo_id[:8]}",
            )
        except LifecycleError as exc:
            results["errors"] += 1
            logger.warning(
                "Setup retry sweep could not retry FPO %s: %s", fpo_id, exc,
                extra={"fpo_id": fpo_id, "action": "retry-setup"},
            )
            continue

        if outcome["new_status"] == FPOStatus.ACTIVE.value:
            results["activated"] += 1
        else:
            results["failed"] += 1

    logger.info(
        "Setup retry sweep done: %d candidates, %d activated, %d failed, %d errors",
        results["candidates"], results["activated"], results["failed"], results["errors"],
    )
    return results
