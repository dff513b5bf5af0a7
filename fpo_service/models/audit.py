"""
FPO Lifecycle Service
Audit ledger model.

Models:
    - FPOAuditLog: immutable, append-only record of every lifecycle
      transition attempt (successful or not).

Immutability is enforced at the ORM layer: ``before_update`` and
``before_delete`` listeners reject any change to a written row.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import event

from fpo_service.core.exceptions import ImmutableRecordError
from fpo_service.models import db

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"


class FPOAuditLog(db.Model):
    """
    One row per transition attempt.

    ``new_state`` equals ``previous_state`` for failed attempts; ``details``
    carries structured context such as the failed provisioning step.
    Replay order is (performed_at, id).
    """

    __tablename__ = "fpo_audit_logs"
    __table_args__ = (
        db.Index("idx_fpo_audit_fpo_ts", "fpo_id", "performed_at"),
        db.Index("idx_fpo_audit_action", "action"),
        db.Index("idx_fpo_audit_request", "request_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    fpo_id = db.Column(
        db.String(36),
        db.ForeignKey("fpo_refs.id", ondelete="RESTRICT"),
        nullable=False,
    )

    action = db.Column(
        db.String(60), nullable=False,
        comment="submit | approve | begin-setup | retry-setup | …",
    )
    previous_state = db.Column(db.String(32), nullable=True)
    new_state = db.Column(db.String(32), nullable=True)
    outcome = db.Column(db.String(10), nullable=False, default=OUTCOME_SUCCESS)
    error_code = db.Column(db.String(60), nullable=True)
    reason = db.Column(db.Text, nullable=True)

    performed_by = db.Column(db.String(255), nullable=False, default="system")
    performed_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    details = db.Column(db.JSON, nullable=False, default=dict)
    request_id = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fpo_id": self.fpo_id,
            "action": self.action,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "outcome": self.outcome,
            "error_code": self.error_code,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
            "details": self.details or {},
            "request_id": self.request_id,
        }

    def __repr__(self):
        return f"<FPOAuditLog {self.id}: {self.action} on {self.fpo_id} [{self.outcome}]>"


# ── Immutability guards ──────────────────────────────────────────────────────

@event.listens_for(FPOAuditLog, "before_update")
def _block_audit_update(mapper, connection, target):
    logger.error(
        "Blocked update of audit entry %s", target.id,
        extra={"fpo_id": target.fpo_id, "event_type": "immutability_violation"},
    )
    raise ImmutableRecordError("FPOAuditLog", str(target.id), "UPDATE")


@event.listens_for(FPOAuditLog, "before_delete")
def _block_audit_delete(mapper, connection, target):
    logger.error(
        "Blocked delete of audit entry %s", target.id,
        extra={"fpo_id": target.fpo_id, "event_type": "immutability_violation"},
    )
    raise ImmutableRecordError("FPOAuditLog", str(target.id), "DELETE")


# ── Convenience writer ───────────────────────────────────────────────────────

def _state(value):
    return getattr(value, "value", value)


def write_audit(
    *,
    fpo_id: str,
    action: str,
    previous_state=None,
    new_state=None,
    outcome: str = OUTCOME_SUCCESS,
    error_code: str | None = None,
    reason: str | None = None,
    performed_by: str = "system",
    details: dict | None = None,
    request_id: str | None = None,
) -> FPOAuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) FPOAuditLog instance.
    """
    log = FPOAuditLog(
        fpo_id=fpo_id,
        action=_state(action),
        previous_state=_state(previous_state),
        new_state=_state(new_state),
        outcome=outcome,
        error_code=error_code,
        reason=reason,
        performed_by=performed_by or "system",
        details=details or {},
        request_id=request_id,
    )
    db.session.add(log)
    db.session.flush()
    return log


def history_query(fpo_id: str):
    """Entries for one organization in replay order (oldest first)."""
    return (
        FPOAuditLog.query
        .filter(FPOAuditLog.fpo_id == fpo_id)
        .order_by(FPOAuditLog.performed_at.asc(), FPOAuditLog.id.asc())
    )
