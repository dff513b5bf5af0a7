"""
FPO Lifecycle Service
FPO organization record model.

Models:
    - FPORef: one row per Farmer Producer Organization under lifecycle management.

Constants:
    - FPOStatus / FPOAction: closed enums for lifecycle states and actions.
    - FPO_TRANSITIONS: the directed transition table, keyed by action.
    - SETUP_STEPS: ordered provisioning steps tracked in ``setup_progress``.
"""

import enum
import uuid
from datetime import datetime, timezone

from fpo_service.models import db
from fpo_service.models.soft_delete import SoftDeleteMixin


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

class FPOStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    PENDING_SETUP = "PENDING_SETUP"
    SETUP_FAILED = "SETUP_FAILED"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    INACTIVE = "INACTIVE"
    ARCHIVED = "ARCHIVED"


class FPOAction(str, enum.Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    RESUBMIT = "resubmit"
    ARCHIVE = "archive"
    BEGIN_SETUP = "begin-setup"
    SETUP_SUCCEEDED = "setup-succeeded"
    SETUP_FAILED = "setup-failed"
    RETRY_SETUP = "retry-setup"
    SUSPEND = "suspend"
    DEACTIVATE = "deactivate"
    REINSTATE = "reinstate"
    REACTIVATE = "reactivate"


# Outcome actions of a provisioning run; never accepted from callers.
INTERNAL_ACTIONS = frozenset({FPOAction.SETUP_SUCCEEDED, FPOAction.SETUP_FAILED})

# action → {"from": [...], "to": status}
FPO_TRANSITIONS = {
    FPOAction.SUBMIT: {
        "from": [FPOStatus.DRAFT],
        "to": FPOStatus.PENDING_VERIFICATION,
    },
    FPOAction.APPROVE: {
        "from": [FPOStatus.PENDING_VERIFICATION],
        "to": FPOStatus.VERIFIED,
    },
    FPOAction.REJECT: {
        "from": [FPOStatus.PENDING_VERIFICATION],
        "to": FPOStatus.REJECTED,
    },
    FPOAction.RESUBMIT: {
        "from": [FPOStatus.REJECTED],
        "to": FPOStatus.DRAFT,
    },
    FPOAction.ARCHIVE: {
        "from": [
            FPOStatus.REJECTED,
            FPOStatus.SETUP_FAILED,
            FPOStatus.SUSPENDED,
            FPOStatus.INACTIVE,
        ],
        "to": FPOStatus.ARCHIVED,
    },
    FPOAction.BEGIN_SETUP: {
        "from": [FPOStatus.VERIFIED],
        "to": FPOStatus.PENDING_SETUP,
    },
    FPOAction.SETUP_SUCCEEDED: {
        "from": [FPOStatus.PENDING_SETUP],
        "to": FPOStatus.ACTIVE,
    },
    FPOAction.SETUP_FAILED: {
        "from": [FPOStatus.PENDING_SETUP],
        "to": FPOStatus.SETUP_FAILED,
    },
    FPOAction.RETRY_SETUP: {
        "from": [FPOStatus.SETUP_FAILED],
        "to": FPOStatus.PENDING_SETUP,
    },
    FPOAction.SUSPEND: {
        "from": [FPOStatus.ACTIVE],
        "to": FPOStatus.SUSPENDED,
    },
    FPOAction.DEACTIVATE: {
        "from": [FPOStatus.ACTIVE],
        "to": FPOStatus.INACTIVE,
    },
    FPOAction.REINSTATE: {
        "from": [FPOStatus.SUSPENDED],
        "to": FPOStatus.ACTIVE,
    },
    FPOAction.REACTIVATE: {
        "from": [FPOStatus.INACTIVE],
        "to": FPOStatus.ACTIVE,
    },
}

VERIFICATION_PENDING = "PENDING"
VERIFICATION_VERIFIED = "VERIFIED"
VERIFICATION_REJECTED = "REJECTED"

# Provisioning steps, in execution order.
STEP_ORG_CREATED = "org_created"
STEP_CEO_CREATED = "ceo_created"
STEP_ROLES_ASSIGNED = "roles_assigned"
SETUP_STEPS = (STEP_ORG_CREATED, STEP_CEO_CREATED, STEP_ROLES_ASSIGNED)


def empty_setup_progress() -> dict:
    return {step: False for step in SETUP_STEPS}


# ═════════════════════════════════════════════════════════════════════════════
# FPORef
# ═════════════════════════════════════════════════════════════════════════════

class FPORef(SoftDeleteMixin, db.Model):
    """
    Farmer Producer Organization under lifecycle management.

    ``status`` and the provisioning bookkeeping columns are written only by
    the lifecycle service, through version-guarded UPDATE statements.
    ``aaa_org_id`` / ``ceo_user_id`` reference identities in the external
    AAA service and are filled in as provisioning steps succeed.
    """

    __tablename__ = "fpo_refs"
    __table_args__ = (
        db.Index("idx_fpo_status", "status"),
        db.Index("idx_fpo_parent", "parent_fpo_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    aaa_org_id = db.Column(db.String(255), unique=True, nullable=True)
    name = db.Column(db.String(255), nullable=False)
    registration_number = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    ceo_profile = db.Column(db.JSON, nullable=False, default=dict)
    business_config = db.Column(db.JSON, nullable=False, default=dict)
    org_metadata = db.Column("metadata_json", db.JSON, nullable=False, default=dict)

    # Lifecycle
    status = db.Column(
        db.Enum(FPOStatus, native_enum=False, length=32, validate_strings=True),
        nullable=False,
        default=FPOStatus.DRAFT,
    )
    previous_status = db.Column(
        db.Enum(FPOStatus, native_enum=False, length=32, validate_strings=True),
        nullable=True,
    )
    status_reason = db.Column(db.Text, nullable=True)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status_changed_by = db.Column(db.String(255), nullable=True)
    version = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Optimistic lock; bumped by every committed transition",
    )

    # Verification
    verification_status = db.Column(db.String(30), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_by = db.Column(db.String(255), nullable=True)
    verification_notes = db.Column(db.Text, nullable=True)

    # Provisioning
    setup_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_setup_at = db.Column(db.DateTime(timezone=True), nullable=True)
    setup_progress = db.Column(db.JSON, nullable=False, default=empty_setup_progress)
    setup_errors = db.Column(db.JSON, nullable=True)
    # Held by the one transition currently talking to AAA for this record
    setup_claim = db.Column(db.String(32), nullable=True)
    setup_claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Relationships
    ceo_user_id = db.Column(db.String(255), nullable=True)
    parent_fpo_id = db.Column(
        db.String(36),
        db.ForeignKey("fpo_refs.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    parent = db.relationship("FPORef", remote_side=[id], lazy="select")

    # ── Helpers ──────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value else None

        progress = empty_setup_progress()
        progress.update(self.setup_progress or {})
        return {
            "id": self.id,
            "aaa_org_id": self.aaa_org_id,
            "name": self.name,
            "registration_number": self.registration_number,
            "description": self.description,
            "business_config": self.business_config or {},
            "metadata": self.org_metadata or {},
            "status": self.status.value if self.status else None,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "status_reason": self.status_reason,
            "status_changed_at": _iso(self.status_changed_at),
            "status_changed_by": self.status_changed_by,
            "version": self.version,
            "verification_status": self.verification_status,
            "verified_at": _iso(self.verified_at),
            "verified_by": self.verified_by,
            "verification_notes": self.verification_notes,
            "setup_attempts": self.setup_attempts,
            "last_setup_at": _iso(self.last_setup_at),
            "setup_progress": progress,
            "setup_errors": self.setup_errors or {},
            "setup_in_progress": self.setup_claim is not None,
            "ceo_user_id": self.ceo_user_id,
            "parent_fpo_id": self.parent_fpo_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<FPORef {self.id}: {self.name} [{self.status}]>"
