"""fpo_lifecycle_tables

Creates the FPO lifecycle tables:
  - fpo_refs         - one row per FPO under lifecycle management
  - fpo_audit_logs   - append-only transition ledger (FK → fpo_refs)

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: a3f1c9d2e4b7
Revises:
Create Date: 2026-10-16 09:12:40.512033
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a3f1c9d2e4b7'
down_revision = None
branch_labels = None
depends_on = None


_STATUS = sa.Enum(
    "DRAFT", "PENDING_VERIFICATION", "VERIFIED", "REJECTED", "PENDING_SETUP",
    "SETUP_FAILED", "ACTIVE", "SUSPENDED", "INACTIVE", "ARCHIVED",
    name="fpostatus", native_enum=False, length=32,
)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── FPORef ────────────────────────────────────────────────────────────
    if "fpo_refs" not in existing:
        op.create_table(
            "fpo_refs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column(
                "aaa_org_id", sa.String(length=255), nullable=True,
                comment="Organization id in the AAA service; set by provisioning.",
            ),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("registration_number", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("ceo_profile", sa.JSON(), nullable=False),
            sa.Column("business_config", sa.JSON(), nullable=False),
            sa.Column("metadata_json", sa.JSON(), nullable=False),
            sa.Column("status", _STATUS, nullable=False, server_default="DRAFT"),
            sa.Column("previous_status", _STATUS, nullable=True),
            sa.Column("status_reason", sa.Text(), nullable=True),
            sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status_changed_by", sa.String(length=255), nullable=True),
            sa.Column(
                "version", sa.Integer(), nullable=False, server_default="1",
                comment="Optimistic lock; bumped by every committed transition",
            ),
            sa.Column("verification_status", sa.String(length=30), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("verified_by", sa.String(length=255), nullable=True),
            sa.Column("verification_notes", sa.Text(), nullable=True),
            sa.Column("setup_attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_setup_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("setup_progress", sa.JSON(), nullable=False),
            sa.Column("setup_errors", sa.JSON(), nullable=True),
            sa.Column("setup_claim", sa.String(length=32), nullable=True),
            sa.Column("setup_claimed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("ceo_user_id", sa.String(length=255), nullable=True),
            sa.Column("parent_fpo_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["parent_fpo_id"], ["fpo_refs.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("aaa_org_id"),
            sa.UniqueConstraint("registration_number"),
        )
        op.create_index("idx_fpo_status", "fpo_refs", ["status"])
        op.create_index("idx_fpo_parent", "fpo_refs", ["parent_fpo_id"])
        op.create_index("ix_fpo_refs_deleted_at", "fpo_refs", ["deleted_at"])

    # ── FPOAuditLog ───────────────────────────────────────────────────────
    if "fpo_audit_logs" not in existing:
        op.create_table(
            "fpo_audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("fpo_id", sa.String(length=36), nullable=False),
            sa.Column(
                "action", sa.String(length=60), nullable=False,
                comment="submit | approve | begin-setup | retry-setup | …",
            ),
            sa.Column("previous_state", sa.String(length=32), nullable=True),
            sa.Column("new_state", sa.String(length=32), nullable=True),
            sa.Column("outcome", sa.String(length=10), nullable=False, server_default="success"),
            sa.Column("error_code", sa.String(length=60), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("performed_by", sa.String(length=255), nullable=False, server_default="system"),
            sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("details", sa.JSON(), nullable=False),
            sa.Column("request_id", sa.String(length=255), nullable=True),
            sa.ForeignKeyConstraint(["fpo_id"], ["fpo_refs.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_fpo_audit_fpo_ts", "fpo_audit_logs", ["fpo_id", "performed_at"])
        op.create_index("idx_fpo_audit_action", "fpo_audit_logs", ["action"])
        op.create_index("idx_fpo_audit_request", "fpo_audit_logs", ["request_id"])


def downgrade():
    op.drop_index("idx_fpo_audit_request", table_name="fpo_audit_logs")
    op.drop_index("idx_fpo_audit_action", table_name="fpo_audit_logs")
    op.drop_index("idx_fpo_audit_fpo_ts", table_name="fpo_audit_logs")
    op.drop_table("fpo_audit_logs")
    op.drop_index("ix_fpo_refs_deleted_at", table_name="fpo_refs")
    op.drop_index("idx_fpo_parent", table_name="fpo_refs")
    op.drop_index("idx_fpo_status", table_name="fpo_refs")
    op.drop_table("fpo_refs")
