"""
Soft deletion for records that must outlive their erasure.

Compliance erasure stamps ``deleted_at``; rows stay in place so the audit
ledger keeps a valid foreign key. Reads go through ``not_deleted()`` (a
WHERE clause for Core statements) or ``query_active()`` (ORM query).
"""

from fpo_service.models import db


class SoftDeleteMixin:

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def not_deleted(cls):
        return cls.deleted_at.is_(None)

    @classmethod
    def query_active(cls):
        return cls.query.filter(cls.not_deleted())
