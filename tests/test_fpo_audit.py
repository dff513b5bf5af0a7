"""
FPO Audit Ledger Tests:
  - Registration writes the first entry
  - Entries are immutable (update / delete blocked at the ORM layer)
  - History ordering and pagination
  - Ledger write failure after a committed transition is fatal and logged
"""

import logging

import pytest
from sqlalchemy.exc import SQLAlchemyError

from fpo_service.core.exceptions import AuditLedgerError, ImmutableRecordError, InvalidTransition
from fpo_service.models import db
from fpo_service.models.audit import FPOAuditLog, history_query, write_audit
from fpo_service.models.fpo import FPORef, FPOStatus
from fpo_service.services import fpo_lifecycle as svc


def _entries(fpo_id):
    return history_query(fpo_id).all()


# ═══════════════════════════════════════════════════════════════════════════
# TestLedgerWrites
# ═══════════════════════════════════════════════════════════════════════════


class TestLedgerWrites:

    def test_register_writes_first_entry(self, make_fpo):
        fpo = make_fpo()
        entries = _entries(fpo["id"])
        assert len(entries) == 1
        assert entries[0].action == "register"
        assert entries[0].previous_state is None
        assert entries[0].new_state == "DRAFT"
        assert entries[0].performed_by == "registrar-1"
        assert entries[0].outcome == "success"

    def test_write_audit_flushes_without_commit(self, make_fpo):
        fpo = make_fpo()
        log = write_audit(fpo_id=fpo["id"], action="submit",
                          previous_state=FPOStatus.DRAFT, new_state=FPOStatus.PENDING_VERIFICATION)
        assert log.id is not None
        assert log.previous_state == "DRAFT"
        db.session.rollback()
        assert len(_entries(fpo["id"])) == 1

    def test_successful_transition_entry(self, make_fpo):
        fpo = make_fpo()
        result = svc.submit_fpo(fpo["id"], "member-7", reason="ready", request_id="req-1")
        entry = db.session.get(FPOAuditLog, result["audit_log_id"])
        assert entry.action == "submit"
        assert entry.previous_state == "DRAFT"
        assert entry.new_state == "PENDING_VERIFICATION"
        assert entry.reason == "ready"
        assert entry.request_id == "req-1"
        assert entry.performed_by == "member-7"

    def test_to_dict(self, make_fpo):
        fpo = make_fpo()
        data = _entries(fpo["id"])[0].to_dict()
        assert data["fpo_id"] == fpo["id"]
        assert data["details"]["registration_number"] == fpo["registration_number"]
        assert data["performed_at"]


# ═══════════════════════════════════════════════════════════════════════════
# TestImmutability
# ═══════════════════════════════════════════════════════════════════════════


class TestImmutability:

    def test_update_blocked(self, make_fpo):
        fpo = make_fpo()
        entry = _entries(fpo["id"])[0]
        entry.reason = "rewritten"
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()
        assert _entries(fpo["id"])[0].reason is None

    def test_delete_blocked(self, make_fpo):
        fpo = make_fpo()
        entry = _entries(fpo["id"])[0]
        db.session.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()
        assert len(_entries(fpo["id"])) == 1


# ═══════════════════════════════════════════════════════════════════════════
# TestHistory
# ═══════════════════════════════════════════════════════════════════════════


class TestHistory:

    def _walk(self, fpo_id):
        svc.submit_fpo(fpo_id, "u1")
        svc.reject_fpo(fpo_id, "reviewer", reason="missing documents")
        svc.resubmit_fpo(fpo_id, "u1")
        svc.submit_fpo(fpo_id, "u1")

    def test_history_oldest_first(self, make_fpo):
        fpo = make_fpo()
        self._walk(fpo["id"])
        history = svc.get_history(fpo["id"])
        actions = [item["action"] for item in history["items"]]
        assert actions == ["register", "submit", "reject", "resubmit", "submit"]
        assert history["total"] == 5

    def test_history_pagination(self, make_fpo):
        fpo = make_fpo()
        self._walk(fpo["id"])
        page1 = svc.get_history(fpo["id"], page=1, per_page=2)
        page3 = svc.get_history(fpo["id"], page=3, per_page=2)
        assert [i["action"] for i in page1["items"]] == ["register", "submit"]
        assert [i["action"] for i in page3["items"]] == ["submit"]
        assert page1["pages"] == 3

    def test_per_page_capped(self, make_fpo):
        fpo = make_fpo()
        assert svc.get_history(fpo["id"], per_page=10_000)["per_page"] == 200

    def test_failed_attempts_recorded(self, make_fpo):
        fpo = make_fpo()
        with pytest.raises(InvalidTransition):
            svc.approve_fpo(fpo["id"], "reviewer")
        entries = _entries(fpo["id"])
        assert entries[-1].outcome == "failed"
        assert entries[-1].error_code == "ERR_INVALID_TRANSITION"
        assert entries[-1].previous_state == entries[-1].new_state == "DRAFT"


# ═══════════════════════════════════════════════════════════════════════════
# TestLedgerDrift
# ═══════════════════════════════════════════════════════════════════════════


class TestLedgerDrift:

    def test_ledger_failure_after_commit(self, make_fpo, monkeypatch, caplog):
        fpo = make_fpo()

        def _broken_write(**kwargs):
            raise SQLAlchemyError("ledger unavailable")

        monkeypatch.setattr(svc, "write_audit", _broken_write)
        with caplog.at_level(logging.CRITICAL, logger="fpo_service.services.fpo_lifecycle"):
            with pytest.raises(AuditLedgerError) as exc:
                svc.submit_fpo(fpo["id"], "u1")

        assert exc.value.current_status == "PENDING_VERIFICATION"
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)
        # The record store is authoritative: the status change stands.
        db.session.expire_all()
        assert db.session.get(FPORef, fpo["id"]).status == FPOStatus.PENDING_VERIFICATION
        assert len(_entries(fpo["id"])) == 1
