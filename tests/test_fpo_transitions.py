"""
FPO Transition Validator Tests - exhaustive coverage of FPO_TRANSITIONS:
  - Every listed (status, action) pair resolves to its target
  - Every other pair is rejected
  - Internal provisioning outcomes are not caller-facing
  - Available actions per status
"""

import pytest

from fpo_service.core.exceptions import InvalidTransition
from fpo_service.models.fpo import FPOAction, FPOStatus
from fpo_service.services.fpo_transitions import (
    available_actions,
    next_status,
    validate_transition,
)

S = FPOStatus
A = FPOAction

ALLOWED = {
    (S.DRAFT, A.SUBMIT): S.PENDING_VERIFICATION,
    (S.PENDING_VERIFICATION, A.APPROVE): S.VERIFIED,
    (S.PENDING_VERIFICATION, A.REJECT): S.REJECTED,
    (S.REJECTED, A.RESUBMIT): S.DRAFT,
    (S.REJECTED, A.ARCHIVE): S.ARCHIVED,
    (S.VERIFIED, A.BEGIN_SETUP): S.PENDING_SETUP,
    (S.PENDING_SETUP, A.SETUP_SUCCEEDED): S.ACTIVE,
    (S.PENDING_SETUP, A.SETUP_FAILED): S.SETUP_FAILED,
    (S.SETUP_FAILED, A.RETRY_SETUP): S.PENDING_SETUP,
    (S.SETUP_FAILED, A.ARCHIVE): S.ARCHIVED,
    (S.ACTIVE, A.SUSPEND): S.SUSPENDED,
    (S.ACTIVE, A.DEACTIVATE): S.INACTIVE,
    (S.SUSPENDED, A.REINSTATE): S.ACTIVE,
    (S.SUSPENDED, A.ARCHIVE): S.ARCHIVED,
    (S.INACTIVE, A.REACTIVATE): S.ACTIVE,
    (S.INACTIVE, A.ARCHIVE): S.ARCHIVED,
}

ALL_PAIRS = [(s, a) for s in FPOStatus for a in FPOAction]
INVALID_PAIRS = [pair for pair in ALL_PAIRS if pair not in ALLOWED]


# ═══════════════════════════════════════════════════════════════════════════
# TestTransitionTable
# ═══════════════════════════════════════════════════════════════════════════


class TestTransitionTable:

    @pytest.mark.parametrize("status,action", list(ALLOWED))
    def test_listed_pairs_resolve(self, status, action):
        assert next_status(status, action, allow_internal=True) == ALLOWED[(status, action)]

    @pytest.mark.parametrize("status,action", INVALID_PAIRS)
    def test_unlisted_pairs_rejected(self, status, action):
        with pytest.raises(InvalidTransition) as exc:
            next_status(status, action, fpo_id="fpo-1", allow_internal=True)
        assert exc.value.from_status == status.value
        assert exc.value.action == action.value
        assert exc.value.current_status == status.value

    def test_string_values_accepted(self):
        assert next_status("DRAFT", "submit") == S.PENDING_VERIFICATION

    def test_unknown_action(self):
        result = validate_transition(S.DRAFT, "teleport")
        assert result["valid"] is False
        assert "Unknown action" in result["reason"]
        with pytest.raises(InvalidTransition):
            next_status(S.DRAFT, "teleport")

    def test_archived_is_terminal(self):
        for action in FPOAction:
            assert not validate_transition(S.ARCHIVED, action, allow_internal=True)["valid"]

    def test_active_cannot_archive(self):
        with pytest.raises(InvalidTransition):
            next_status(S.ACTIVE, A.ARCHIVE)


# ═══════════════════════════════════════════════════════════════════════════
# TestInternalActions
# ═══════════════════════════════════════════════════════════════════════════


class TestInternalActions:

    @pytest.mark.parametrize("action", [A.SETUP_SUCCEEDED, A.SETUP_FAILED])
    def test_internal_actions_rejected_for_callers(self, action):
        result = validate_transition(S.PENDING_SETUP, action)
        assert result["valid"] is False
        assert "provisioning" in result["reason"]

    def test_internal_actions_never_listed(self):
        assert available_actions(S.PENDING_SETUP) == []


# ═══════════════════════════════════════════════════════════════════════════
# TestAvailableActions
# ═══════════════════════════════════════════════════════════════════════════


class TestAvailableActions:

    @pytest.mark.parametrize("status,expected", [
        (S.DRAFT, ["submit"]),
        (S.PENDING_VERIFICATION, ["approve", "reject"]),
        (S.REJECTED, ["resubmit", "archive"]),
        (S.VERIFIED, ["begin-setup"]),
        (S.SETUP_FAILED, ["archive", "retry-setup"]),
        (S.ACTIVE, ["suspend", "deactivate"]),
        (S.SUSPENDED, ["archive", "reinstate"]),
        (S.INACTIVE, ["archive", "reactivate"]),
        (S.ARCHIVED, []),
    ])
    def test_available_actions(self, status, expected):
        assert sorted(available_actions(status)) == sorted(expected)
