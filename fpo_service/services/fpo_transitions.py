"""
FPO Lifecycle - Transition Validator

Pure functions over FPO_TRANSITIONS; no I/O, no session access.

Usage:
    from fpo_service.services.fpo_transitions import next_status

    target = next_status(FPOStatus.DRAFT, "submit")   # PENDING_VERIFICATION
"""

from fpo_service.core.exceptions import InvalidTransition
from fpo_service.models.fpo import FPO_TRANSITIONS, INTERNAL_ACTIONS, FPOAction, FPOStatus


def coerce_action(action) -> FPOAction | None:
    """Return the FPOAction for ``action`` (enum or string), or None if unknown."""
    if isinstance(action, FPOAction):
        return action
    try:
        return FPOAction(action)
    except ValueError:
        return None


def coerce_status(status) -> FPOStatus:
    if isinstance(status, FPOStatus):
        return status
    return FPOStatus(status)


def validate_transition(current, action, *, allow_internal: bool = False) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    current = coerce_status(current)
    act = coerce_action(action)
    if act is None:
        return {"valid": False, "from": current.value, "to": None,
                "reason": f"Unknown action: {action}"}

    if act in INTERNAL_ACTIONS and not allow_internal:
        return {"valid": False, "from": current.value, "to": None,
                "reason": f"'{act.value}' is applied by provisioning only"}

    rule = FPO_TRANSITIONS[act]
    if current not in rule["from"]:
        return {"valid": False, "from": current.value, "to": rule["to"].value,
                "reason": f"Cannot '{act.value}' from status '{current.value}'"}

    return {"valid": True, "from": current.value, "to": rule["to"].value, "reason": None}


def next_status(current, action, *, fpo_id: str | None = None, allow_internal: bool = False) -> FPOStatus:
    """Return the target status or raise InvalidTransition."""
    result = validate_transition(current, action, allow_internal=allow_internal)
    if not result["valid"]:
        raise InvalidTransition(fpo_id, action, result["from"], reason=result["reason"])
    return FPOStatus(result["to"])


def available_actions(current) -> list[str]:
    """Caller-facing actions valid from ``current``, in table order."""
    current = coerce_status(current)
    return [
        act.value
        for act, rule in FPO_TRANSITIONS.items()
        if current in rule["from"] and act not in INTERNAL_ACTIONS
    ]
