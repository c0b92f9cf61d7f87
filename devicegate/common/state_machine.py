"""Per-device registration lifecycle enforced by the decision handler."""

NO_REQUEST = "NO_REQUEST"
PENDING = "PENDING"
APPROVED = "APPROVED"
DENIED = "DENIED"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    NO_REQUEST: {PENDING},
    PENDING: {APPROVED, DENIED},
    APPROVED: set(),
    DENIED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def decision_state(approved: bool) -> str:
    """Terminal state reached by one approve/deny decision."""

    return APPROVED if approved else DENIED


def is_terminal(state: str) -> bool:
    return not ALLOWED_TRANSITIONS.get(state, set())
