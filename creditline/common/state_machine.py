"""Webhook delivery state machine enforced by the webhook receiver."""

RECEIVED = "RECEIVED"
REJECTED = "REJECTED"
SIGNATURE_VERIFIED = "SIGNATURE_VERIFIED"
DUPLICATE = "DUPLICATE"
PROCESSING = "PROCESSING"
APPLIED = "APPLIED"
FAILED = "FAILED"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    RECEIVED: {SIGNATURE_VERIFIED, REJECTED},
    SIGNATURE_VERIFIED: {DUPLICATE, PROCESSING, REJECTED},
    PROCESSING: {APPLIED, FAILED, REJECTED},
    REJECTED: set(),
    DUPLICATE: set(),
    APPLIED: set(),
    FAILED: set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


class DeliveryState:
    """Tracks one delivery's progress through the webhook states."""

    def __init__(self) -> None:
        self.current = RECEIVED
        self.history = [RECEIVED]

    def advance(self, new: str) -> None:
        validate_transition(self.current, new)
        self.current = new
        self.history.append(new)

    @property
    def terminal(self) -> bool:
        return self.current in TERMINAL_STATES
