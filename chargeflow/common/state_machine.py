"""Authorization attempt state machine enforced by the intent lifecycle."""

from enum import Enum


class AttemptState(str, Enum):
    IDLE = "IDLE"
    INTENT_CREATED = "INTENT_CREATED"
    INSTRUMENT_ATTACHED = "INSTRUMENT_ATTACHED"
    PROCESSING = "PROCESSING"
    AWAITING_CHALLENGE = "AWAITING_CHALLENGE"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: dict[AttemptState, set[AttemptState]] = {
    AttemptState.IDLE: {AttemptState.INTENT_CREATED, AttemptState.FAILED},
    AttemptState.INTENT_CREATED: {AttemptState.INSTRUMENT_ATTACHED, AttemptState.FAILED},
    AttemptState.INSTRUMENT_ATTACHED: {
        AttemptState.SUCCEEDED,
        AttemptState.PROCESSING,
        AttemptState.AWAITING_CHALLENGE,
        AttemptState.FAILED,
    },
    AttemptState.PROCESSING: {AttemptState.SUCCEEDED, AttemptState.FAILED},
    AttemptState.AWAITING_CHALLENGE: {AttemptState.PROCESSING, AttemptState.SUCCEEDED, AttemptState.FAILED},
    AttemptState.SUCCEEDED: set(),
    AttemptState.FAILED: set(),
}

TERMINAL_STATES = frozenset({AttemptState.SUCCEEDED, AttemptState.FAILED})


def is_terminal(state: AttemptState) -> bool:
    return state in TERMINAL_STATES


def validate_transition(current: AttemptState, new: AttemptState) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current.value} -> {new.value}")
