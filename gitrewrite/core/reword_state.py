"""States of an in-place reword and the transitions between them."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .exceptions import StateTransitionError


class RewordState(str, Enum):
    """Lifecycle of one in-place reword."""

    IDLE = "idle"
    ABORTING_PRIOR_STATE = "aborting_prior_state"
    REWRITING = "rewriting"
    COMPLETED = "completed"
    FAILED = "failed"


class RewordTransition(BaseModel):
    """Represents a state transition event."""

    from_state: RewordState
    to_state: RewordState
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None


# Valid state transitions
VALID_TRANSITIONS: Dict[RewordState, List[RewordState]] = {
    RewordState.IDLE: [RewordState.ABORTING_PRIOR_STATE],
    RewordState.ABORTING_PRIOR_STATE: [RewordState.REWRITING, RewordState.FAILED],
    RewordState.REWRITING: [RewordState.COMPLETED, RewordState.FAILED],
    RewordState.COMPLETED: [],  # Terminal state
    RewordState.FAILED: [],  # Terminal state
}


def is_valid_transition(from_state: RewordState, to_state: RewordState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def get_valid_next_states(state: RewordState) -> List[RewordState]:
    return list(VALID_TRANSITIONS.get(state, []))


def is_terminal_state(state: RewordState) -> bool:
    return not VALID_TRANSITIONS.get(state)


class RewordStateMachine:
    """Tracks the current state of one reword and its history."""

    def __init__(self):
        self.state = RewordState.IDLE
        self.history: List[RewordTransition] = []

    def transition(self, to_state: RewordState, reason: Optional[str] = None) -> None:
        """
        Move to ``to_state``.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        if not is_valid_transition(self.state, to_state):
            valid_states = get_valid_next_states(self.state)
            raise StateTransitionError(
                f"Invalid reword transition: {self.state.value} -> {to_state.value}. "
                f"Valid next states: {[s.value for s in valid_states]}"
            )

        self.history.append(
            RewordTransition(from_state=self.state, to_state=to_state, reason=reason)
        )
        self.state = to_state

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.state)
