"""
State machine for the workflow instance lifecycle.

Enforces valid status transitions so that a terminal instance never runs
another step or accepts another signal.
"""

from typing import Dict, Set

from .enums import InstanceStatus


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: InstanceStatus, to_state: InstanceStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition from {from_state.value} to {to_state.value}"
        )


class InstanceStateMachine:
    """
    State machine for workflow instance status transitions.

    Valid transitions:
    - RUNNING → WAITING: Instance suspends on wait_for_event
    - WAITING → RUNNING: A signal or the deadline sweep resumes it
    - RUNNING → COMPLETED: Definition finished
    - RUNNING → FAILED: A step exhausted its retries
    - RUNNING/WAITING → CANCELLED: Manual cancellation

    Terminal states: COMPLETED, FAILED, CANCELLED
    """

    TRANSITIONS: Dict[InstanceStatus, Set[InstanceStatus]] = {
        InstanceStatus.RUNNING: {
            InstanceStatus.WAITING,
            InstanceStatus.COMPLETED,
            InstanceStatus.FAILED,
            InstanceStatus.CANCELLED,
        },
        InstanceStatus.WAITING: {
            InstanceStatus.RUNNING,
            InstanceStatus.CANCELLED,
        },
        InstanceStatus.COMPLETED: set(),
        InstanceStatus.FAILED: set(),
        InstanceStatus.CANCELLED: set(),
    }

    TERMINAL_STATES: Set[InstanceStatus] = {
        InstanceStatus.COMPLETED,
        InstanceStatus.FAILED,
        InstanceStatus.CANCELLED,
    }

    ACTIVE_STATES: Set[InstanceStatus] = {
        InstanceStatus.RUNNING,
        InstanceStatus.WAITING,
    }

    @classmethod
    def can_transition(
        cls,
        from_state: InstanceStatus,
        to_state: InstanceStatus,
    ) -> bool:
        """Check if a transition is valid."""
        return to_state in cls.TRANSITIONS.get(from_state, set())

    @classmethod
    def validate_transition(
        cls,
        from_state: InstanceStatus,
        to_state: InstanceStatus,
    ) -> None:
        """Validate a transition, raising an error if invalid."""
        if not cls.can_transition(from_state, to_state):
            raise InvalidTransitionError(from_state, to_state)

    @classmethod
    def transition(
        cls,
        from_state: InstanceStatus,
        to_state: InstanceStatus,
    ) -> InstanceStatus:
        """
        Perform a state transition.

        Returns the new state if valid, raises InvalidTransitionError otherwise.
        """
        cls.validate_transition(from_state, to_state)
        return to_state

    @classmethod
    def is_terminal(cls, state: InstanceStatus) -> bool:
        """Check if a state is terminal (no further transitions possible)."""
        return state in cls.TERMINAL_STATES

    @classmethod
    def is_active(cls, state: InstanceStatus) -> bool:
        return state in cls.ACTIVE_STATES

    @classmethod
    def get_valid_transitions(cls, state: InstanceStatus) -> Set[InstanceStatus]:
        """Get all valid transitions from a given state."""
        return cls.TRANSITIONS.get(state, set()).copy()
