"""
Unit tests for the instance state machine.
"""

import pytest

from review_workflows.domain.enums import InstanceStatus
from review_workflows.domain.state_machine import (
    InstanceStateMachine, InvalidTransitionError
)


class TestInstanceStateMachine:
    """Tests for InstanceStateMachine."""

    def test_valid_transition_running_to_waiting(self):
        """Test RUNNING → WAITING transition."""
        result = InstanceStateMachine.transition(
            InstanceStatus.RUNNING,
            InstanceStatus.WAITING,
        )
        assert result == InstanceStatus.WAITING

    def test_valid_transition_waiting_to_running(self):
        """Test WAITING → RUNNING transition."""
        result = InstanceStateMachine.transition(
            InstanceStatus.WAITING,
            InstanceStatus.RUNNING,
        )
        assert result == InstanceStatus.RUNNING

    def test_valid_transition_running_to_completed(self):
        result = InstanceStateMachine.transition(
            InstanceStatus.RUNNING,
            InstanceStatus.COMPLETED,
        )
        assert result == InstanceStatus.COMPLETED

    def test_valid_transition_waiting_to_cancelled(self):
        result = InstanceStateMachine.transition(
            InstanceStatus.WAITING,
            InstanceStatus.CANCELLED,
        )
        assert result == InstanceStatus.CANCELLED

    def test_waiting_cannot_complete_directly(self):
        """A waiting instance must be resumed before it can finish."""
        with pytest.raises(InvalidTransitionError):
            InstanceStateMachine.transition(
                InstanceStatus.WAITING,
                InstanceStatus.COMPLETED,
            )

    def test_waiting_to_waiting_is_invalid(self):
        assert not InstanceStateMachine.can_transition(
            InstanceStatus.WAITING,
            InstanceStatus.WAITING,
        )

    @pytest.mark.parametrize("terminal", [
        InstanceStatus.COMPLETED,
        InstanceStatus.FAILED,
        InstanceStatus.CANCELLED,
    ])
    def test_terminal_states_have_no_transitions(self, terminal):
        assert InstanceStateMachine.is_terminal(terminal)
        assert InstanceStateMachine.get_valid_transitions(terminal) == set()
        with pytest.raises(InvalidTransitionError):
            InstanceStateMachine.transition(terminal, InstanceStatus.RUNNING)

    def test_active_states(self):
        assert InstanceStateMachine.is_active(InstanceStatus.RUNNING)
        assert InstanceStateMachine.is_active(InstanceStatus.WAITING)
        assert not InstanceStateMachine.is_active(InstanceStatus.COMPLETED)

    def test_invalid_transition_error_message(self):
        error = InvalidTransitionError(InstanceStatus.COMPLETED, InstanceStatus.RUNNING)
        assert "completed" in str(error)
        assert "running" in str(error)

    def test_get_valid_transitions_returns_copy(self):
        transitions = InstanceStateMachine.get_valid_transitions(InstanceStatus.RUNNING)
        transitions.clear()
        assert InstanceStateMachine.get_valid_transitions(InstanceStatus.RUNNING)
