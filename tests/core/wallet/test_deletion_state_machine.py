"""
Tests for the Deletion State Machine
"""

import pytest

from tensession.core.errors import InvalidTransitionError, PreconditionError
from tensession.core.wallet import (
    DeletionState,
    DeletionStateMachine,
    DeletionTransition,
)


@pytest.fixture
def transitions():
    return []


@pytest.fixture
def machine(transitions) -> DeletionStateMachine:
    return DeletionStateMachine(on_transition=transitions.append)


class TestDeletionStateMachine:

    def test_initial_state_is_idle(self, machine: DeletionStateMachine):
        assert machine.current_state == DeletionState.IDLE
        assert machine.is_terminal is False
        assert machine.history == []

    def test_happy_path(self, machine: DeletionStateMachine, transitions):
        for state in (
            DeletionState.ACTIVE,
            DeletionState.WITHDRAWING,
            DeletionState.DELETING,
            DeletionState.COMPLETED,
        ):
            machine.transition_to(state)

        assert machine.current_state == DeletionState.COMPLETED
        assert machine.is_terminal is True
        assert [t.to_state for t in transitions] == [
            DeletionState.ACTIVE,
            DeletionState.WITHDRAWING,
            DeletionState.DELETING,
            DeletionState.COMPLETED,
        ]
        assert all(isinstance(t, DeletionTransition) for t in machine.history)

    @pytest.mark.parametrize(
        "path",
        [
            [DeletionState.ACTIVE],
            [DeletionState.ACTIVE, DeletionState.WITHDRAWING],
            [DeletionState.ACTIVE, DeletionState.WITHDRAWING, DeletionState.DELETING],
        ],
    )
    def test_error_reachable_from_in_flight_states(self, machine: DeletionStateMachine, path):
        for state in path:
            machine.transition_to(state)

        transition = machine.fail("withdrawal reverted")

        assert machine.current_state == DeletionState.ERROR
        assert transition.reason == "withdrawal reverted"
        assert machine.is_terminal is True

    def test_cannot_skip_withdrawal(self, machine: DeletionStateMachine):
        machine.transition_to(DeletionState.ACTIVE)

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition_to(DeletionState.DELETING)

        assert exc_info.value.from_state == DeletionState.ACTIVE
        assert exc_info.value.to_state == DeletionState.DELETING
        assert machine.current_state == DeletionState.ACTIVE

    def test_no_backward_transitions(self, machine: DeletionStateMachine):
        machine.transition_to(DeletionState.ACTIVE)
        machine.transition_to(DeletionState.WITHDRAWING)

        with pytest.raises(InvalidTransitionError):
            machine.transition_to(DeletionState.ACTIVE)

    def test_idle_cannot_fail(self, machine: DeletionStateMachine):
        with pytest.raises(InvalidTransitionError):
            machine.fail("nothing started")

    def test_terminal_states_are_final_until_reset(self, machine: DeletionStateMachine):
        machine.transition_to(DeletionState.ACTIVE)
        machine.fail("boom")

        with pytest.raises(InvalidTransitionError):
            machine.transition_to(DeletionState.ACTIVE)

        machine.reset()

        assert machine.current_state == DeletionState.IDLE
        assert machine.can_transition_to(DeletionState.ACTIVE)

    def test_invalid_transition_is_a_precondition_error(self):
        assert issubclass(InvalidTransitionError, PreconditionError)
