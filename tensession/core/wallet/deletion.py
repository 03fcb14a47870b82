"""
Deletion State Machine

Tracks the safe-deletion saga (withdraw, then destroy) and rejects any
transition that is not strictly forward.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from ..errors import InvalidTransitionError
from .models import DeletionState


@dataclass(frozen=True)
class DeletionTransition:
    """Record of one state change."""
    from_state: DeletionState
    to_state: DeletionState
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


TransitionCallback = Callable[[DeletionTransition], None]


class DeletionStateMachine:
    """
    One instance per engine. ERROR and COMPLETED are terminal until an
    explicit ``reset``.
    """

    TRANSITIONS: Dict[DeletionState, Set[DeletionState]] = {
        DeletionState.IDLE: {
            DeletionState.ACTIVE,
        },
        DeletionState.ACTIVE: {
            DeletionState.WITHDRAWING,
            DeletionState.ERROR,
        },
        DeletionState.WITHDRAWING: {
            DeletionState.DELETING,
            DeletionState.ERROR,
        },
        DeletionState.DELETING: {
            DeletionState.COMPLETED,
            DeletionState.ERROR,  # Funds are out, destroy call failed
        },
        DeletionState.COMPLETED: set(),
        DeletionState.ERROR: set(),
    }

    def __init__(
        self,
        on_transition: Optional[TransitionCallback] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._state = DeletionState.IDLE
        self._on_transition = on_transition
        self.logger = logger or logging.getLogger(__name__)
        self.history: List[DeletionTransition] = []

    @property
    def current_state(self) -> DeletionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return not self.TRANSITIONS[self._state]

    def can_transition_to(self, to_state: DeletionState) -> bool:
        return to_state in self.TRANSITIONS.get(self._state, set())

    def transition_to(self, to_state: DeletionState, reason: Optional[str] = None) -> DeletionTransition:
        """
        Move to ``to_state``.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current state
        """
        from_state = self._state
        if not self.can_transition_to(to_state):
            allowed = sorted(s.value for s in self.TRANSITIONS.get(from_state, set()))
            raise InvalidTransitionError(
                from_state=from_state,
                to_state=to_state,
                message=f"Invalid deletion transition from {from_state.value} to "
                        f"{to_state.value}. Allowed: {allowed}",
            )
        return self._apply(to_state, reason)

    def fail(self, reason: str) -> DeletionTransition:
        return self.transition_to(DeletionState.ERROR, reason=reason)

    def reset(self) -> DeletionTransition:
        """Back to IDLE so the user can retry or start over."""
        return self._apply(DeletionState.IDLE, "reset")

    def _apply(self, to_state: DeletionState, reason: Optional[str]) -> DeletionTransition:
        transition = DeletionTransition(from_state=self._state, to_state=to_state, reason=reason)
        self._state = to_state
        self.history.append(transition)
        self.logger.info(
            f"Deletion state {transition.from_state.value} -> {to_state.value}"
            + (f" ({reason})" if reason else "")
        )
        if self._on_transition:
            self._on_transition(transition)
        return transition
