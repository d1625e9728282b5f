"""Deterministic pipeline state machine.

Enforces:
- Valid state transitions only (transition table per pipeline)
- FAILED reachable from any non-terminal state
- Every transition recorded in an in-memory trail for the run
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Generic, TypeVar

from tagdeploy.models.states import (
    BRANCH_TRANSITIONS,
    RELEASE_TRANSITIONS,
    BranchState,
    ReleaseState,
    StateTransition,
)

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StateMachine(Generic[S]):
    """Tracks one pipeline run's state against a transition table.

    Parameters
    ----------
    transitions:
        Mapping of state to the set of states reachable from it.
    initial:
        Starting state.
    name:
        Pipeline name used in log lines.
    """

    def __init__(self, transitions: Mapping[S, set[S]], initial: S, *, name: str) -> None:
        self._transitions = transitions
        self._state = initial
        self._name = name
        self._trail: list[StateTransition] = []

    @property
    def state(self) -> S:
        return self._state

    @property
    def trail(self) -> list[StateTransition]:
        """Snapshot of every transition so far, oldest first."""
        return list(self._trail)

    @property
    def is_terminal(self) -> bool:
        return not self._transitions.get(self._state)

    def can_transition(self, target: S) -> bool:
        return target in self._transitions.get(self._state, set())

    def transition(self, target: S, detail: str = "") -> StateTransition:
        """Move to *target*, recording the transition.

        Raises ``InvalidTransitionError`` if the table does not allow it.
        """
        if not self.can_transition(target):
            allowed = sorted(s.value for s in self._transitions.get(self._state, set()))
            raise InvalidTransitionError(
                f"Cannot transition {self._name} from {self._state.value} to "
                f"{target.value}. Allowed: {allowed}"
            )

        record = StateTransition(
            from_state=self._state.value,
            to_state=target.value,
            detail=detail,
        )
        self._trail.append(record)
        logger.debug("%s: %s -> %s %s", self._name, self._state.value, target.value, detail)
        self._state = target
        return record


def release_machine() -> StateMachine[ReleaseState]:
    return StateMachine(RELEASE_TRANSITIONS, ReleaseState.IDLE, name="release")


def branch_machine() -> StateMachine[BranchState]:
    return StateMachine(BRANCH_TRANSITIONS, BranchState.IDLE, name="branch")
