"""
Execution lifecycle states and the rules for moving between them.

An execution starts RUNNING. It may park on a checkpoint (PAUSED) and be
picked up again, and it ends either COMPLETED or FAILED. A paused run can
also end without running again: a rejected approval completes it and an
unrecoverable resume fails it.
"""

from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from automation_engine.core.clock import utc_now


class ExecutionStatus(str, Enum):
    """Lifecycle status of a single workflow run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"  # waiting on a delay or approval checkpoint

    @property
    def is_final(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


VALID_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.RUNNING: frozenset(
        {ExecutionStatus.PAUSED, ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.PAUSED: frozenset(
        {ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}


def can_transition(from_state: ExecutionStatus, to_state: ExecutionStatus) -> bool:
    """Return True when ``from_state -> to_state`` is an allowed move."""
    return to_state in VALID_TRANSITIONS.get(from_state, frozenset())


class StateTransition(BaseModel):
    """One recorded status change."""

    from_state: str
    to_state: str
    at: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = None
    triggered_by: Optional[str] = None  # executor, scheduler, api


class InvalidStateTransitionError(Exception):
    """A status change was requested that the lifecycle does not allow."""

    def __init__(self, from_state: ExecutionStatus, to_state: ExecutionStatus, detail: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        message = f"Cannot move execution from {from_state.value} to {to_state.value}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ExecutionStateMachine:
    """
    Tracks the status of one execution and enforces the transition table.

    The executor builds one around a loaded Execution, applies the change,
    then copies ``state`` back onto the record before persisting it.
    """

    def __init__(self, initial_state: ExecutionStatus = ExecutionStatus.RUNNING):
        self._state = initial_state
        self._transitions: list[StateTransition] = []

    @property
    def state(self) -> ExecutionStatus:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        return list(self._transitions)

    @property
    def is_terminal(self) -> bool:
        return self._state.is_final

    @property
    def is_suspended(self) -> bool:
        return self._state is ExecutionStatus.PAUSED

    def can_transition_to(self, to_state: ExecutionStatus) -> bool:
        return can_transition(self._state, to_state)

    def transition(
        self,
        to_state: ExecutionStatus,
        reason: Optional[str] = None,
        triggered_by: Optional[str] = None,
        guard: Optional[Callable[[], bool]] = None,
    ) -> StateTransition:
        """
        Move to ``to_state`` and record the change.

        Args:
            to_state: Status to move to
            reason: Free-text explanation stored with the change
            triggered_by: Component requesting the change
            guard: Extra precondition evaluated after the table check

        Returns:
            The recorded StateTransition

        Raises:
            InvalidStateTransitionError: If the table or the guard refuses
        """
        if not self.can_transition_to(to_state):
            allowed = ", ".join(sorted(s.value for s in VALID_TRANSITIONS[self._state])) or "none"
            raise InvalidStateTransitionError(self._state, to_state, f"allowed: {allowed}")

        if guard is not None and not guard():
            raise InvalidStateTransitionError(self._state, to_state, "Guard condition failed")

        record = StateTransition(
            from_state=self._state.value,
            to_state=to_state.value,
            reason=reason,
            triggered_by=triggered_by,
        )
        self._transitions.append(record)
        self._state = to_state
        return record
