"""Provisioning workflow state machine.

The canonical flow for a database-backed template:
  idle -> creating_project -> creating_authorization -> creating_storage
  -> connecting_storage -> deploying -> finished

Templates without a managed database skip the storage block as a whole:
  idle -> creating_project -> deploying -> finished

Any active state may fall back to ``idle`` with an error message; that is
the only backwards transition. There is no automatic retry: a new run
starts again from ``idle``.

State snapshots are immutable and threaded through a single run, never
shared between runs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from types import MappingProxyType


class WorkflowState(str, enum.Enum):
    IDLE = 'idle'
    CREATING_PROJECT = 'creating_project'
    CREATING_AUTHORIZATION = 'creating_authorization'
    CREATING_STORAGE = 'creating_storage'
    CONNECTING_STORAGE = 'connecting_storage'
    DEPLOYING = 'deploying'
    FINISHED = 'finished'


WORKFLOW_SEQUENCE = (
    WorkflowState.IDLE,
    WorkflowState.CREATING_PROJECT,
    WorkflowState.CREATING_AUTHORIZATION,
    WorkflowState.CREATING_STORAGE,
    WorkflowState.CONNECTING_STORAGE,
    WorkflowState.DEPLOYING,
    WorkflowState.FINISHED,
)

ACTIVE_STATES = frozenset(WORKFLOW_SEQUENCE[1:-1])

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        WorkflowState.IDLE: frozenset({WorkflowState.CREATING_PROJECT}),
        WorkflowState.CREATING_PROJECT: frozenset(
            {
                WorkflowState.CREATING_AUTHORIZATION,
                WorkflowState.DEPLOYING,
                WorkflowState.IDLE,
            }
        ),
        WorkflowState.CREATING_AUTHORIZATION: frozenset(
            {WorkflowState.CREATING_STORAGE, WorkflowState.IDLE}
        ),
        WorkflowState.CREATING_STORAGE: frozenset(
            {WorkflowState.CONNECTING_STORAGE, WorkflowState.IDLE}
        ),
        WorkflowState.CONNECTING_STORAGE: frozenset(
            {WorkflowState.DEPLOYING, WorkflowState.IDLE}
        ),
        WorkflowState.DEPLOYING: frozenset(
            {WorkflowState.FINISHED, WorkflowState.IDLE}
        ),
        WorkflowState.FINISHED: frozenset(),
    }
)


@dataclass(frozen=True, slots=True)
class WorkflowSnapshot:
    """State of one provisioning run."""

    state: WorkflowState = WorkflowState.IDLE
    failed_step: WorkflowState | None = None
    error: str | None = None
    state_entered_at: datetime | None = None


class InvalidStateTransition(ValueError):
    """Raised for invalid workflow state transitions."""

    def __init__(self, from_state: WorkflowState, to_state: WorkflowState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f'invalid state transition: {from_state.value!r} -> {to_state.value!r}'
        )


def start(*, now: datetime | None = None) -> WorkflowSnapshot:
    """Begin a run: ``idle`` -> ``creating_project``."""
    return advance(WorkflowSnapshot(), WorkflowState.CREATING_PROJECT, now=now)


def advance(
    snapshot: WorkflowSnapshot,
    to_state: WorkflowState,
    *,
    now: datetime | None = None,
) -> WorkflowSnapshot:
    """Move forward to ``to_state`` if the transition is allowed."""
    if to_state is WorkflowState.IDLE:
        raise InvalidStateTransition(snapshot.state, to_state)
    _check(snapshot.state, to_state)
    return replace(snapshot, state=to_state, state_entered_at=now)


def fail(
    snapshot: WorkflowSnapshot,
    error: str,
    *,
    now: datetime | None = None,
) -> WorkflowSnapshot:
    """Fall back to ``idle`` remembering which step failed and why."""
    if snapshot.state not in ACTIVE_STATES:
        raise InvalidStateTransition(snapshot.state, WorkflowState.IDLE)
    return replace(
        snapshot,
        state=WorkflowState.IDLE,
        failed_step=snapshot.state,
        error=error,
        state_entered_at=now,
    )


def _check(from_state: WorkflowState, to_state: WorkflowState) -> None:
    allowed = ALLOWED_TRANSITIONS.get(from_state, frozenset())
    if to_state not in allowed:
        raise InvalidStateTransition(from_state, to_state)
