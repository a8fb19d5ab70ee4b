"""Bounded wait for a deployment to reach a terminal state.

The wait consumes the deployment's long-lived event stream rather than
busy-polling. If the server closes the stream before a terminal state is
seen, the current state is read once and the stream is reopened.

When the time budget elapses the wait is abandoned cooperatively (the
stream task is cancelled, which closes the connection), then exactly one
cancellation request is issued. Its outcome is reported separately from
the timeout itself, because cancelling can fail too.

Outcomes:
  READY      -> deployment is serving
  FAILED     -> deployment reported ERROR
  CANCELED   -> deployment was canceled by someone else
  TIMED_OUT  -> budget elapsed; ``cancellation`` says whether cancel worked
"""

from __future__ import annotations

import asyncio
import enum
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncGenerator, Protocol

from ..errors import DeployClaimError
from ..observability import get_logger
from ..observability.metrics import DEPLOYMENT_WAITS_TOTAL
from ..providers.models import TERMINAL_READY_STATES, Deployment

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 4 * 60
DEFAULT_RECONNECT_DELAY_SECONDS = 1.0


class DeploymentWatcher(Protocol):
    """The subset of the hosting client the poller needs."""

    def follow_deployment(self, id_or_url: str) -> AsyncGenerator[str, None]: ...

    async def get_deployment(self, id_or_url: str) -> Deployment: ...

    async def cancel_deployment(self, id_or_url: str) -> Deployment: ...


class PollStatus(str, enum.Enum):
    READY = 'ready'
    FAILED = 'failed'
    CANCELED = 'canceled'
    TIMED_OUT = 'timed_out'


_STATUS_BY_READY_STATE = {
    'READY': PollStatus.READY,
    'ERROR': PollStatus.FAILED,
    'CANCELED': PollStatus.CANCELED,
}


@dataclass(frozen=True, slots=True)
class CancellationOutcome:
    succeeded: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class PollOutcome:
    status: PollStatus
    deployment: str
    elapsed_seconds: float
    ready_state: str | None = None
    cancellation: CancellationOutcome | None = None

    @property
    def is_ready(self) -> bool:
        return self.status is PollStatus.READY

    def raise_for_status(self) -> None:
        """Raise the matching error unless the deployment is ready."""
        if self.status is PollStatus.READY:
            return
        if self.status is PollStatus.TIMED_OUT:
            raise DeploymentTimeoutError(self)
        raise DeploymentFailedError(self)


class DeploymentTimeoutError(DeployClaimError):
    """Deployment did not reach a terminal state within the budget."""

    status_code = 408

    def __init__(self, outcome: PollOutcome) -> None:
        self.outcome = outcome
        cancellation = outcome.cancellation
        if cancellation is not None and not cancellation.succeeded:
            message = 'Failed to cancel deployment.'
            details = {'cancel_error': cancellation.error}
        else:
            message = 'Deployment cancelled due to timeout.'
            details = None
        super().__init__(message, details=details)


class DeploymentFailedError(DeployClaimError):
    """Deployment reached ERROR or was canceled externally."""

    status_code = 502

    def __init__(self, outcome: PollOutcome) -> None:
        self.outcome = outcome
        super().__init__(
            f'Deployment finished in state {outcome.ready_state}',
            details={'readyState': outcome.ready_state},
        )


class PollerBusyError(DeployClaimError):
    """A wait is already outstanding for this deployment."""

    status_code = 409

    def __init__(self, deployment: str) -> None:
        super().__init__(f'Already waiting for deployment {deployment}')


class DeploymentPoller:
    """Waits for deployments with a fixed time budget and single-shot cancel.

    Args:
        watcher: Hosting client (or any object with the same three calls).
        timeout_seconds: Default budget for ``await_ready``.
        reconnect_delay: Pause before reopening a stream that closed early.
    """

    def __init__(
        self,
        watcher: DeploymentWatcher,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._watcher = watcher
        self._timeout = timeout_seconds
        self._reconnect_delay = reconnect_delay
        self._waiting: set[str] = set()

    async def await_ready(
        self,
        deployment: str,
        timeout: float | None = None,
    ) -> PollOutcome:
        """Wait until ``deployment`` (id or URL) is terminal or time runs out."""
        if deployment in self._waiting:
            raise PollerBusyError(deployment)
        self._waiting.add(deployment)

        budget = self._timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            try:
                ready_state = await asyncio.wait_for(
                    self._wait_terminal(deployment), timeout=budget,
                )
            except asyncio.TimeoutError:
                cancellation = await self._cancel(deployment)
                outcome = PollOutcome(
                    status=PollStatus.TIMED_OUT,
                    deployment=deployment,
                    elapsed_seconds=loop.time() - started,
                    cancellation=cancellation,
                )
            else:
                outcome = PollOutcome(
                    status=_STATUS_BY_READY_STATE[ready_state],
                    deployment=deployment,
                    elapsed_seconds=loop.time() - started,
                    ready_state=ready_state,
                )
        finally:
            self._waiting.discard(deployment)

        DEPLOYMENT_WAITS_TOTAL.labels(outcome=outcome.status.value).inc()
        logger.info(
            'deployment_wait_finished',
            deployment=deployment,
            status=outcome.status.value,
            ready_state=outcome.ready_state,
            elapsed_seconds=round(outcome.elapsed_seconds, 2),
        )
        return outcome

    async def _wait_terminal(self, deployment: str) -> str:
        while True:
            async with aclosing(self._watcher.follow_deployment(deployment)) as states:
                async for state in states:
                    if state in TERMINAL_READY_STATES:
                        return state

            current = await self._watcher.get_deployment(deployment)
            if current.is_terminal:
                return current.ready_state
            logger.debug(
                'deployment_stream_reopened',
                deployment=deployment,
                ready_state=current.ready_state,
            )
            await asyncio.sleep(self._reconnect_delay)

    async def _cancel(self, deployment: str) -> CancellationOutcome:
        logger.warning('deployment_wait_timed_out', deployment=deployment)
        try:
            await self._watcher.cancel_deployment(deployment)
        except DeployClaimError as exc:
            logger.error(
                'deployment_cancel_failed',
                deployment=deployment,
                error=exc.message,
            )
            return CancellationOutcome(succeeded=False, error=exc.message)
        return CancellationOutcome(succeeded=True)
