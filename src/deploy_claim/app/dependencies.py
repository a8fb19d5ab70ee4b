"""Per-application service container.

``AppDependencies`` is stored on ``app.state.deps``. It builds the hosting
client lazily so a missing credential surfaces as a ``ConfigurationError``
(HTTP 500) on the routes that need it, instead of preventing startup for
routes that do not (``/health``, ``/metrics``).

One ``DeploymentPoller`` is shared per application so there is never more
than one outstanding wait per deployment.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from .cleanup import CombinedCleanupReport, Reaper, project_kind, run_combined, storage_kind
from .cleanup.kinds import ReaperClient
from .cleanup.reaper import DEFAULT_DELETE_DELAY_SECONDS
from .providers import HostingClient
from .provisioning import ClaimHandshake, DeploymentPoller, ProvisioningOrchestrator
from .settings import DeployClaimSettings

CLEANUP_KINDS = ('project', 'storage')


class AppDependencies:
    def __init__(
        self,
        settings: DeployClaimSettings,
        *,
        client: Any | None = None,
        delete_delay: float = DEFAULT_DELETE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._client = client
        self._poller: DeploymentPoller | None = None
        self._delete_delay = delete_delay
        self._sleep = sleep

    def client(self) -> HostingClient:
        """The hosting client; raises ConfigurationError if not configured."""
        self.settings.require('access_token', 'team_id')
        if self._client is None:
            self._client = HostingClient(
                access_token=self.settings.access_token,
                team_id=self.settings.team_id,
                base_url=self.settings.api_url,
            )
        return self._client

    def poller(self) -> DeploymentPoller:
        if self._poller is None:
            self._poller = DeploymentPoller(
                self.client(),
                timeout_seconds=self.settings.deploy_timeout_seconds,
            )
        return self._poller

    def claim(self) -> ClaimHandshake:
        return ClaimHandshake(self.client())

    def orchestrator(self) -> ProvisioningOrchestrator:
        return ProvisioningOrchestrator(
            self.client(),
            self.settings,
            poller=self.poller(),
            claim=self.claim(),
        )

    def reaper(self, kind: str) -> Reaper:
        if kind == 'project':
            resource_kind = project_kind(self.settings.repo_url)
        elif kind == 'storage':
            resource_kind = storage_kind()
        else:
            raise ValueError(f'unknown cleanup kind: {kind!r}')
        client: ReaperClient = self.client()
        return Reaper(
            client,
            resource_kind,
            delete_delay=self._delete_delay,
            sleep=self._sleep,
        )


async def run_scheduled_cleanup(
    settings: DeployClaimSettings,
    *,
    kinds: tuple[str, ...] = CLEANUP_KINDS,
    dry_run: bool = False,
    client: Any | None = None,
) -> CombinedCleanupReport:
    """Run the reapers for ``kinds`` outside of an HTTP request."""
    deps = AppDependencies(settings, client=client)
    return await run_combined([deps.reaper(kind) for kind in kinds], dry_run=dry_run)
