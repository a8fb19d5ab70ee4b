"""Provisioning orchestrator: drives the deploy-and-claim workflow.

Runs the steps strictly in order, each gated on the previous one:

  1. creating_project        create a uniquely named temporary project
  2. creating_authorization  billing authorization (database templates only)
  3. creating_storage        managed database store tied to the authorization
  4. connecting_storage      attach the store to the project
  5. deploying               upload artifact, create deployment, wait for it,
                             start the ownership transfer
  6. finished                claim code available

A failing step aborts the rest and surfaces a ``ProvisioningError`` tagged
with the step that failed. Nothing is retried and nothing is rolled back;
partially provisioned projects are left for the cleanup reaper.

``iter_progress`` yields one ``ProgressEvent`` per started step, and a final
event carrying either the result or the error. ``provision`` consumes that
stream and returns the result or raises.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, TypeVar

from ..errors import (
    DecodeError,
    DeployClaimError,
    UpstreamError,
    ValidationError,
    upstream_message,
)
from ..observability import get_logger
from ..observability.metrics import PROVISION_STEPS_TOTAL
from ..providers.models import (
    BillingAuthorization,
    Deployment,
    ProvisionedProject,
    StorageResource,
)
from ..settings import DeployClaimSettings
from . import state_machine
from .claim import ClaimHandshake
from .poller import DeploymentPoller
from .state_machine import WorkflowSnapshot, WorkflowState
from .templates import (
    Artifact,
    TemplateSpec,
    environment_variables_for,
    get_template,
    load_template_artifact,
)

logger = get_logger(__name__)

T = TypeVar('T')

PROJECT_NAME_PREFIX = 'temp-project-'
PROJECT_NAME_SUFFIX_LENGTH = 10
STORAGE_NAME_PREFIX = 'prisma-postgres-'
_NAME_ALPHABET = string.ascii_lowercase + string.digits


def generate_project_name() -> str:
    """``temp-project-`` plus 10 random lowercase-alphanumeric characters."""
    suffix = ''.join(
        secrets.choice(_NAME_ALPHABET) for _ in range(PROJECT_NAME_SUFFIX_LENGTH)
    )
    return f'{PROJECT_NAME_PREFIX}{suffix}'


def storage_name_for(project_name: str) -> str:
    return f'{STORAGE_NAME_PREFIX}{project_name}'


# ── Inputs / outputs ────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Selection:
    """What to deploy: a registered template key or an uploaded archive."""

    template: str | None = None
    archive: bytes | None = None

    def __post_init__(self) -> None:
        if not self.template and not self.archive:
            raise ValidationError('template', 'template or file is required')


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    project_id: str
    project_name: str
    deployment_id: str
    deployment_url: str
    preview_url: str
    transfer_code: str
    framework: str

    def to_payload(self) -> dict[str, str]:
        return {
            'projectId': self.project_id,
            'projectName': self.project_name,
            'deploymentId': self.deployment_id,
            'deploymentUrl': self.deployment_url,
            'previewUrl': self.preview_url,
            'code': self.transfer_code,
            'framework': self.framework,
        }


class ProvisioningError(DeployClaimError):
    """A workflow step failed; ``step`` names it."""

    def __init__(
        self,
        step: WorkflowState,
        message: str,
        *,
        status_code: int = 500,
        details: Any = None,
    ) -> None:
        self.step = step
        self.status_code = status_code
        super().__init__(message, details=details)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload['step'] = self.step.value
        return payload


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    snapshot: WorkflowSnapshot
    result: ProvisioningResult | None = None
    error: ProvisioningError | None = None

    @property
    def state(self) -> WorkflowState:
        return self.snapshot.state

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {'state': self.state.value}
        if self.result is not None:
            payload['result'] = self.result.to_payload()
        if self.error is not None:
            payload.update(self.error.to_payload())
        return payload


class ProvisioningClient(Protocol):
    async def create_project(
        self, name: str, *, environment_variables: list[dict[str, Any]] | None = None,
    ) -> ProvisionedProject: ...

    async def create_authorization(self, **kwargs: str) -> BillingAuthorization: ...

    async def create_store(self, **kwargs: str) -> StorageResource: ...

    async def connect_store(self, **kwargs: str) -> Any: ...

    async def upload_file(self, content: bytes, digest: str) -> None: ...

    async def create_deployment(
        self, *, project_name: str, file_sha: str, framework: str = 'nextjs',
    ) -> Deployment: ...


_FALLBACK_MESSAGES = {
    WorkflowState.CREATING_PROJECT: 'Failed to create project',
    WorkflowState.CREATING_AUTHORIZATION: 'Failed to create authorization',
    WorkflowState.CREATING_STORAGE: 'Failed to create storage',
    WorkflowState.CONNECTING_STORAGE: 'Failed to connect storage to project',
    WorkflowState.DEPLOYING: 'Failed to create deployment',
}


# ── Orchestrator ────────────────────────────────────────────────────


class ProvisioningOrchestrator:
    """Runs one provisioning workflow per call; holds no per-run state."""

    def __init__(
        self,
        client: ProvisioningClient,
        settings: DeployClaimSettings,
        *,
        poller: DeploymentPoller | None = None,
        claim: ClaimHandshake | None = None,
        name_factory: Callable[[], str] = generate_project_name,
    ) -> None:
        self._client = client
        self._settings = settings
        self._poller = poller or DeploymentPoller(
            client, timeout_seconds=settings.deploy_timeout_seconds,
        )
        self._claim = claim or ClaimHandshake(client)
        self._name_factory = name_factory

    async def provision(self, selection: Selection) -> ProvisioningResult:
        """Run the full workflow; raise ProvisioningError on the failed step."""
        state = WorkflowState.IDLE
        async for event in self.iter_progress(selection):
            if event.error is not None:
                raise event.error
            if event.result is not None:
                return event.result
            state = event.state
        raise ProvisioningError(state, 'Provisioning ended without a result')

    async def iter_progress(self, selection: Selection) -> AsyncIterator[ProgressEvent]:
        """Yield progress events lazily; the final one has result or error."""
        spec: TemplateSpec | None = None
        if selection.template:
            # Unknown templates are rejected before anything is created.
            spec = get_template(selection.template)

        snapshot = state_machine.start(now=_now())
        yield ProgressEvent(snapshot)

        # Step 1: project
        project_name = self._name_factory()
        project, failure = await self._run_step(
            snapshot,
            lambda: self._client.create_project(
                project_name,
                environment_variables=environment_variables_for(spec) or None,
            ),
        )
        if failure is not None:
            yield failure
            return

        if spec is not None and spec.needs_database:
            # Step 2: billing authorization
            snapshot = state_machine.advance(
                snapshot, WorkflowState.CREATING_AUTHORIZATION, now=_now(),
            )
            yield ProgressEvent(snapshot)
            authorization, failure = await self._run_step(
                snapshot, self._create_authorization,
            )
            if failure is not None:
                yield failure
                return

            # Step 3: storage
            snapshot = state_machine.advance(
                snapshot, WorkflowState.CREATING_STORAGE, now=_now(),
            )
            yield ProgressEvent(snapshot)
            store, failure = await self._run_step(
                snapshot,
                lambda: self._create_store(project.name, authorization.id),
            )
            if failure is not None:
                yield failure
                return

            # Step 4: connection
            snapshot = state_machine.advance(
                snapshot, WorkflowState.CONNECTING_STORAGE, now=_now(),
            )
            yield ProgressEvent(snapshot)
            _, failure = await self._run_step(
                snapshot, lambda: self._connect_store(store.id, project.id),
            )
            if failure is not None:
                yield failure
                return

        # Step 5: deploy, wait, claim
        snapshot = state_machine.advance(snapshot, WorkflowState.DEPLOYING, now=_now())
        yield ProgressEvent(snapshot)
        result, failure = await self._run_step(
            snapshot, lambda: self._deploy_and_claim(selection, spec, project),
        )
        if failure is not None:
            yield failure
            return

        snapshot = state_machine.advance(snapshot, WorkflowState.FINISHED, now=_now())
        logger.info(
            'provisioning_finished',
            project_id=result.project_id,
            project_name=result.project_name,
            deployment_url=result.deployment_url,
        )
        yield ProgressEvent(snapshot, result=result)

    # ── Steps ───────────────────────────────────────────────────────

    async def _create_authorization(self) -> BillingAuthorization:
        self._settings.require('integration_config_id')
        return await self._client.create_authorization(
            integration_id_or_slug=self._settings.integration_id,
            product_id=self._settings.integration_product_id,
            billing_plan_id=self._settings.billing_plan_id,
            integration_config_id=self._settings.integration_config_id,
            region=self._settings.region,
        )

    async def _create_store(self, project_name: str, authorization_id: str) -> StorageResource:
        self._settings.require('integration_config_id')
        return await self._client.create_store(
            name=storage_name_for(project_name),
            product_id=self._settings.integration_product_id,
            authorization_id=authorization_id,
            billing_plan_id=self._settings.billing_plan_id,
            integration_config_id=self._settings.integration_config_id,
            region=self._settings.region,
        )

    async def _connect_store(self, store_id: str, project_id: str) -> Any:
        self._settings.require('integration_config_id')
        try:
            return await self._client.connect_store(
                integration_config_id=self._settings.integration_config_id,
                product_id=self._settings.integration_product_id,
                store_id=store_id,
                project_id=project_id,
            )
        except UpstreamError as exc:
            if exc.status_code != 409:
                raise
            logger.info('store_already_connected', store_id=store_id, project_id=project_id)
            return None

    async def _deploy_and_claim(
        self,
        selection: Selection,
        spec: TemplateSpec | None,
        project: ProvisionedProject,
    ) -> ProvisioningResult:
        if spec is not None:
            artifact = load_template_artifact(spec.key, self._settings.templates_dir)
        else:
            artifact = Artifact.from_bytes(selection.archive or b'')
        framework = spec.framework if spec is not None else 'nextjs'

        await self._client.upload_file(artifact.content, artifact.sha)
        deployment = await self._client.create_deployment(
            project_name=project.name,
            file_sha=artifact.sha,
            framework=framework,
        )
        if not deployment.public_url:
            raise DecodeError('Deployment response is missing a URL', body=str(dict(deployment.raw)))

        outcome = await self._poller.await_ready(deployment.url or deployment.id)
        outcome.raise_for_status()

        transfer = await self._claim.start_transfer(deployment.project_id or project.id)
        return ProvisioningResult(
            project_id=project.id,
            project_name=project.name,
            deployment_id=deployment.id,
            deployment_url=deployment.public_url,
            preview_url=f'https://{project.name}.vercel.app',
            transfer_code=transfer.code,
            framework=framework,
        )

    async def _run_step(
        self,
        snapshot: WorkflowSnapshot,
        call: Callable[[], Awaitable[T]],
    ) -> tuple[T, None] | tuple[None, ProgressEvent]:
        step = snapshot.state
        try:
            value = await call()
        except DeployClaimError as exc:
            message = upstream_message(exc, _FALLBACK_MESSAGES[step])
            PROVISION_STEPS_TOTAL.labels(step=step.value, outcome='error').inc()
            logger.error(
                'provisioning_step_failed',
                step=step.value,
                error=message,
                status_code=exc.status_code,
            )
            error = ProvisioningError(
                step, message, status_code=exc.status_code, details=exc.details,
            )
            failed = state_machine.fail(snapshot, message, now=_now())
            return None, ProgressEvent(failed, error=error)

        PROVISION_STEPS_TOTAL.labels(step=step.value, outcome='ok').inc()
        return value, None


def _now() -> datetime:
    return datetime.now(timezone.utc)
