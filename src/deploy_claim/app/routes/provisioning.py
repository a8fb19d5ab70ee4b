"""Provisioning HTTP surface.

Single-step endpoints, one per workflow step, for clients that drive the
workflow themselves:

  POST  /api/create-project
  POST  /api/create-authorization
  POST  /api/create-storage
  POST  /api/connect-storage-to-project
  POST  /api/deploy?projectName=...           (multipart: template | file)
  GET   /api/wait-for-deploy/{deployment}
  PATCH /api/cancel-deployment/{deployment}
  POST  /api/start-project-transfer

Orchestrated endpoints, where the server runs every step:

  POST  /api/provision                        (multipart: template | file)
  POST  /api/provision/events                 NDJSON progress stream

Response contracts:
  - Success bodies pass upstream JSON through.
  - Missing fields are 400 ``{error: "<field> is required"}``.
  - Upstream failures mirror the upstream status with
    ``{error: "<what failed>: <status>", details: <upstream body>}``.
  - Transport and configuration failures are 500.
"""

from __future__ import annotations

import json
from typing import AsyncIterator

from fastapi import APIRouter, File, Form, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ..dependencies import AppDependencies
from ..errors import DeployClaimError, UpstreamError, ValidationError
from ..observability import get_logger
from ..provisioning import Selection
from ..provisioning.orchestrator import generate_project_name, storage_name_for
from ..provisioning.templates import (
    Artifact,
    environment_variables_for,
    get_template,
    load_template_artifact,
)

logger = get_logger(__name__)


# ── Request schemas ───────────────────────────────────────────────────


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EnvironmentVariable(_Body):
    key: str = Field(min_length=1)
    value: str
    target: list[str] = Field(default_factory=lambda: ['production', 'preview', 'development'])
    type: str = 'encrypted'


class CreateProjectRequest(_Body):
    template: str | None = None
    environment_variables: list[EnvironmentVariable] | None = Field(
        default=None, alias='environmentVariables',
    )


class CreateAuthorizationRequest(_Body):
    integration_id_or_slug: str = Field(alias='integrationIdOrSlug', min_length=1)
    integration_product_id: str = Field(alias='integrationProductId', min_length=1)
    billing_plan_id: str = Field(alias='billingPlanId', min_length=1)
    region: str | None = None


class CreateStorageRequest(_Body):
    project_name: str = Field(alias='projectName', min_length=1)
    integration_product_id: str = Field(alias='integrationProductId', min_length=1)
    authorization_id: str = Field(alias='authorizationId', min_length=1)
    billing_plan_id: str = Field(alias='billingPlanId', min_length=1)
    region: str | None = None


class ConnectStorageRequest(_Body):
    store_id: str = Field(alias='storeId', min_length=1)
    project_id: str = Field(alias='projectId', min_length=1)


class StartTransferRequest(_Body):
    project_id: str = Field(alias='projectId', min_length=1)


# ── Response helpers ──────────────────────────────────────────────────


def _failure_response(exc: DeployClaimError, what: str) -> JSONResponse:
    """Render a hosting failure the way every single-step route does."""
    if isinstance(exc, UpstreamError):
        logger.error('hosting_call_failed', what=what, status=exc.status_code)
        return JSONResponse(
            status_code=exc.status_code,
            content={'error': f'{what}: {exc.status_code}', 'details': exc.body},
        )
    logger.error('hosting_call_failed', what=what, error=exc.message)
    return JSONResponse(status_code=500, content={'error': what})


async def _selection_from_form(
    template: str | None,
    file: UploadFile | None,
) -> Selection:
    if template:
        return Selection(template=template)
    if file is not None:
        return Selection(archive=await file.read())
    raise ValidationError('template', 'template or file is required')


# ── Route factory ─────────────────────────────────────────────────────


def create_provisioning_router(deps: AppDependencies) -> APIRouter:
    """Create the provisioning router bound to ``deps``."""
    router = APIRouter(prefix='/api', tags=['provisioning'])
    settings = deps.settings

    @router.post('/create-project')
    async def create_project(body: CreateProjectRequest | None = None):
        client = deps.client()
        body = body or CreateProjectRequest()

        env_vars = [v.model_dump() for v in body.environment_variables or []]
        if not env_vars and body.template:
            env_vars = environment_variables_for(get_template(body.template))

        try:
            project = await client.create_project(
                generate_project_name(), environment_variables=env_vars or None,
            )
        except DeployClaimError as exc:
            return _failure_response(exc, 'Failed to create project')
        return dict(project.raw)

    @router.post('/create-authorization')
    async def create_authorization(body: CreateAuthorizationRequest):
        settings.require('integration_config_id')
        client = deps.client()
        try:
            authorization = await client.create_authorization(
                integration_id_or_slug=body.integration_id_or_slug,
                product_id=body.integration_product_id,
                billing_plan_id=body.billing_plan_id,
                integration_config_id=settings.integration_config_id,
                region=body.region or settings.region,
            )
        except DeployClaimError as exc:
            return _failure_response(exc, 'Failed to create authorization')
        return dict(authorization.raw)

    @router.post('/create-storage')
    async def create_storage(body: CreateStorageRequest):
        settings.require('integration_config_id')
        client = deps.client()
        try:
            store = await client.create_store(
                name=storage_name_for(body.project_name),
                product_id=body.integration_product_id,
                authorization_id=body.authorization_id,
                billing_plan_id=body.billing_plan_id,
                integration_config_id=settings.integration_config_id,
                region=body.region or settings.region,
            )
        except DeployClaimError as exc:
            return _failure_response(exc, 'Failed to create storage store')
        return {'storage': {'store': dict(store.raw)}}

    @router.post('/connect-storage-to-project')
    async def connect_storage_to_project(body: ConnectStorageRequest):
        settings.require('integration_config_id')
        client = deps.client()
        try:
            connection = await client.connect_store(
                integration_config_id=settings.integration_config_id,
                product_id=settings.integration_product_id,
                store_id=body.store_id,
                project_id=body.project_id,
            )
        except UpstreamError as exc:
            if exc.status_code != 409:
                return _failure_response(exc, 'Failed to connect storage store to project')
            logger.info('store_already_connected', store_id=body.store_id)
            connection = None
        except DeployClaimError as exc:
            return _failure_response(exc, 'Failed to connect storage store to project')
        return {'connection': connection}

    @router.post('/deploy')
    async def deploy(
        projectName: str | None = None,
        template: str | None = Form(default=None),
        file: UploadFile | None = File(default=None),
    ):
        if not projectName:
            raise ValidationError('projectName')
        client = deps.client()
        selection = await _selection_from_form(template, file)

        if selection.template:
            spec = get_template(selection.template)
            artifact = load_template_artifact(spec.key, settings.templates_dir)
            framework = spec.framework
        else:
            artifact = Artifact.from_bytes(selection.archive or b'')
            framework = 'nextjs'

        try:
            await client.upload_file(artifact.content, artifact.sha)
        except DeployClaimError as exc:
            logger.error('file_upload_failed', error=exc.message)
            return JSONResponse(status_code=500, content={'error': 'Failed to upload file'})

        try:
            deployment = await client.create_deployment(
                project_name=projectName, file_sha=artifact.sha, framework=framework,
            )
        except UpstreamError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={'error': 'Failed to create deployment', 'details': exc.body},
            )
        except DeployClaimError as exc:
            return _failure_response(exc, 'Failed to create deployment')
        return {'deployment': dict(deployment.raw)}

    @router.get('/wait-for-deploy/{deployment:path}')
    async def wait_for_deploy(deployment: str):
        outcome = await deps.poller().await_ready(deployment)
        outcome.raise_for_status()
        return {'status': outcome.status.value, 'readyState': outcome.ready_state}

    @router.patch('/cancel-deployment/{deployment:path}')
    async def cancel_deployment(deployment: str):
        client = deps.client()
        try:
            canceled = await client.cancel_deployment(deployment)
        except DeployClaimError as exc:
            return _failure_response(exc, 'Failed to cancel deployment')
        return {'deployment': dict(canceled.raw)}

    @router.post('/start-project-transfer')
    async def start_project_transfer(body: StartTransferRequest):
        transfer = await deps.claim().start_transfer(body.project_id)
        return dict(transfer.raw)

    @router.post('/provision')
    async def provision(
        template: str | None = Form(default=None),
        file: UploadFile | None = File(default=None),
    ):
        selection = await _selection_from_form(template, file)
        result = await deps.orchestrator().provision(selection)
        return result.to_payload()

    @router.post('/provision/events')
    async def provision_events(
        template: str | None = Form(default=None),
        file: UploadFile | None = File(default=None),
    ):
        selection = await _selection_from_form(template, file)
        if selection.template:
            # Unknown templates must fail before the 200 stream starts.
            get_template(selection.template)
        orchestrator = deps.orchestrator()

        async def lines() -> AsyncIterator[str]:
            async for event in orchestrator.iter_progress(selection):
                yield json.dumps(event.to_payload()) + '\n'

        return StreamingResponse(lines(), media_type='application/x-ndjson')

    return router
