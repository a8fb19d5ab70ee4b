"""Async HTTP client for the hosting provider API.

Wraps the project, storage, integration, file, deployment and transfer
endpoints the provisioning workflow and the cleanup reaper need. Auth uses
a static bearer token (server-side only); when a team scope is configured
it is appended to every call as the ``teamId`` query parameter.

Failures are mapped onto the shared error taxonomy:
  - network problems and timeouts -> ``TransportError``
  - non-2xx responses             -> ``UpstreamError`` (status + parsed body)
  - 2xx with an undecodable body  -> ``DecodeError``

Nothing is retried by default. ``rate_limit_retries`` enables a bounded
retry for HTTP 429 only, honouring ``Retry-After``.
"""

from __future__ import annotations

import asyncio
import json as jsonlib
import time
from typing import Any, AsyncGenerator

import httpx

from ..errors import DecodeError, TransportError, UpstreamError
from ..observability import get_logger
from .models import (
    BillingAuthorization,
    Deployment,
    Page,
    ProvisionedProject,
    StorageResource,
)

logger = get_logger(__name__)

DEFAULT_PAGE_LIMIT = 100
SOURCE_ARCHIVE_PATH = ".vercel/source.tgz"
_DEFAULT_MAX_RETRY_DELAY = 30.0  # seconds


# ── Module-level shared client ───────────────────────────────────

_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _reset_shared_async_client_for_tests() -> None:
    global _shared_async_client
    _shared_async_client = None


# ── Client ───────────────────────────────────────────────────────


class HostingClient:
    """Async HTTP client for the hosting provider REST API."""

    def __init__(
        self,
        *,
        access_token: str,
        team_id: str = "",
        base_url: str = "https://api.vercel.com",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        rate_limit_retries: int = 0,
        max_retry_delay: float = _DEFAULT_MAX_RETRY_DELAY,
    ) -> None:
        if not access_token:
            raise ValueError("access_token is required")

        self._access_token = access_token
        self._team_id = team_id
        self._base_url = base_url.rstrip("/")
        self._client = http_client or _get_shared_async_client()
        self._timeout = float(timeout_seconds)
        self._rate_limit_retries = rate_limit_retries
        self._max_retry_delay = max_retry_delay

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    def _scoped_params(self, params: dict[str, Any] | None) -> dict[str, str]:
        scoped = {k: str(v) for k, v in (params or {}).items() if v is not None}
        if self._team_id:
            scoped["teamId"] = self._team_id
        return scoped

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        text = resp.text
        body: Any = text
        message = ""
        try:
            body = resp.json()
        except ValueError:
            pass

        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                message = str(error.get("message", ""))
            elif isinstance(error, str):
                message = error
            message = message or str(body.get("message", ""))

        raise UpstreamError(
            resp.status_code,
            message or f"HTTP {resp.status_code}: {text[:200]}",
            body=body,
        )

    def _decode(self, resp: httpx.Response) -> Any:
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise DecodeError(
                f"Failed to parse response: {e}", body=resp.text[:200],
            ) from e

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute one HTTP request, retrying 429s only when enabled."""
        url = f"{self._base_url}{path}"
        request_headers = {**self._auth_headers(), **(headers or {})}

        attempt = 0
        while True:
            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers=request_headers,
                    json=json,
                    params=self._scoped_params(params),
                    content=content,
                    timeout=self._timeout,
                )
            except httpx.TimeoutException as e:
                raise TransportError(f"Request to hosting API timed out: {method} {path}") from e
            except httpx.HTTPError as e:
                raise TransportError(f"Failed to reach hosting API: {e}") from e

            if resp.status_code != 429 or attempt >= self._rate_limit_retries:
                return resp

            delay = self._retry_after_delay(resp)
            attempt += 1
            logger.warning(
                "hosting_rate_limited",
                method=method,
                path=path,
                attempt=attempt,
                retry_in=delay,
            )
            await asyncio.sleep(delay)

    def _retry_after_delay(self, resp: httpx.Response) -> float:
        """Use Retry-After header if present, otherwise one second."""
        retry_after = resp.headers.get("retry-after")
        if retry_after:
            try:
                return min(max(float(retry_after), 0.1), self._max_retry_delay)
            except ValueError:
                pass
        return 1.0

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any | None = None,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a JSON request and return the parsed response body."""
        resp = await self._send(method, path, json=body, params=params)
        self._raise_for_status(resp)
        return self._decode(resp)

    async def _list_page(
        self,
        path: str,
        items_key: str,
        *,
        limit: int,
        until: int | str | None,
    ) -> Page:
        payload = await self.request(
            path, params={"limit": limit, "until": until},
        )
        if not isinstance(payload, dict):
            raise DecodeError(
                f"Expected object from {path}, got {type(payload).__name__}"
            )
        items = payload.get(items_key) or []
        if not isinstance(items, list):
            raise DecodeError(f"Expected list in {path} {items_key!r}")
        pagination = payload.get("pagination") or {}
        next_cursor = pagination.get("next") if isinstance(pagination, dict) else None
        return Page(items=items, next_cursor=next_cursor)

    # ── Projects ─────────────────────────────────────────────────

    async def create_project(
        self,
        name: str,
        *,
        environment_variables: list[dict[str, Any]] | None = None,
    ) -> ProvisionedProject:
        payload: dict[str, Any] = {"name": name}
        if environment_variables:
            payload["environmentVariables"] = environment_variables

        result = await self.request("/v10/projects", "POST", payload)
        project = ProvisionedProject.from_api(result)
        logger.info("project_created", project_id=project.id, project_name=project.name)
        return project

    async def list_projects(
        self, *, limit: int = DEFAULT_PAGE_LIMIT, until: int | str | None = None,
    ) -> Page:
        return await self._list_page("/v9/projects", "projects", limit=limit, until=until)

    async def delete_project(self, project_id: str) -> None:
        await self.request(f"/v9/projects/{project_id}", "DELETE")
        logger.info("project_deleted", project_id=project_id)

    async def request_transfer(self, project_id: str) -> dict[str, Any]:
        """Start an ownership transfer; the response carries the claim code."""
        result = await self.request(
            f"/v9/projects/{project_id}/transfer-request", "POST", {},
        )
        if not isinstance(result, dict):
            raise DecodeError("Expected object from transfer-request")
        return result

    # ── Billing / storage ────────────────────────────────────────

    async def create_authorization(
        self,
        *,
        integration_id_or_slug: str,
        product_id: str,
        billing_plan_id: str,
        integration_config_id: str,
        region: str,
    ) -> BillingAuthorization:
        payload = {
            "integrationIdOrSlug": integration_id_or_slug,
            "productId": product_id,
            "billingPlanId": billing_plan_id,
            "metadata": jsonlib.dumps({"region": region}),
            "integrationConfigurationId": integration_config_id,
        }
        result = await self.request(
            "/v1/integrations/billing/authorization", "POST", payload,
        )
        authorization = BillingAuthorization.from_api(result)
        logger.info("authorization_created", authorization_id=authorization.id)
        return authorization

    async def create_store(
        self,
        *,
        name: str,
        product_id: str,
        authorization_id: str,
        billing_plan_id: str,
        integration_config_id: str,
        region: str,
    ) -> StorageResource:
        payload = {
            "metadata": {"region": region},
            "billingPlanId": billing_plan_id,
            "name": name,
            "integrationConfigurationId": integration_config_id,
            "integrationProductIdOrSlug": product_id,
            "authorizationId": authorization_id,
            "source": "marketplace",
        }
        result = await self.request(
            "/v1/storage/stores/integration", "POST", payload,
        )
        # Upstream wraps the record as {"store": {...}}.
        store_raw = result.get("store", result) if isinstance(result, dict) else result
        store = StorageResource.from_api(store_raw)
        logger.info("store_created", store_id=store.id, store_name=store.name)
        return store

    async def list_stores(
        self, *, limit: int = DEFAULT_PAGE_LIMIT, until: int | str | None = None,
    ) -> Page:
        return await self._list_page("/v1/storage/stores", "stores", limit=limit, until=until)

    async def delete_store(self, store_id: str) -> None:
        await self.request(f"/v1/storage/stores/{store_id}", "DELETE")
        logger.info("store_deleted", store_id=store_id)

    async def connect_store(
        self,
        *,
        integration_config_id: str,
        product_id: str,
        store_id: str,
        project_id: str,
    ) -> Any:
        """Connect a store to a project. Returns the (possibly empty) body."""
        path = (
            f"/v1/integrations/installations/{integration_config_id}"
            f"/products/{product_id}/resources/{store_id}/connections"
        )
        resp = await self._send("POST", path, json={"projectId": project_id})
        self._raise_for_status(resp)
        try:
            result = resp.json() if resp.content else None
        except ValueError:
            # Upstream answers 2xx with an empty or non-JSON body on success.
            result = None
        logger.info("store_connected", store_id=store_id, project_id=project_id)
        return result

    # ── Files / deployments ──────────────────────────────────────

    async def upload_file(self, content: bytes, digest: str) -> None:
        """Upload a content-addressed artifact identified by its SHA-1."""
        resp = await self._send(
            "POST",
            "/v2/files",
            content=content,
            headers={
                "Content-Type": "application/octet-stream",
                "x-vercel-digest": digest,
            },
        )
        self._raise_for_status(resp)
        logger.info("file_uploaded", digest=digest, size=len(content))

    async def create_deployment(
        self,
        *,
        project_name: str,
        file_sha: str,
        framework: str = "nextjs",
    ) -> Deployment:
        payload = {
            "files": [{"file": SOURCE_ARCHIVE_PATH, "sha": file_sha}],
            "name": f"deployment-{int(time.time() * 1000)}",
            "projectSettings": {"framework": framework},
            "project": project_name,
        }
        result = await self.request("/v13/deployments", "POST", payload)
        deployment = Deployment.from_api(result)
        logger.info(
            "deployment_created",
            deployment_id=deployment.id,
            deployment_url=deployment.url,
            project_name=project_name,
        )
        return deployment

    async def get_deployment(self, id_or_url: str) -> Deployment:
        result = await self.request(f"/v13/deployments/{id_or_url}")
        return Deployment.from_api(result)

    async def cancel_deployment(self, id_or_url: str) -> Deployment:
        result = await self.request(f"/v12/deployments/{id_or_url}/cancel", "PATCH")
        logger.info("deployment_canceled", deployment=id_or_url)
        return Deployment.from_api(result)

    async def follow_deployment(self, id_or_url: str) -> AsyncGenerator[str, None]:
        """Yield ready states from the deployment's long-lived event stream.

        The stream is newline-delimited JSON. Lines that carry no state are
        skipped; the iterator ends when the server closes the stream.
        """
        url = f"{self._base_url}/v3/deployments/{id_or_url}/events"
        params = self._scoped_params({"follow": 1})
        try:
            async with self._client.stream(
                "GET",
                url,
                headers=self._auth_headers(),
                params=params,
                timeout=httpx.Timeout(self._timeout, read=None),
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    self._raise_for_status(resp)
                async for line in resp.aiter_lines():
                    state = _ready_state_from_event(line)
                    if state is not None:
                        yield state
        except httpx.HTTPError as e:
            raise TransportError(f"Deployment event stream failed: {e}") from e


def _ready_state_from_event(line: str) -> str | None:
    line = line.strip()
    if not line:
        return None
    try:
        event = jsonlib.loads(line)
    except ValueError:
        return None
    if not isinstance(event, dict):
        return None

    payload = event.get("payload")
    candidates: list[Any] = [event.get("readyState")]
    if isinstance(payload, dict):
        info = payload.get("info")
        if isinstance(info, dict):
            candidates.append(info.get("readyState"))
        candidates.append(payload.get("readyState"))
    for candidate in candidates:
        if isinstance(candidate, str) and candidate:
            return candidate.upper()
    return None
