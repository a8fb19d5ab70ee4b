from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from deploy_claim.app.errors import DecodeError, TransportError, UpstreamError
from deploy_claim.app.providers.hosting_client import HostingClient


def _client(http_client: httpx.AsyncClient, **overrides: Any) -> HostingClient:
    kwargs: dict[str, Any] = {
        "access_token": "tok_test",
        "team_id": "team_123",
        "base_url": "https://api.example.test",
        "http_client": http_client,
    }
    kwargs.update(overrides)
    return HostingClient(**kwargs)


def test_requires_access_token():
    with pytest.raises(ValueError, match="access_token"):
        HostingClient(access_token="")


@pytest.mark.asyncio
async def test_create_project_sends_bearer_team_scope_and_env_vars():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = request.url
        seen["headers"] = dict(request.headers)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"id": "prj_1", "name": "temp-project-abc", "createdAt": 1700000000000},
        )

    env = [{"key": "BETTER_AUTH_SECRET", "value": "s", "target": ["production"], "type": "encrypted"}]
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        project = await _client(http_client).create_project(
            "temp-project-abc", environment_variables=env,
        )

    assert project.id == "prj_1"
    assert project.name == "temp-project-abc"
    assert project.created_at is not None
    assert seen["method"] == "POST"
    assert seen["url"].path == "/v10/projects"
    assert seen["url"].params["teamId"] == "team_123"
    assert seen["headers"]["authorization"] == "Bearer tok_test"
    assert seen["body"] == {"name": "temp-project-abc", "environmentVariables": env}


@pytest.mark.asyncio
async def test_team_scope_omitted_when_not_configured():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        return httpx.Response(200, json={"projects": [], "pagination": {"next": None}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        await _client(http_client, team_id="").list_projects()

    assert "teamId" not in seen["url"].params


@pytest.mark.asyncio
async def test_list_projects_passes_limit_and_until_and_reads_cursor():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "projects": [{"id": "prj_1", "name": "temp-project-a"}],
                "pagination": {"count": 1, "next": 1699999999999},
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        page = await _client(http_client).list_projects(limit=100, until=1700000000000)

    assert seen["params"]["limit"] == "100"
    assert seen["params"]["until"] == "1700000000000"
    assert [item["id"] for item in page.items] == ["prj_1"]
    assert page.next_cursor == 1699999999999


@pytest.mark.asyncio
async def test_list_stores_without_cursor_returns_none():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/storage/stores"
        assert "until" not in request.url.params
        return httpx.Response(200, json={"stores": [{"id": "store_1", "name": "x"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        page = await _client(http_client).list_stores()

    assert len(page.items) == 1
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_non_2xx_maps_to_upstream_error_with_body():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"error": {"code": "payment_required", "message": "Plan limit"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(UpstreamError) as exc_info:
            await _client(http_client).create_store(
                name="prisma-postgres-temp-project-abc",
                product_id="iap_1",
                authorization_id="auth_1",
                billing_plan_id="business",
                integration_config_id="icfg_1",
                region="iad1",
            )

    err = exc_info.value
    assert err.status_code == 402
    assert err.message == "Plan limit"
    assert err.body["error"]["code"] == "payment_required"


@pytest.mark.asyncio
async def test_non_json_error_body_is_kept_as_text():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream unavailable")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(UpstreamError) as exc_info:
            await _client(http_client).delete_project("prj_1")

    assert exc_info.value.status_code == 503
    assert exc_info.value.body == "upstream unavailable"


@pytest.mark.asyncio
async def test_network_failure_maps_to_transport_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(TransportError):
            await _client(http_client).get_deployment("dpl_1")


@pytest.mark.asyncio
async def test_malformed_success_body_maps_to_decode_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>not json</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(DecodeError):
            await _client(http_client).get_deployment("dpl_1")


@pytest.mark.asyncio
async def test_rate_limit_is_not_retried_by_default():
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429, json={"error": {"message": "Too many requests"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(UpstreamError) as exc_info:
            await _client(http_client).delete_store("store_1")

    assert exc_info.value.status_code == 429
    assert calls == 1


@pytest.mark.asyncio
async def test_rate_limit_retry_when_enabled():
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(429, headers={"retry-after": "0"})
        return httpx.Response(200, json={})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        await _client(http_client, rate_limit_retries=2).delete_store("store_1")

    assert calls == 2


@pytest.mark.asyncio
async def test_create_authorization_sends_metadata_as_json_string():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"authorization": {"id": "auth_1", "status": "succeeded"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        authorization = await _client(http_client).create_authorization(
            integration_id_or_slug="prisma",
            product_id="iap_1",
            billing_plan_id="business",
            integration_config_id="icfg_1",
            region="iad1",
        )

    assert authorization.id == "auth_1"
    assert seen["path"] == "/v1/integrations/billing/authorization"
    assert seen["body"]["metadata"] == json.dumps({"region": "iad1"})
    assert seen["body"]["integrationConfigurationId"] == "icfg_1"


@pytest.mark.asyncio
async def test_create_store_unwraps_store_envelope():
    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["authorizationId"] == "auth_1"
        assert body["source"] == "marketplace"
        return httpx.Response(
            200, json={"store": {"id": "store_1", "name": body["name"], "status": "available"}},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        store = await _client(http_client).create_store(
            name="prisma-postgres-temp-project-abc",
            product_id="iap_1",
            authorization_id="auth_1",
            billing_plan_id="business",
            integration_config_id="icfg_1",
            region="iad1",
        )

    assert store.id == "store_1"
    assert store.status == "available"


@pytest.mark.asyncio
async def test_connect_store_accepts_empty_success_body():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        result = await _client(http_client).connect_store(
            integration_config_id="icfg_1",
            product_id="iap_1",
            store_id="store_1",
            project_id="prj_1",
        )

    assert result is None
    assert seen["path"] == (
        "/v1/integrations/installations/icfg_1/products/iap_1/resources/store_1/connections"
    )


@pytest.mark.asyncio
async def test_upload_file_sends_digest_header_and_raw_bytes():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = dict(request.headers)
        seen["content"] = request.content
        return httpx.Response(200, json={})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        await _client(http_client).upload_file(b"archive-bytes", "abc123")

    assert seen["headers"]["x-vercel-digest"] == "abc123"
    assert seen["headers"]["content-type"] == "application/octet-stream"
    assert seen["content"] == b"archive-bytes"


@pytest.mark.asyncio
async def test_create_deployment_references_uploaded_file():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "id": "dpl_1",
                "url": "temp-project-abc-xyz.vercel.app",
                "projectId": "prj_1",
                "readyState": "QUEUED",
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        deployment = await _client(http_client).create_deployment(
            project_name="temp-project-abc", file_sha="abc123",
        )

    assert deployment.id == "dpl_1"
    assert deployment.public_url == "https://temp-project-abc-xyz.vercel.app"
    assert not deployment.is_terminal
    assert seen["body"]["files"] == [{"file": ".vercel/source.tgz", "sha": "abc123"}]
    assert seen["body"]["project"] == "temp-project-abc"
    assert seen["body"]["projectSettings"] == {"framework": "nextjs"}


@pytest.mark.asyncio
async def test_request_transfer_returns_payload_with_code():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v9/projects/prj_1/transfer-request"
        return httpx.Response(200, json={"code": "xfer_abc"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        payload = await _client(http_client).request_transfer("prj_1")

    assert payload == {"code": "xfer_abc"}


@pytest.mark.asyncio
async def test_follow_deployment_yields_ready_states_from_event_lines():
    lines = [
        json.dumps({"type": "state", "payload": {"info": {"readyState": "building"}}}),
        "",
        "not-json",
        json.dumps({"type": "stdout", "payload": {"text": "compiling"}}),
        json.dumps({"readyState": "READY"}),
    ]

    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v3/deployments/dpl_1/events"
        assert request.url.params["follow"] == "1"
        return httpx.Response(200, content="\n".join(lines).encode())

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        states = [state async for state in _client(http_client).follow_deployment("dpl_1")]

    assert states == ["BUILDING", "READY"]


@pytest.mark.asyncio
async def test_follow_deployment_error_status_raises_upstream_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "Deployment not found"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(UpstreamError) as exc_info:
            async for _ in _client(http_client).follow_deployment("dpl_missing"):
                pass

    assert exc_info.value.status_code == 404
