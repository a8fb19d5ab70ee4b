from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, call

import pytest

from deploy_claim.app.cleanup import (
    Reaper,
    ReapableResource,
    project_kind,
    run_combined,
    storage_kind,
)
from deploy_claim.app.errors import TransportError, UpstreamError
from deploy_claim.app.providers.models import Page

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
REPO_URL = 'https://github.com/prisma/vercel-deployment-claim-demo'


def _ms(when: datetime) -> int:
    return int(when.timestamp() * 1000)


def _project(index: int, *, age: timedelta = timedelta(hours=13), **extra) -> dict:
    item = {
        'id': f'prj_{index}',
        'name': f'temp-project-{index:010d}',
        'createdAt': _ms(NOW - age),
    }
    item.update(extra)
    return item


def _resource(name: str, created_at: datetime | None, repo_url: str | None = None) -> ReapableResource:
    return ReapableResource(id=name, name=name, created_at=created_at, repo_url=repo_url)


def _reaper(client, kind=None, **kwargs) -> Reaper:
    kwargs.setdefault('sleep', AsyncMock())
    return Reaper(client, kind or project_kind(REPO_URL), **kwargs)


# ── Listing ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_all_follows_cursor_across_pages():
    client = AsyncMock()
    client.list_projects.side_effect = [
        Page(items=[_project(i) for i in range(100)], next_cursor=3000),
        Page(items=[_project(i) for i in range(100, 200)], next_cursor=2000),
        Page(items=[_project(i) for i in range(200, 237)], next_cursor=None),
    ]

    resources = await _reaper(client).list_all()

    assert len(resources) == 237
    assert client.list_projects.await_args_list == [
        call(limit=100, until=None),
        call(limit=100, until=3000),
        call(limit=100, until=2000),
    ]


@pytest.mark.asyncio
async def test_list_all_stops_on_empty_page():
    client = AsyncMock()
    client.list_stores.side_effect = [Page(items=[], next_cursor=123)]

    resources = await _reaper(client, storage_kind()).list_all()

    assert resources == []
    assert client.list_stores.await_count == 1


@pytest.mark.asyncio
async def test_list_all_stops_on_repeated_cursor():
    client = AsyncMock()
    client.list_projects.side_effect = [
        Page(items=[_project(1)], next_cursor=50),
        Page(items=[_project(2)], next_cursor=50),
        Page(items=[_project(3)], next_cursor=None),
    ]

    resources = await _reaper(client).list_all()

    assert [r.id for r in resources] == ['prj_1', 'prj_2']
    assert client.list_projects.await_count == 2


# ── Filtering ───────────────────────────────────────────────────────


def test_filter_threshold_boundaries():
    reaper = _reaper(AsyncMock())
    cutoff = NOW - timedelta(hours=12)
    resources = [
        _resource('temp-project-exact', cutoff),
        _resource('temp-project-older', cutoff - timedelta(seconds=1)),
        _resource('temp-project-newer', cutoff + timedelta(seconds=1)),
        _resource('temp-project-unknown-age', None),
        _resource('my-real-app', cutoff - timedelta(days=3)),
    ]

    selected = reaper.filter_for_deletion(resources, now=NOW)

    assert [r.name for r in selected] == ['temp-project-exact', 'temp-project-older']


def test_project_filter_excludes_other_repositories():
    reaper = _reaper(AsyncMock())
    old = NOW - timedelta(days=1)
    resources = [
        _resource('temp-project-unlinked', old),
        _resource('temp-project-ours', old, repo_url=REPO_URL),
        _resource('temp-project-theirs', old, repo_url='https://github.com/acme/other'),
    ]

    selected = reaper.filter_for_deletion(resources, now=NOW)

    assert [r.name for r in selected] == ['temp-project-unlinked', 'temp-project-ours']


def test_storage_filter_uses_storage_prefix_only():
    reaper = _reaper(AsyncMock(), storage_kind())
    old = NOW - timedelta(days=1)
    resources = [
        _resource('prisma-postgres-temp-project-abc', old, repo_url='https://github.com/acme/other'),
        _resource('temp-project-abc', old),
        _resource('prisma-postgres-production', old),
    ]

    selected = reaper.filter_for_deletion(resources, now=NOW)

    assert [r.name for r in selected] == ['prisma-postgres-temp-project-abc']


# ── Deleting ────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize('count', [1, 4, 5])
async def test_alternating_failures_are_counted_and_paced(count):
    client = AsyncMock()
    client.delete_project.side_effect = [
        None if i % 2 == 0 else UpstreamError(500, 'boom') for i in range(count)
    ]
    sleep = AsyncMock()
    reaper = _reaper(client, sleep=sleep, delete_delay=1.0)
    resources = [_resource(f'temp-project-{i}', NOW) for i in range(count)]

    summary = await reaper.delete_all(resources)

    assert summary.succeeded == (count + 1) // 2
    assert summary.failed == count // 2
    assert [r.name for r in summary.deleted] == [
        f'temp-project-{i}' for i in range(0, count, 2)
    ]
    assert client.delete_project.await_count == count
    assert sleep.await_args_list == [call(1.0)] * (count - 1)


@pytest.mark.asyncio
async def test_run_reports_counts():
    client = AsyncMock()
    client.list_projects.return_value = Page(
        items=[
            _project(1),
            _project(2, age=timedelta(hours=1)),
            _project(3, link={'type': 'github', 'org': 'acme', 'repo': 'other'}),
            _project(4, link={'type': 'github', 'org': 'prisma', 'repo': 'vercel-deployment-claim-demo'}),
        ],
    )

    report = await _reaper(client).run(now=NOW)

    assert report.total == 4
    assert report.to_delete == 2
    assert report.successful_deletions == 2
    assert report.failed_deletions == 0
    assert client.delete_project.await_args_list == [call('prj_1'), call('prj_4')]
    payload = report.to_payload()
    assert payload['totalResources'] == 4
    assert payload['resourcesToDelete'] == 2
    assert [r['id'] for r in payload['deletedResources']] == ['prj_1', 'prj_4']
    assert 'dryRun' not in payload


@pytest.mark.asyncio
async def test_dry_run_deletes_nothing():
    client = AsyncMock()
    client.list_projects.return_value = Page(items=[_project(1), _project(2)])

    report = await _reaper(client).run(dry_run=True, now=NOW)

    client.delete_project.assert_not_awaited()
    assert report.to_delete == 2
    assert report.successful_deletions == 0
    payload = report.to_payload()
    assert payload['dryRun'] is True
    assert [c['id'] for c in payload['candidates']] == ['prj_1', 'prj_2']


@pytest.mark.asyncio
async def test_malformed_records_are_skipped_and_the_rest_reaped():
    client = AsyncMock()
    expired = _ms(NOW - timedelta(hours=13))
    client.list_projects.return_value = Page(items=[
        {'id': 'prj_1', 'name': 'temp-project-a', 'createdAt': expired},
        {'id': 'prj_2', 'createdAt': expired},
        {'name': 'temp-project-c', 'createdAt': expired},
        'not-a-project',
    ])

    report = await _reaper(client).run(now=NOW)

    assert report.total == 1
    assert report.successful_deletions == 1
    client.delete_project.assert_awaited_once_with('prj_1')


@pytest.mark.asyncio
async def test_malformed_records_do_not_stop_pagination():
    client = AsyncMock()
    client.list_projects.side_effect = [
        Page(items=[{'id': 'prj_bad'}], next_cursor=10),
        Page(items=[_project(2)], next_cursor=None),
    ]

    resources = await _reaper(client).list_all()

    assert [r.id for r in resources] == ['prj_2']
    assert client.list_projects.await_count == 2


@pytest.mark.asyncio
async def test_listing_failure_fails_the_run():
    client = AsyncMock()
    client.list_projects.side_effect = TransportError()

    with pytest.raises(TransportError):
        await _reaper(client).run(now=NOW)

    client.delete_project.assert_not_awaited()


# ── Combined ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_combined_tolerates_one_kind_failing():
    client = AsyncMock()
    client.list_projects.return_value = Page(items=[_project(1)])
    client.list_stores.side_effect = UpstreamError(403, 'Forbidden')

    report = await run_combined(
        [_reaper(client), _reaper(client, storage_kind())], now=NOW,
    )

    assert report.success
    assert list(report.results) == ['project']
    assert report.errors == ('Storage cleanup failed (403): Forbidden',)
    assert report.message == 'Partial cleanup completed. Successful: project'


@pytest.mark.asyncio
async def test_combined_fails_when_every_kind_fails():
    client = AsyncMock()
    client.list_projects.side_effect = TransportError()
    client.list_stores.side_effect = TransportError()

    report = await run_combined([_reaper(client), _reaper(client, storage_kind())], now=NOW)

    assert not report.success
    assert len(report.errors) == 2
    assert report.message == 'Cleanup failed for every resource kind'


@pytest.mark.asyncio
async def test_combined_full_success_message():
    client = AsyncMock()
    client.list_projects.return_value = Page(items=[])
    client.list_stores.return_value = Page(items=[])

    report = await run_combined([_reaper(client), _reaper(client, storage_kind())], now=NOW)

    assert report.success
    assert report.message == 'Full cleanup completed successfully'
    assert set(report.to_payload()['results']) == {'project', 'storage'}
