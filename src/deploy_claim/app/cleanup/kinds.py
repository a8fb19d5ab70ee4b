"""Resource kinds the reaper knows how to list, recognise and delete.

A kind bundles everything that differs between reaping projects and
reaping storage stores: the listing and deletion calls, the name prefix
that marks a resource as temporary, the age threshold, and an optional
extra predicate. Projects carry a source-repository link, so only the
project kind checks it; stores have no such link upstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Protocol

from ..providers.models import Page, ProvisionedProject, StorageResource

PROJECT_PREFIX = 'temp-project'
STORAGE_PREFIX = 'prisma-postgres-temp-project'
DEFAULT_THRESHOLD = timedelta(hours=12)


class ReaperClient(Protocol):
    async def list_projects(self, *, limit: int = ..., until: int | str | None = ...) -> Page: ...

    async def delete_project(self, project_id: str) -> None: ...

    async def list_stores(self, *, limit: int = ..., until: int | str | None = ...) -> Page: ...

    async def delete_store(self, store_id: str) -> None: ...


@dataclass(frozen=True, slots=True)
class ReapableResource:
    """The fields of a listed resource the reaper decides on."""

    id: str
    name: str
    created_at: datetime | None
    repo_url: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    def to_payload(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True, slots=True)
class ResourceKind:
    name: str
    prefix: str
    list_page: Callable[[ReaperClient, int, int | str | None], Awaitable[Page]]
    delete: Callable[[ReaperClient, str], Awaitable[None]]
    parse: Callable[[Mapping[str, Any]], ReapableResource]
    threshold: timedelta = DEFAULT_THRESHOLD
    extra_predicate: Callable[[ReapableResource], bool] | None = None


# ── Projects ─────────────────────────────────────────────────────────


def _list_projects(client: ReaperClient, limit: int, until: int | str | None) -> Awaitable[Page]:
    return client.list_projects(limit=limit, until=until)


def _delete_project(client: ReaperClient, resource_id: str) -> Awaitable[None]:
    return client.delete_project(resource_id)


def _parse_project(item: Mapping[str, Any]) -> ReapableResource:
    project = ProvisionedProject.from_api(item)
    return ReapableResource(
        id=project.id,
        name=project.name,
        created_at=project.created_at,
        repo_url=project.link.url if project.link else None,
        raw=item,
    )


def project_kind(
    repo_url: str,
    *,
    threshold: timedelta = DEFAULT_THRESHOLD,
) -> ResourceKind:
    """Temporary projects, excluding any linked to a different repository."""

    def linked_to_this_repo(resource: ReapableResource) -> bool:
        return resource.repo_url is None or resource.repo_url == repo_url

    return ResourceKind(
        name='project',
        prefix=PROJECT_PREFIX,
        list_page=_list_projects,
        delete=_delete_project,
        parse=_parse_project,
        threshold=threshold,
        extra_predicate=linked_to_this_repo,
    )


# ── Storage ──────────────────────────────────────────────────────────


def _list_stores(client: ReaperClient, limit: int, until: int | str | None) -> Awaitable[Page]:
    return client.list_stores(limit=limit, until=until)


def _delete_store(client: ReaperClient, resource_id: str) -> Awaitable[None]:
    return client.delete_store(resource_id)


def _parse_store(item: Mapping[str, Any]) -> ReapableResource:
    store = StorageResource.from_api(item)
    return ReapableResource(
        id=store.id, name=store.name, created_at=store.created_at, raw=item,
    )


def storage_kind(*, threshold: timedelta = DEFAULT_THRESHOLD) -> ResourceKind:
    return ResourceKind(
        name='storage',
        prefix=STORAGE_PREFIX,
        list_page=_list_stores,
        delete=_delete_store,
        parse=_parse_store,
        threshold=threshold,
    )
