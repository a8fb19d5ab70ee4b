"""Reaper for expired temporary resources.

One algorithm, parameterised by ``ResourceKind``:

  1. ``list_all``            page through the listing endpoint with
                             ``limit``/``until`` until no cursor comes back
  2. ``filter_for_deletion`` name prefix, age threshold, kind predicate
  3. ``delete_all``          sequential deletes, one second apart; failures
                             are counted and never abort the rest

Usage::

    reaper = Reaper(client, project_kind(settings.repo_url))
    report = await reaper.run()
    # report.successful_deletions, report.failed_deletions

A listing failure fails the run. Individual delete failures only show up in
the counts. ``run_combined`` runs several kinds and reports each result and
each error independently.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from ..errors import DecodeError, DeployClaimError
from ..observability import get_logger
from ..observability.metrics import CLEANUP_DELETIONS_TOTAL, CLEANUP_RUNS_TOTAL
from .kinds import ReapableResource, ReaperClient, ResourceKind

logger = get_logger(__name__)

DEFAULT_PAGE_LIMIT = 100
DEFAULT_DELETE_DELAY_SECONDS = 1.0


@dataclass(frozen=True, slots=True)
class DeletionSummary:
    succeeded: int
    failed: int
    deleted: tuple[ReapableResource, ...] = ()


@dataclass(frozen=True, slots=True)
class CleanupReport:
    """Result of one reaper run for a single resource kind."""

    kind: str
    total: int
    to_delete: int
    successful_deletions: int
    failed_deletions: int
    deleted: tuple[ReapableResource, ...] = ()
    candidates: tuple[ReapableResource, ...] = ()
    dry_run: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            'kind': self.kind,
            'totalResources': self.total,
            'resourcesToDelete': self.to_delete,
            'successfulDeletions': self.successful_deletions,
            'failedDeletions': self.failed_deletions,
            'deletedResources': [r.to_payload() for r in self.deleted],
        }
        if self.dry_run:
            payload['dryRun'] = True
            payload['candidates'] = [r.to_payload() for r in self.candidates]
        return payload


@dataclass(frozen=True, slots=True)
class CombinedCleanupReport:
    results: Mapping[str, CleanupReport] = field(default_factory=dict)
    errors: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors or bool(self.results)

    @property
    def message(self) -> str:
        if not self.errors:
            return 'Full cleanup completed successfully'
        if not self.results:
            return 'Cleanup failed for every resource kind'
        return f'Partial cleanup completed. Successful: {", ".join(self.results)}'

    def to_payload(self) -> dict[str, Any]:
        return {
            'success': self.success,
            'message': self.message,
            'results': {
                kind: report.to_payload() for kind, report in self.results.items()
            },
            'errors': list(self.errors),
        }


class Reaper:
    """Lists, filters and deletes expired resources of one kind.

    Args:
        client: Hosting client (listing and deletion calls).
        kind: Which resources to reap and how to recognise them.
        delete_delay: Seconds between consecutive deletions.
        page_limit: ``limit`` sent with each listing request.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        client: ReaperClient,
        kind: ResourceKind,
        *,
        delete_delay: float = DEFAULT_DELETE_DELAY_SECONDS,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.kind = kind
        self._delete_delay = delete_delay
        self._page_limit = page_limit
        self._sleep = sleep

    async def list_all(self) -> list[ReapableResource]:
        """Fetch every resource of this kind across all pages."""
        resources: list[ReapableResource] = []
        seen_cursors: set[int | str] = set()
        cursor: int | str | None = None

        while True:
            page = await self.kind.list_page(self._client, self._page_limit, cursor)
            resources.extend(self._parse_items(page.items))
            logger.debug(
                'cleanup_page_fetched',
                kind=self.kind.name,
                count=len(page.items),
                total=len(resources),
            )

            if not page.items or page.next_cursor is None:
                break
            if page.next_cursor in seen_cursors:
                logger.warning(
                    'cleanup_cursor_repeated',
                    kind=self.kind.name,
                    cursor=page.next_cursor,
                )
                break
            seen_cursors.add(page.next_cursor)
            cursor = page.next_cursor

        return resources

    def _parse_items(self, items: Sequence[Mapping[str, Any]]) -> list[ReapableResource]:
        # Malformed records are skipped; the rest of the page is still reaped.
        parsed: list[ReapableResource] = []
        for item in items:
            try:
                parsed.append(self.kind.parse(item))
            except DecodeError as exc:
                logger.warning(
                    'cleanup_item_unparseable',
                    kind=self.kind.name,
                    resource_id=item.get('id') if isinstance(item, Mapping) else None,
                    error=exc.message,
                )
        return parsed

    def filter_for_deletion(
        self,
        resources: Iterable[ReapableResource],
        *,
        now: datetime | None = None,
    ) -> list[ReapableResource]:
        """Keep expired resources carrying this kind's prefix."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.kind.threshold
        selected: list[ReapableResource] = []

        for resource in resources:
            if not resource.name.startswith(self.kind.prefix):
                continue
            # No creation time means age is unknown; never reap those.
            if resource.created_at is None or resource.created_at > cutoff:
                continue
            if self.kind.extra_predicate and not self.kind.extra_predicate(resource):
                continue
            selected.append(resource)

        return selected

    async def delete_all(self, resources: Sequence[ReapableResource]) -> DeletionSummary:
        """Delete one at a time; a failure is recorded and the loop goes on."""
        deleted: list[ReapableResource] = []
        failed = 0

        for index, resource in enumerate(resources):
            if index:
                await self._sleep(self._delete_delay)
            try:
                await self.kind.delete(self._client, resource.id)
            except DeployClaimError as exc:
                failed += 1
                CLEANUP_DELETIONS_TOTAL.labels(kind=self.kind.name, outcome='error').inc()
                logger.warning(
                    'cleanup_delete_failed',
                    kind=self.kind.name,
                    resource_id=resource.id,
                    resource_name=resource.name,
                    error=exc.message,
                )
                continue
            deleted.append(resource)
            CLEANUP_DELETIONS_TOTAL.labels(kind=self.kind.name, outcome='ok').inc()

        return DeletionSummary(
            succeeded=len(deleted), failed=failed, deleted=tuple(deleted),
        )

    async def run(
        self,
        *,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> CleanupReport:
        """List, filter and (unless ``dry_run``) delete."""
        try:
            resources = await self.list_all()
        except DeployClaimError:
            CLEANUP_RUNS_TOTAL.labels(kind=self.kind.name, outcome='error').inc()
            raise

        candidates = self.filter_for_deletion(resources, now=now)
        logger.info(
            'cleanup_candidates_selected',
            kind=self.kind.name,
            total=len(resources),
            to_delete=len(candidates),
            dry_run=dry_run,
        )

        if dry_run:
            summary = DeletionSummary(succeeded=0, failed=0)
        else:
            summary = await self.delete_all(candidates)

        CLEANUP_RUNS_TOTAL.labels(kind=self.kind.name, outcome='ok').inc()
        report = CleanupReport(
            kind=self.kind.name,
            total=len(resources),
            to_delete=len(candidates),
            successful_deletions=summary.succeeded,
            failed_deletions=summary.failed,
            deleted=summary.deleted,
            candidates=tuple(candidates) if dry_run else (),
            dry_run=dry_run,
        )
        logger.info(
            'cleanup_completed',
            kind=self.kind.name,
            successful_deletions=report.successful_deletions,
            failed_deletions=report.failed_deletions,
        )
        return report


async def run_combined(
    reapers: Sequence[Reaper],
    *,
    dry_run: bool = False,
    now: datetime | None = None,
) -> CombinedCleanupReport:
    """Run each reaper in turn; one failing never stops the others."""
    results: dict[str, CleanupReport] = {}
    errors: list[str] = []

    for reaper in reapers:
        try:
            results[reaper.kind.name] = await reaper.run(dry_run=dry_run, now=now)
        except DeployClaimError as exc:
            status = getattr(exc, 'status_code', 500)
            errors.append(
                f'{reaper.kind.name.capitalize()} cleanup failed ({status}): {exc.message}'
            )
            logger.error('cleanup_kind_failed', kind=reaper.kind.name, error=exc.message)

    return CombinedCleanupReport(results=results, errors=tuple(errors))
