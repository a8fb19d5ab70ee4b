"""Cleanup trigger routes.

  GET|POST /api/cleanup-projects    expired temporary projects
  GET|POST /api/cleanup-storage     expired temporary storage stores
  GET|POST /api/cleanup             both, tolerating one kind failing

All three accept ``?dryRun=true`` and require the ``CRON_SECRET`` bearer
token when one is configured. GET is accepted so the scheduler can call
the routes directly.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..cleanup import run_combined
from ..dependencies import CLEANUP_KINDS, AppDependencies
from ..errors import DeployClaimError
from ..observability import get_logger
from ..security import require_cron_secret

logger = get_logger(__name__)

_KIND_LABELS = {'project': 'Project', 'storage': 'Storage'}


def create_cleanup_router(deps: AppDependencies) -> APIRouter:
    """Create the cleanup router bound to ``deps``."""
    router = APIRouter(prefix='/api', tags=['cleanup'])

    async def _run_single(request: Request, kind: str, dry_run: bool):
        require_cron_secret(request, deps.settings.cron_secret)
        reaper = deps.reaper(kind)
        label = _KIND_LABELS[kind]
        try:
            report = await reaper.run(dry_run=dry_run)
        except DeployClaimError as exc:
            logger.error('cleanup_failed', kind=kind, error=exc.message)
            return JSONResponse(
                status_code=exc.status_code,
                content={'success': False, 'error': f'{label} cleanup failed: {exc.message}'},
            )
        return {
            'success': True,
            'message': f'{label} cleanup completed',
            **report.to_payload(),
        }

    @router.api_route('/cleanup-projects', methods=['GET', 'POST'])
    async def cleanup_projects(request: Request, dryRun: bool = False):
        return await _run_single(request, 'project', dryRun)

    @router.api_route('/cleanup-storage', methods=['GET', 'POST'])
    async def cleanup_storage(request: Request, dryRun: bool = False):
        return await _run_single(request, 'storage', dryRun)

    @router.api_route('/cleanup', methods=['GET', 'POST'])
    async def cleanup_all(request: Request, dryRun: bool = False):
        require_cron_secret(request, deps.settings.cron_secret)
        reapers = [deps.reaper(kind) for kind in CLEANUP_KINDS]
        report = await run_combined(reapers, dry_run=dryRun)
        if not report.success:
            return JSONResponse(
                status_code=500,
                content={**report.to_payload(), 'error': '; '.join(report.errors)},
            )
        return report.to_payload()

    return router
