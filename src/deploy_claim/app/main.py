"""Deploy-and-claim FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires observability middleware, error rendering and the
route modules, and injects the hosting client via ``AppDependencies``.

Usage:
    # From the environment
    from deploy_claim.app import create_app
    app = create_app()

    # Testing (full DI control)
    app = create_app(settings, client=fake_client, delete_delay=0)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from .cleanup.reaper import DEFAULT_DELETE_DELAY_SECONDS
from .dependencies import AppDependencies
from .errors import DeployClaimError
from .observability import configure_logging, get_logger, metrics_text
from .observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .routes import create_cleanup_router, create_provisioning_router
from .settings import DeployClaimSettings

logger = get_logger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    """First invalid field, reported as ``<field> is required``."""
    for error in exc.errors():
        names = [part for part in error.get('loc', ()) if isinstance(part, str)]
        if names:
            return f'{names[-1]} is required'
    return 'Invalid request'


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: DeployClaimSettings | None = None,
    *,
    client: Any | None = None,
    delete_delay: float = DEFAULT_DELETE_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> FastAPI:
    """Create a configured deploy-and-claim FastAPI application.

    Args:
        settings: Application settings. Defaults to ``from_env()``.
        client: Hosting client override. When None one is built lazily
            from the settings on first use.
        delete_delay: Pause between reaper deletions, in seconds.
        sleep: Awaitable sleep used by the reaper (injectable for tests).

    Missing credentials do not prevent startup; they are logged here and
    reported as 500 by the routes that need them.
    """
    if settings is None:
        settings = DeployClaimSettings.from_env()

    deps = AppDependencies(
        settings, client=client, delete_delay=delete_delay, sleep=sleep,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        for problem in settings.validate():
            logger.warning('configuration_incomplete', problem=problem)
        logger.info('deploy_claim_startup', api_url=settings.api_url)
        yield
        logger.info('deploy_claim_shutdown')

    app = FastAPI(
        title='Deploy and Claim',
        description='Provision temporary hosted projects and hand them over to their claimants',
        version='0.1.0',
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings

    # ── Error rendering ─────────────────────────────────────────

    @app.exception_handler(DeployClaimError)
    async def handle_deploy_claim_error(request: Request, exc: DeployClaimError):
        if exc.status_code >= 500:
            logger.error('request_failed', path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={'error': _validation_message(exc)})

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestId -> Metrics -> RequestLogging -> route handler

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get('/health')
    async def health():
        return {'status': 'ok', 'configured': not settings.validate()}

    @app.get('/metrics')
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_provisioning_router(deps))
    app.include_router(create_cleanup_router(deps))

    return app


# For uvicorn, use --factory flag:
#   uvicorn deploy_claim.app.main:create_app --factory
