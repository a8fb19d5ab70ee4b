"""structlog setup for the deploy-claim service.

One JSON object per line on stdout. Lines from stdlib loggers (uvicorn,
httpx) go through the same formatter. Every entry is tagged with the
service name and, inside a request, the request id. Credentials and claim
codes are masked before anything is rendered.

Usage::

    from deploy_claim.app.observability.logging import configure_logging, get_logger

    configure_logging()
    logger = get_logger(__name__)
    logger.info("project_created", project_name="temp-project-abc", status=200)
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any, MutableMapping

import structlog

SERVICE_NAME = "deploy-claim"

# Set by RequestIdMiddleware for the duration of one request.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# Keys whose values must never reach a log sink. "code" is the transfer code
# that lets anyone claim the project.
SENSITIVE_KEYS = frozenset({
    "access_token",
    "authorization",
    "auth_secret",
    "code",
    "cron_secret",
    "token",
    "transfer_code",
})
MASK = "***"

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_configured = False


def _tag_event(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _mask_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def _processor_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _tag_event,
        _mask_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(*, level: str | None = None, json_output: bool | None = None) -> None:
    """Install the structlog pipeline and route stdlib logging through it.

    Idempotent. ``LOG_LEVEL`` (default INFO) and ``LOG_FORMAT`` (``json`` or
    ``console``, default json) apply when the arguments are omitted.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") != "console"

    chain = _processor_chain()
    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    resolved = logging.getLevelName(level_name)
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    # httpx logs request URLs at INFO, and those carry the team id.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
