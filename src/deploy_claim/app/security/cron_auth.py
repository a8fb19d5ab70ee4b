"""Shared-secret guard for scheduled cleanup triggers.

The scheduler sends the configured ``CRON_SECRET`` as a bearer token. When
no secret is configured the cleanup routes are open (local development and
manual runs). Comparison is constant-time via ``hmac.compare_digest``.
"""

from __future__ import annotations

import hmac

from starlette.requests import Request

from ..errors import DeployClaimError

BEARER_PREFIX = 'Bearer '


class UnauthorizedError(DeployClaimError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__('Unauthorized')


def extract_bearer_token(request: Request) -> str | None:
    """Return the bearer token from the Authorization header, if any."""
    auth_header = request.headers.get('authorization', '')
    if auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX):].strip()
    return None


def is_authorized(secret: str, token: str | None) -> bool:
    if not secret:
        return True
    if token is None:
        return False
    return hmac.compare_digest(secret.encode(), token.encode())


def require_cron_secret(request: Request, secret: str) -> None:
    """Raise UnauthorizedError unless the request carries ``secret``."""
    if not is_authorized(secret, extract_bearer_token(request)):
        raise UnauthorizedError()
