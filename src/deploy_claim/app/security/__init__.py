"""Request guards."""

from .cron_auth import (
    UnauthorizedError,
    extract_bearer_token,
    is_authorized,
    require_cron_secret,
)

__all__ = [
    'UnauthorizedError',
    'extract_bearer_token',
    'is_authorized',
    'require_cron_secret',
]
