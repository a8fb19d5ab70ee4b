"""Error taxonomy shared by the hosting client, workflow, reaper and routes.

Every error carries the HTTP status the service should answer with, so the
route layer can render any of them through one exception handler without
inspecting types:

  - ``ConfigurationError``  -> 500, required setting absent.
  - ``ValidationError``     -> 400, missing/malformed request field.
  - ``UpstreamError``       -> upstream status, non-2xx from the hosting API.
  - ``TransportError``      -> 500, hosting API unreachable.
  - ``DecodeError``         -> 502, hosting API answered with a bad body.

Workflow-specific errors (``ProvisioningError``, ``TransferError``) live next
to the code that raises them but derive from ``DeployClaimError`` too.
"""

from __future__ import annotations

from typing import Any


class DeployClaimError(Exception):
    """Base class for errors rendered as ``{error, details?}`` payloads."""

    status_code: int = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {'error': self.message}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class ConfigurationError(DeployClaimError):
    """A required configuration value is missing."""

    status_code = 500

    def __init__(self, setting: str, message: str | None = None) -> None:
        self.setting = setting
        super().__init__(message or f'{setting} environment variable is required')


class ValidationError(DeployClaimError):
    """A required request field is missing or malformed."""

    status_code = 400

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f'{field} is required')


class UpstreamError(DeployClaimError):
    """The hosting API answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        message: str = '',
        *,
        body: Any = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(
            message or f'Hosting API error {status_code}',
            details=body,
        )


class TransportError(DeployClaimError):
    """The hosting API could not be reached."""

    status_code = 500

    def __init__(self, message: str = 'Failed to reach hosting API') -> None:
        super().__init__(message)


class DecodeError(DeployClaimError):
    """The hosting API answered 2xx with a body that is not valid JSON."""

    status_code = 502

    def __init__(self, message: str = 'Malformed response from hosting API', *, body: str = '') -> None:
        self.body = body
        super().__init__(message)


def upstream_message(exc: DeployClaimError, fallback: str) -> str:
    """Pick the most specific human-readable message for an upstream failure."""
    if isinstance(exc, UpstreamError) and isinstance(exc.body, dict):
        error = exc.body.get('error')
        if isinstance(error, dict) and error.get('message'):
            return str(error['message'])
        if isinstance(error, str) and error:
            return error
        if exc.body.get('message'):
            return str(exc.body['message'])
    return exc.message or fallback
