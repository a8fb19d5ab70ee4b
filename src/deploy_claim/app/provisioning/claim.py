"""Claim handshake: exchange a project id for a one-time transfer code.

The code is opaque and forwarded verbatim. The hosting backend owns its
validity, expiry and single-use semantics, so nothing about issued codes is
kept here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from ..errors import DeployClaimError, upstream_message
from ..observability import get_logger

logger = get_logger(__name__)


class TransferRequester(Protocol):
    async def request_transfer(self, project_id: str) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class TransferCode:
    code: str
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)


class TransferError(DeployClaimError):
    """The transfer request failed or returned no code."""

    def __init__(self, message: str, *, status_code: int = 500, details: Any = None) -> None:
        self.status_code = status_code
        super().__init__(message, details=details)


class ClaimHandshake:
    def __init__(self, requester: TransferRequester) -> None:
        self._requester = requester

    async def start_transfer(self, project_id: str) -> TransferCode:
        try:
            payload = await self._requester.request_transfer(project_id)
        except DeployClaimError as exc:
            raise TransferError(
                upstream_message(exc, 'Failed to start project transfer'),
                status_code=exc.status_code,
                details=exc.details,
            ) from exc

        code = payload.get('code')
        if not isinstance(code, str) or not code:
            logger.error('transfer_code_missing', project_id=project_id)
            raise TransferError('Failed to get transfer code', details=payload)

        logger.info('transfer_started', project_id=project_id)
        return TransferCode(code=code, raw=payload)
