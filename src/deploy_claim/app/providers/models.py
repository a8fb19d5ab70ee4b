"""Typed views over hosting API payloads.

The hosting backend owns every one of these resources; the service only
keeps the identifiers and names it needs to drive the next call. Each view
keeps the ``raw`` payload so routes can pass upstream JSON through
verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from ..errors import DecodeError

TERMINAL_READY_STATES = frozenset({'READY', 'ERROR', 'CANCELED'})


@dataclass(frozen=True, slots=True)
class ProjectLink:
    """Source repository a project was created from."""

    org: str
    repo: str
    type: str = 'github'

    @property
    def url(self) -> str:
        return f'https://github.com/{self.org}/{self.repo}'


@dataclass(frozen=True, slots=True)
class ProvisionedProject:
    id: str
    name: str
    created_at: datetime | None = None
    link: ProjectLink | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, payload: Any) -> ProvisionedProject:
        data = _require_mapping(payload, 'project')
        link = None
        link_raw = data.get('link')
        if isinstance(link_raw, dict) and link_raw.get('repo'):
            link = ProjectLink(
                org=str(link_raw.get('org', '')),
                repo=str(link_raw['repo']),
                type=str(link_raw.get('type', 'github')),
            )
        return cls(
            id=_require_str(data, 'id', 'project'),
            name=_require_str(data, 'name', 'project'),
            created_at=parse_timestamp(data.get('createdAt')),
            link=link,
            raw=data,
        )


@dataclass(frozen=True, slots=True)
class StorageResource:
    id: str
    name: str
    created_at: datetime | None = None
    type: str = ''
    status: str = ''
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, payload: Any) -> StorageResource:
        data = _require_mapping(payload, 'store')
        return cls(
            id=_require_str(data, 'id', 'store'),
            name=_require_str(data, 'name', 'store'),
            created_at=parse_timestamp(data.get('createdAt')),
            type=str(data.get('type', '')),
            status=str(data.get('status', '')),
            raw=data,
        )


@dataclass(frozen=True, slots=True)
class BillingAuthorization:
    id: str
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, payload: Any) -> BillingAuthorization:
        data = _require_mapping(payload, 'authorization')
        # Upstream wraps the record as {"authorization": {...}}.
        inner = data.get('authorization', data)
        inner = _require_mapping(inner, 'authorization')
        return cls(id=_require_str(inner, 'id', 'authorization'), raw=data)


@dataclass(frozen=True, slots=True)
class Deployment:
    id: str
    url: str
    project_id: str
    ready_state: str = 'QUEUED'
    alias: tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.ready_state in TERMINAL_READY_STATES

    @property
    def public_url(self) -> str:
        """First alias when assigned, otherwise the unique deployment URL."""
        host = self.alias[0] if self.alias else self.url
        return f'https://{host}' if host and '://' not in host else host

    @classmethod
    def from_api(cls, payload: Any) -> Deployment:
        data = _require_mapping(payload, 'deployment')
        alias = data.get('alias') or ()
        return cls(
            id=_require_str(data, 'id', 'deployment'),
            url=str(data.get('url', '')),
            project_id=str(data.get('projectId', '')),
            ready_state=str(data.get('readyState') or data.get('status') or 'QUEUED').upper(),
            alias=tuple(str(a) for a in alias) if isinstance(alias, list) else (),
            raw=data,
        )


@dataclass(frozen=True, slots=True)
class Page:
    """One page of a list endpoint plus the cursor for the next one."""

    items: Sequence[Mapping[str, Any]]
    next_cursor: int | str | None = None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an epoch-milliseconds number or ISO-8601 string to aware UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _require_mapping(payload: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise DecodeError(f'Expected {what} object, got {type(payload).__name__}')
    return payload


def _require_str(data: Mapping[str, Any], key: str, what: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise DecodeError(f'{what} payload is missing {key!r}')
    return value
