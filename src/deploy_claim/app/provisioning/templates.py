"""Template registry and deployable artifacts.

Templates are pre-built source archives stored on disk::

    {templates_dir}/
        {template_key}.tgz

Each registered template declares whether it needs a managed database
(which pulls in the authorization/storage/connect steps) and whether it
needs a generated auth secret injected as a project environment variable.

Archive bytes are immutable once loaded and cached for the lifetime of the
process. Artifacts are content-addressed by the SHA-1 of their bytes, which
is what the hosting API's file endpoint keys uploads by.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import ValidationError

ARCHIVE_SUFFIX = '.tgz'
AUTH_SECRET_ENV_NAME = 'BETTER_AUTH_SECRET'
AUTH_SECRET_BYTES = 32
ENV_TARGETS = ('production', 'preview', 'development')


@dataclass(frozen=True, slots=True)
class TemplateSpec:
    key: str
    name: str
    framework: str = 'nextjs'
    needs_database: bool = False
    needs_auth_secret: bool = False


TEMPLATES: Mapping[str, TemplateSpec] = MappingProxyType(
    {
        'nextjs': TemplateSpec(key='nextjs', name='Next.js'),
        'nextjs_with_prisma': TemplateSpec(
            key='nextjs_with_prisma',
            name='Next.js + Prisma',
            needs_database=True,
        ),
        'nextjs_with_prisma_and_better_auth': TemplateSpec(
            key='nextjs_with_prisma_and_better_auth',
            name='Next.js + Prisma + Better-Auth',
            needs_database=True,
            needs_auth_secret=True,
        ),
    }
)


@dataclass(frozen=True, slots=True)
class Artifact:
    """Bytes to upload plus their content address."""

    content: bytes
    sha: str

    @classmethod
    def from_bytes(cls, content: bytes) -> Artifact:
        return cls(content=content, sha=compute_sha1(content))


def compute_sha1(content: bytes) -> str:
    """Content address used by the hosting file endpoint."""
    return hashlib.sha1(content).hexdigest()


def get_template(key: str) -> TemplateSpec:
    """Look up a registered template or raise ValidationError."""
    spec = TEMPLATES.get(key)
    if spec is None:
        raise ValidationError('template', f"Template '{key}' not found")
    return spec


@lru_cache(maxsize=None)
def _read_archive(path: str) -> bytes:
    return Path(path).read_bytes()


def load_template_artifact(key: str, templates_dir: str | Path) -> Artifact:
    """Read (once per process) and address the archive for ``key``.

    Raises:
        ValidationError: Unknown template or missing archive on disk.
    """
    get_template(key)
    path = Path(templates_dir) / f'{key}{ARCHIVE_SUFFIX}'
    try:
        content = _read_archive(str(path.resolve()))
    except OSError:
        raise ValidationError('template', f"Template file '{key}' not found") from None
    return Artifact.from_bytes(content)


def generate_auth_secret() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(AUTH_SECRET_BYTES)


def environment_variables_for(spec: TemplateSpec | None) -> list[dict[str, Any]]:
    """Project environment variables a template needs injected at creation."""
    if spec is None or not spec.needs_auth_secret:
        return []
    return [
        {
            'key': AUTH_SECRET_ENV_NAME,
            'value': generate_auth_secret(),
            'target': list(ENV_TARGETS),
            'type': 'encrypted',
        }
    ]


def clear_artifact_cache() -> None:
    """Drop cached archive bytes (tests swap template directories)."""
    _read_archive.cache_clear()
