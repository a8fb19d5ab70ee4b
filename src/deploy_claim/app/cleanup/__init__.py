"""Scheduled cleanup of expired temporary projects and storage."""

from .kinds import (
    DEFAULT_THRESHOLD,
    PROJECT_PREFIX,
    STORAGE_PREFIX,
    ReapableResource,
    ResourceKind,
    project_kind,
    storage_kind,
)
from .reaper import (
    CleanupReport,
    CombinedCleanupReport,
    DeletionSummary,
    Reaper,
    run_combined,
)

__all__ = [
    'CleanupReport',
    'CombinedCleanupReport',
    'DEFAULT_THRESHOLD',
    'DeletionSummary',
    'PROJECT_PREFIX',
    'ReapableResource',
    'Reaper',
    'ResourceKind',
    'STORAGE_PREFIX',
    'project_kind',
    'run_combined',
    'storage_kind',
]
