"""HTTP route modules. Each exposes a ``create_*_router(deps)`` factory."""

from .cleanup import create_cleanup_router
from .provisioning import create_provisioning_router

__all__ = ['create_cleanup_router', 'create_provisioning_router']
