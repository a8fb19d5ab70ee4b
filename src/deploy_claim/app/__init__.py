"""Deploy-and-claim FastAPI application."""

from .main import create_app
from .settings import DeployClaimSettings

__all__ = ["create_app", "DeployClaimSettings"]
