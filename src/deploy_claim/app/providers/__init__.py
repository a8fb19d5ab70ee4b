"""Hosting provider client and payload views."""

from .hosting_client import HostingClient
from .models import (
    TERMINAL_READY_STATES,
    BillingAuthorization,
    Deployment,
    Page,
    ProjectLink,
    ProvisionedProject,
    StorageResource,
)

__all__ = [
    "TERMINAL_READY_STATES",
    "BillingAuthorization",
    "Deployment",
    "HostingClient",
    "Page",
    "ProjectLink",
    "ProvisionedProject",
    "StorageResource",
]
