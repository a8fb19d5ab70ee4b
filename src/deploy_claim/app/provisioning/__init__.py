"""Provisioning workflow: orchestration, deployment wait, claim handshake."""

from .claim import ClaimHandshake, TransferCode, TransferError
from .orchestrator import (
    ProgressEvent,
    ProvisioningError,
    ProvisioningOrchestrator,
    ProvisioningResult,
    Selection,
    generate_project_name,
)
from .poller import (
    CancellationOutcome,
    DeploymentFailedError,
    DeploymentPoller,
    DeploymentTimeoutError,
    PollerBusyError,
    PollOutcome,
    PollStatus,
)
from .state_machine import (
    WORKFLOW_SEQUENCE,
    InvalidStateTransition,
    WorkflowSnapshot,
    WorkflowState,
)

__all__ = [
    'CancellationOutcome',
    'ClaimHandshake',
    'DeploymentFailedError',
    'DeploymentPoller',
    'DeploymentTimeoutError',
    'InvalidStateTransition',
    'PollOutcome',
    'PollStatus',
    'PollerBusyError',
    'ProgressEvent',
    'ProvisioningError',
    'ProvisioningOrchestrator',
    'ProvisioningResult',
    'Selection',
    'TransferCode',
    'TransferError',
    'WORKFLOW_SEQUENCE',
    'WorkflowSnapshot',
    'WorkflowState',
    'generate_project_name',
]
