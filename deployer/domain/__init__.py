"""Domain models, state machine, and error taxonomy used across layers."""

from .errors import (
    BackendOperationError,
    BuildError,
    DeploymentError,
    DeploymentTimeoutError,
    InstallationFailedError,
    InstanceNotFoundError,
    InstancePersistenceError,
    InvalidStateTransitionError,
    NoPortAvailableError,
    RuntimeNotFoundError,
    WorkspaceError,
)
from .lifecycle import domain_instance_transition, domain_validate_limits
from .models import (
    BACKEND_KIND_CONTAINER,
    BACKEND_KIND_NATIVE,
    INSTANCE_STATUS_BUILDING,
    INSTANCE_STATUS_ERROR,
    INSTANCE_STATUS_RUNNING,
    INSTANCE_STATUS_STOPPED,
    INSTANCE_STATUS_STOPPING,
    INSTANCE_STATUSES,
    PORT_HOLDING_STATUSES,
    ApplicationInstance,
    BackendHandle,
    DeploymentRequest,
    DeploymentResult,
    HealthStatus,
    OperationResult,
    ResourceLimits,
    RuntimeDefinition,
)
from .timeline import domain_build_failure_event, domain_build_stage_event

__all__ = [
    "ApplicationInstance",
    "BackendHandle",
    "DeploymentRequest",
    "DeploymentResult",
    "HealthStatus",
    "OperationResult",
    "ResourceLimits",
    "RuntimeDefinition",
    "BACKEND_KIND_CONTAINER",
    "BACKEND_KIND_NATIVE",
    "INSTANCE_STATUS_BUILDING",
    "INSTANCE_STATUS_RUNNING",
    "INSTANCE_STATUS_STOPPING",
    "INSTANCE_STATUS_STOPPED",
    "INSTANCE_STATUS_ERROR",
    "INSTANCE_STATUSES",
    "PORT_HOLDING_STATUSES",
    "DeploymentError",
    "RuntimeNotFoundError",
    "InstallationFailedError",
    "NoPortAvailableError",
    "WorkspaceError",
    "BuildError",
    "DeploymentTimeoutError",
    "InstancePersistenceError",
    "InstanceNotFoundError",
    "InvalidStateTransitionError",
    "BackendOperationError",
    "domain_instance_transition",
    "domain_validate_limits",
    "domain_build_stage_event",
    "domain_build_failure_event",
]
