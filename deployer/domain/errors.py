"""Project-native typed exceptions for deployment and lifecycle failures."""

from __future__ import annotations


class DeploymentError(Exception):
    """Base exception for orchestrator-level failures.

    Attributes:
        error_code: Stable machine-readable failure code surfaced to callers.
    """

    error_code = "DEPLOYMENT_ERROR"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code


class RuntimeNotFoundError(DeploymentError, LookupError):
    """Requested `(language, version)` is not registered or is disabled."""

    error_code = "RUNTIME_NOT_FOUND"


class InstallationFailedError(DeploymentError, RuntimeError):
    """Runtime image pull or host dependency install failed."""

    error_code = "INSTALLATION_FAILED"


class NoPortAvailableError(DeploymentError, RuntimeError):
    """Port allocator exhausted its probe attempts."""

    error_code = "NO_PORT_AVAILABLE"


class WorkspaceError(DeploymentError, RuntimeError):
    """Workspace could not be materialized or read."""

    error_code = "WORKSPACE_ERROR"


class BuildError(DeploymentError, RuntimeError):
    """Backend build or start failed."""

    error_code = "BUILD_ERROR"


class DeploymentTimeoutError(DeploymentError, TimeoutError):
    """Instance did not become ready within the fixed readiness window."""

    error_code = "DEPLOYMENT_TIMEOUT"


class InstancePersistenceError(DeploymentError, RuntimeError):
    """Instance record could not be durably written."""

    error_code = "PERSISTENCE_ERROR"


class InstanceNotFoundError(DeploymentError, LookupError):
    """Operation targeted an unknown instance id."""

    error_code = "NOT_FOUND"


class InvalidStateTransitionError(DeploymentError, ValueError):
    """Requested status change is not allowed by the instance state machine."""

    error_code = "INVALID_STATE"


class BackendOperationError(DeploymentError, RuntimeError):
    """Backend stop, log, or update call failed for an existing instance."""

    error_code = "BACKEND_ERROR"
