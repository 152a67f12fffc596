"""Typed interface shared by execution backends."""

from typing import Protocol

from deployer.adapters import ResourceUsage
from deployer.domain import ApplicationInstance, BackendHandle, ResourceLimits, RuntimeDefinition


class BackendStrategyPort(Protocol):
    """Port definition for one way of building and running an instance.

    Stop, logs and resource updates always go to the backend recorded on the
    instance at deploy time.
    """

    backend_kind: str

    def backend_build(self, definition: RuntimeDefinition, instance: ApplicationInstance) -> BackendHandle:
        """Prepare the instance workspace for launch.

        Args:
            definition: Runtime the instance targets.
            instance: Instance in `building` status with a materialized workspace.

        Returns:
            BackendHandle: Handle without a live reference yet.

        Raises:
            BuildError: Raised when dependency installation or compilation fails.
        """

    def backend_start(self, handle: BackendHandle, instance: ApplicationInstance) -> BackendHandle:
        """Launch the built instance and wait until it is ready.

        Args:
            handle: Handle returned by `backend_build`.
            instance: Instance in `building` status.

        Returns:
            BackendHandle: Handle carrying the live container or process reference.

        Raises:
            BuildError: Raised when the instance exits or cannot be launched.
            DeploymentTimeoutError: Raised when readiness is not reached in time.
        """

    def backend_stop(self, handle: BackendHandle, instance: ApplicationInstance) -> None:
        """Stop the running instance.

        Raises:
            BackendOperationError: Raised when the backend could not stop it.
        """

    def backend_logs(self, instance: ApplicationInstance, lines: int) -> list[str]:
        """Return up to `lines` most recent log lines.

        Raises:
            BackendOperationError: Raised when logs cannot be read.
        """

    def backend_update_resources(self, handle: BackendHandle, limits: ResourceLimits) -> bool:
        """Apply resource caps to a running instance.

        Returns:
            bool: True when applied live, False when they apply on next start.

        Raises:
            BackendOperationError: Raised when a live update was attempted and failed.
        """

    def backend_stats(self, handle: BackendHandle, instance: ApplicationInstance) -> ResourceUsage:
        """Return live resource usage of the running instance.

        Raises:
            BackendOperationError: Raised when the workload is gone or usage cannot be read.
        """

    def backend_cleanup(self, instance: ApplicationInstance) -> bool:
        """Remove build artifacts kept outside the workspace.

        Returns:
            bool: True when something was removed.
        """
