"""Typed interfaces for job-layer orchestration responsibilities."""

from dataclasses import dataclass, field
from typing import Protocol

from deployer.adapters import ResourceUsage
from deployer.domain import (
    ApplicationInstance,
    DeploymentRequest,
    DeploymentResult,
    OperationResult,
    ResourceLimits,
    domain_validate_limits,
)


@dataclass(frozen=True)
class ResourcePolicy:
    """Default and maximum resource caps applied to deploys and updates.

    Attributes:
        default_limits: Caps used when a deploy omits limits.
        max_memory_mb: Memory ceiling.
        max_cpu_cores: CPU ceiling.
        max_disk_mb: Disk ceiling.
    """

    default_limits: ResourceLimits = field(default_factory=ResourceLimits)
    max_memory_mb: int = 2048
    max_cpu_cores: float = 2.0
    max_disk_mb: int = 51200

    def policy_validate(self, limits: ResourceLimits | None) -> ResourceLimits:
        """Return validated limits, falling back to the defaults when None.

        Raises:
            ValueError: Raised when a cap is non-positive or above its ceiling.
        """

        return domain_validate_limits(
            limits if limits is not None else self.default_limits,
            max_memory_mb=self.max_memory_mb,
            max_cpu_cores=self.max_cpu_cores,
            max_disk_mb=self.max_disk_mb,
        )


class DeploymentOrchestratorPort(Protocol):
    """Port definition for provisioning runs."""

    def job_deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """Deploy new source onto a runtime.

        Args:
            request: Deploy input.

        Returns:
            DeploymentResult: Outcome; failures carry a stable `error_code`.

        Raises:
            ValueError: Raised when the request itself is malformed.
        """

    def job_redeploy(self, instance_id: str) -> DeploymentResult:
        """Re-run provisioning for a stopped or failed instance from its workspace.

        Args:
            instance_id: Existing instance id.

        Returns:
            DeploymentResult: Outcome; the port may differ from the previous run.
        """


class LifecycleManagerPort(Protocol):
    """Port definition for operations on existing instances."""

    def lifecycle_get(self, instance_id: str) -> ApplicationInstance:
        """Return one instance or raise `InstanceNotFoundError`."""

    def lifecycle_list(self, domain_id: str | None = None) -> list[ApplicationInstance]:
        """Return all instances, or those of one owner."""

    def lifecycle_stop(self, instance_id: str) -> OperationResult:
        """Stop a running instance."""

    def lifecycle_restart(self, instance_id: str) -> OperationResult:
        """Stop and redeploy an instance."""

    def lifecycle_delete(self, instance_id: str) -> OperationResult:
        """Delete a stopped or failed instance."""

    def lifecycle_update_resources(self, instance_id: str, limits: ResourceLimits) -> OperationResult:
        """Store new caps and apply them live when the backend supports it."""

    def lifecycle_logs(self, instance_id: str, lines: int) -> list[str]:
        """Return recent log lines."""

    def lifecycle_stats(self, instance_id: str) -> ResourceUsage:
        """Return live resource usage of a running instance."""
