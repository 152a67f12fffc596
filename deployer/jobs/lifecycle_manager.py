"""Job-layer lifecycle operations on existing instances."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Mapping

from deployer.adapters import ResourceUsage
from deployer.backends import BackendStrategyPort
from deployer.domain import (
    INSTANCE_STATUS_ERROR,
    INSTANCE_STATUS_RUNNING,
    INSTANCE_STATUS_STOPPED,
    INSTANCE_STATUS_STOPPING,
    ApplicationInstance,
    DeploymentError,
    InstanceNotFoundError,
    InvalidStateTransitionError,
    OperationResult,
    ResourceLimits,
    domain_instance_transition,
)
from deployer.instances import InstanceLockRegistry, InstanceRegistry
from deployer.workspace import WorkspaceManager

from .interfaces import DeploymentOrchestratorPort, LifecycleManagerPort, ResourcePolicy

logger = logging.getLogger(__name__)

_DELETABLE_STATUSES = frozenset({INSTANCE_STATUS_STOPPED, INSTANCE_STATUS_ERROR})


class LifecycleManager(LifecycleManagerPort):
    """Stop, restart, delete, resize and inspect deployed instances.

    Every state-changing operation takes the instance's re-entrant lock, so
    concurrent stop and restart calls for one id run one after the other.
    Backend calls always go to the backend recorded on the instance.
    """

    def __init__(
        self,
        instance_registry: InstanceRegistry,
        lock_registry: InstanceLockRegistry,
        orchestrator: DeploymentOrchestratorPort,
        workspace_manager: WorkspaceManager,
        backends: Mapping[str, BackendStrategyPort],
        resource_policy: ResourcePolicy | None = None,
        max_log_lines: int = 1000,
    ):
        """Initialize lifecycle dependencies.

        Args:
            instance_registry: Authoritative instance map.
            lock_registry: Per-instance lock provider.
            orchestrator: Provisioning pipeline used by restart.
            workspace_manager: Workspace removal on delete.
            backends: Backends keyed by backend kind.
            resource_policy: Resource cap ceilings for updates.
            max_log_lines: Largest accepted log line count.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are missing or bounds are invalid.
        """

        if instance_registry is None:
            raise ValueError("instance_registry must not be None")
        if lock_registry is None:
            raise ValueError("lock_registry must not be None")
        if orchestrator is None:
            raise ValueError("orchestrator must not be None")
        if workspace_manager is None:
            raise ValueError("workspace_manager must not be None")
        if not backends:
            raise ValueError("backends must not be empty")
        if max_log_lines < 1:
            raise ValueError("max_log_lines must be >= 1")

        self._instance_registry = instance_registry
        self._lock_registry = lock_registry
        self._orchestrator = orchestrator
        self._workspace_manager = workspace_manager
        self._backends = dict(backends)
        self._resource_policy = resource_policy or ResourcePolicy()
        self._max_log_lines = max_log_lines

    def lifecycle_get(self, instance_id: str) -> ApplicationInstance:
        """Return one instance.

        Raises:
            InstanceNotFoundError: Raised when the id is unknown.
        """

        instance = self._instance_registry.instance_get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")
        return instance

    def lifecycle_list(self, domain_id: str | None = None) -> list[ApplicationInstance]:
        if domain_id is None:
            return self._instance_registry.instance_list()
        return self._instance_registry.instance_list_by_owner(domain_id)

    def lifecycle_stop(self, instance_id: str) -> OperationResult:
        """Stop a running instance through its recorded backend.

        Stopping an instance that is not running is a successful no-op. When
        the backend stop fails the instance stays in `stopping` with its
        handle, so the stop can be retried.

        Args:
            instance_id: Target instance id.

        Returns:
            OperationResult: Outcome of the stop.
        """

        with self._lock_registry.lock_for(instance_id):
            instance = self._instance_registry.instance_get(instance_id)
            if instance is None:
                return self._lifecycle_not_found(instance_id)
            if instance.status not in {INSTANCE_STATUS_RUNNING, INSTANCE_STATUS_STOPPING} or instance.handle is None:
                return OperationResult(
                    success=True,
                    message=f"Instance is not running (status {instance.status})",
                    instance_id=instance_id,
                )

            stopping = domain_instance_transition(instance, INSTANCE_STATUS_STOPPING)
            self._instance_registry.instance_put(stopping)
            backend = self._backends[stopping.backend_kind]
            try:
                backend.backend_stop(stopping.handle, stopping)
            except (DeploymentError, OSError) as error:
                logger.error("Stop of instance %s failed: %s", instance_id, error)
                self._instance_registry.instance_put(replace(stopping, last_error=str(error)))
                return OperationResult(
                    success=False,
                    message=f"Failed to stop application: {error}",
                    instance_id=instance_id,
                    error_code=getattr(error, "error_code", "BACKEND_ERROR"),
                )

            self._instance_registry.instance_put(domain_instance_transition(stopping, INSTANCE_STATUS_STOPPED))
        logger.info("Instance %s stopped", instance_id)
        return OperationResult(success=True, message="Application stopped successfully", instance_id=instance_id)

    def lifecycle_restart(self, instance_id: str) -> OperationResult:
        """Stop the instance if needed, then redeploy it from its workspace.

        Returns:
            OperationResult: Outcome; `port` carries the port after redeploy.
        """

        with self._lock_registry.lock_for(instance_id):
            stop_result = self.lifecycle_stop(instance_id)
            if not stop_result.success:
                return stop_result

            deploy_result = self._orchestrator.job_redeploy(instance_id)
        if deploy_result.success:
            logger.info("Instance %s restarted on port %s", instance_id, deploy_result.port)
        return OperationResult(
            success=deploy_result.success,
            message=(
                f"Application restarted successfully on port {deploy_result.port}"
                if deploy_result.success
                else deploy_result.message
            ),
            instance_id=instance_id,
            error_code=deploy_result.error_code,
            port=deploy_result.port,
        )

    def lifecycle_delete(self, instance_id: str) -> OperationResult:
        """Delete a stopped or failed instance with its record, workspace and image.

        Deleting an instance in any other status fails without side effects.

        Returns:
            OperationResult: Outcome of the delete.
        """

        with self._lock_registry.lock_for(instance_id):
            instance = self._instance_registry.instance_get(instance_id)
            if instance is None:
                return self._lifecycle_not_found(instance_id)
            if instance.status not in _DELETABLE_STATUSES:
                error = InvalidStateTransitionError(
                    f"Instance {instance_id} is {instance.status}; stop it before deleting"
                )
                return OperationResult(
                    success=False,
                    message=str(error),
                    instance_id=instance_id,
                    error_code=error.error_code,
                )

            try:
                self._workspace_manager.workspace_delete(instance_id)
            except DeploymentError as error:
                logger.error("Workspace of instance %s could not be deleted: %s", instance_id, error)
                return OperationResult(
                    success=False,
                    message=str(error),
                    instance_id=instance_id,
                    error_code=error.error_code,
                )

            backend = self._backends.get(instance.backend_kind)
            if backend is not None:
                backend.backend_cleanup(instance)
            self._instance_registry.instance_remove(instance_id)
        self._lock_registry.lock_discard(instance_id)
        logger.info("Instance %s deleted", instance_id)
        return OperationResult(success=True, message="Application deleted successfully", instance_id=instance_id)

    def lifecycle_update_resources(self, instance_id: str, limits: ResourceLimits) -> OperationResult:
        """Store new resource caps and apply them live when possible.

        Only running container instances are updated live; for every other
        instance the caps are stored and take effect on the next start.

        Args:
            instance_id: Target instance id.
            limits: Requested caps.

        Returns:
            OperationResult: Outcome with `applied_live`.

        Raises:
            ValueError: Raised when limits are invalid.
        """

        validated_limits = self._resource_policy.policy_validate(limits)
        with self._lock_registry.lock_for(instance_id):
            instance = self._instance_registry.instance_get(instance_id)
            if instance is None:
                return self._lifecycle_not_found(instance_id)

            applied_live = False
            if instance.status == INSTANCE_STATUS_RUNNING and instance.handle is not None:
                backend = self._backends[instance.backend_kind]
                try:
                    applied_live = backend.backend_update_resources(instance.handle, validated_limits)
                except DeploymentError as error:
                    logger.error("Live resource update of instance %s failed: %s", instance_id, error)
                    return OperationResult(
                        success=False,
                        message=f"Failed to update resources: {error}",
                        instance_id=instance_id,
                        error_code=error.error_code,
                        applied_live=False,
                    )

            self._instance_registry.instance_put(
                replace(instance, limits=validated_limits, updated_at_utc=datetime.now(timezone.utc))
            )

        message = (
            "Resource limits updated"
            if applied_live
            else "Resource limits stored; they take effect on next restart"
        )
        return OperationResult(success=True, message=message, instance_id=instance_id, applied_live=applied_live)

    def lifecycle_logs(self, instance_id: str, lines: int) -> list[str]:
        """Return recent log lines of an instance.

        Args:
            instance_id: Target instance id.
            lines: Number of lines, 1 to the configured maximum.

        Returns:
            list[str]: Log lines, oldest first.

        Raises:
            ValueError: Raised when `lines` is out of bounds.
            InstanceNotFoundError: Raised when the id is unknown.
            BackendOperationError: Raised when logs cannot be read.
        """

        if lines < 1 or lines > self._max_log_lines:
            raise ValueError(f"lines must be between 1 and {self._max_log_lines}")
        instance = self.lifecycle_get(instance_id)
        return self._backends[instance.backend_kind].backend_logs(instance, lines)

    def lifecycle_stats(self, instance_id: str) -> ResourceUsage:
        """Return live CPU, memory, network and block IO usage of a running instance.

        Args:
            instance_id: Target instance id.

        Returns:
            ResourceUsage: One usage sample from the recorded backend.

        Raises:
            InstanceNotFoundError: Raised when the id is unknown.
            InvalidStateTransitionError: Raised when the instance is not running.
            BackendOperationError: Raised when usage cannot be read.
        """

        instance = self.lifecycle_get(instance_id)
        if instance.status != INSTANCE_STATUS_RUNNING or instance.handle is None:
            raise InvalidStateTransitionError(
                f"Instance {instance_id} is {instance.status}; stats are available only while running"
            )
        return self._backends[instance.backend_kind].backend_stats(instance.handle, instance)

    def _lifecycle_not_found(self, instance_id: str) -> OperationResult:
        error = InstanceNotFoundError(f"Instance {instance_id} not found")
        return OperationResult(success=False, message=str(error), instance_id=instance_id, error_code=error.error_code)
