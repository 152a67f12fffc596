"""Job-layer deployment orchestrator with per-run stage timeline."""

from __future__ import annotations

import logging
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Final, Mapping
from uuid import uuid4

from deployer.adapters import ContainerEnginePort
from deployer.allocation import PortAllocator
from deployer.backends import BackendStrategyPort
from deployer.domain import (
    BACKEND_KIND_CONTAINER,
    BACKEND_KIND_NATIVE,
    INSTANCE_STATUS_BUILDING,
    INSTANCE_STATUS_ERROR,
    INSTANCE_STATUS_RUNNING,
    INSTANCE_STATUS_STOPPED,
    ApplicationInstance,
    BuildError,
    DeploymentError,
    DeploymentRequest,
    DeploymentResult,
    InstanceNotFoundError,
    InstancePersistenceError,
    InvalidStateTransitionError,
    RuntimeDefinition,
    WorkspaceError,
    domain_build_failure_event,
    domain_build_stage_event,
    domain_instance_transition,
)
from deployer.instances import InstanceLockRegistry, InstanceRegistry
from deployer.runtimes import RuntimeRegistry
from deployer.workspace import WorkspaceManager

from .interfaces import DeploymentOrchestratorPort, ResourcePolicy

logger = logging.getLogger(__name__)

PERSIST_TIMEOUT_SECONDS: Final[float] = 30.0


class DeploymentOrchestrator(DeploymentOrchestratorPort):
    """Run the provisioning pipeline for new and redeployed instances.

    Pipeline order is resolve, install, allocate, workspace, backend selection,
    record `building`, build, start, persist `running`. Failures before the
    instance is recorded leave nothing behind; failures after it leave the
    instance in `error` with the message retained.
    """

    def __init__(
        self,
        runtime_registry: RuntimeRegistry,
        port_allocator: PortAllocator,
        workspace_manager: WorkspaceManager,
        instance_registry: InstanceRegistry,
        lock_registry: InstanceLockRegistry,
        container_engine: ContainerEnginePort,
        backends: Mapping[str, BackendStrategyPort],
        resource_policy: ResourcePolicy | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        """Initialize orchestrator dependencies.

        Args:
            runtime_registry: Runtime resolution and installation.
            port_allocator: Host port reservation.
            workspace_manager: Workspace materialization.
            instance_registry: Authoritative instance map.
            lock_registry: Per-instance lock provider.
            container_engine: Engine adapter probed for backend selection.
            backends: Backends keyed by backend kind; must contain `container` and `native`.
            resource_policy: Default and maximum resource caps.
            id_factory: Instance id generator.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are missing.
        """

        if runtime_registry is None:
            raise ValueError("runtime_registry must not be None")
        if port_allocator is None:
            raise ValueError("port_allocator must not be None")
        if workspace_manager is None:
            raise ValueError("workspace_manager must not be None")
        if instance_registry is None:
            raise ValueError("instance_registry must not be None")
        if lock_registry is None:
            raise ValueError("lock_registry must not be None")
        if container_engine is None:
            raise ValueError("container_engine must not be None")
        missing_kinds = {BACKEND_KIND_CONTAINER, BACKEND_KIND_NATIVE} - set(backends)
        if missing_kinds:
            raise ValueError(f"backends missing kinds: {sorted(missing_kinds)}")

        self._runtime_registry = runtime_registry
        self._port_allocator = port_allocator
        self._workspace_manager = workspace_manager
        self._instance_registry = instance_registry
        self._lock_registry = lock_registry
        self._container_engine = container_engine
        self._backends = dict(backends)
        self._resource_policy = resource_policy or ResourcePolicy()
        self._id_factory = id_factory or (lambda: uuid4().hex)

    def job_deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """Deploy new source onto a runtime.

        Args:
            request: Deploy input.

        Returns:
            DeploymentResult: Outcome; failures carry a stable `error_code`.

        Raises:
            ValueError: Raised when the domain id is blank or limits are invalid.
        """

        domain_id = (request.domain_id or "").strip()
        if not domain_id:
            raise ValueError("domain_id must not be blank")
        limits = self._resource_policy.policy_validate(request.limits)

        timeline: list[dict[str, Any]] = [domain_build_stage_event(stage="run", status="started")]
        try:
            definition, backend_kind = self._job_prepare_runtime(request.language, request.version, timeline)
        except DeploymentError as error:
            return self._job_failure_result(error, timeline)

        try:
            port = self._job_allocate(definition.default_port, timeline)
        except DeploymentError as error:
            return self._job_failure_result(error, timeline)

        instance_id = self._id_factory()
        timeline.append(domain_build_stage_event(stage="workspace", status="started"))
        try:
            workspace = self._workspace_manager.workspace_materialize(
                instance_id,
                definition.language,
                request.source_payload,
                request.environment,
            )
        except WorkspaceError as error:
            self._port_allocator.port_release(port)
            return self._job_failure_result(error, timeline)
        timeline.append(domain_build_stage_event(stage="workspace", status="completed"))

        now = datetime.now(timezone.utc)
        instance = ApplicationInstance(
            instance_id=instance_id,
            domain_id=domain_id,
            language=definition.language,
            version=definition.version,
            port=port,
            status=INSTANCE_STATUS_BUILDING,
            limits=limits,
            environment=dict(request.environment),
            backend_kind=backend_kind,
            workspace_path=str(workspace),
            created_at_utc=now,
            updated_at_utc=now,
        )
        logger.info(
            "Deploying %s as instance %s on port %s (%s backend)",
            definition.runtime_id,
            instance_id,
            port,
            instance.backend_kind,
        )
        return self._job_provision(instance, definition, timeline)

    def job_redeploy(self, instance_id: str) -> DeploymentResult:
        """Re-run provisioning for a stopped or failed instance from its workspace.

        The previous port is preferred; another one is allocated when it was
        taken in the meantime. Language, version, environment, owner and
        limits are preserved.

        Args:
            instance_id: Existing instance id.

        Returns:
            DeploymentResult: Outcome of the provisioning run.
        """

        with self._lock_registry.lock_for(instance_id):
            instance = self._instance_registry.instance_get(instance_id)
            if instance is None:
                return self._job_failure_result(InstanceNotFoundError(f"Instance {instance_id} not found"), [])
            if instance.status not in {INSTANCE_STATUS_STOPPED, INSTANCE_STATUS_ERROR}:
                return self._job_failure_result(
                    InvalidStateTransitionError(f"Instance {instance_id} is {instance.status}; stop it first"),
                    [],
                    instance=instance,
                )

            timeline: list[dict[str, Any]] = [
                domain_build_stage_event(stage="run", status="started", details={"redeploy": True})
            ]
            try:
                definition, backend_kind = self._job_prepare_runtime(instance.language, instance.version, timeline)
                port = self._job_allocate(instance.port, timeline)
            except DeploymentError as error:
                return self._job_record_idle_failure(instance, error, timeline)

            timeline.append(domain_build_stage_event(stage="workspace", status="started"))
            try:
                source_files = self._workspace_manager.workspace_read_source(instance_id)
                self._workspace_manager.workspace_materialize(
                    instance_id,
                    instance.language,
                    source_files,
                    instance.environment,
                )
            except WorkspaceError as error:
                self._port_allocator.port_release(port)
                return self._job_record_idle_failure(instance, error, timeline, stage="workspace")
            timeline.append(domain_build_stage_event(stage="workspace", status="completed"))

            building = domain_instance_transition(
                instance,
                INSTANCE_STATUS_BUILDING,
                port=port,
                backend_kind=backend_kind,
                last_error=None,
                diagnostics=(),
            )
            logger.info("Redeploying instance %s on port %s (%s backend)", instance_id, port, building.backend_kind)
            return self._job_provision(building, definition, timeline)

    def _job_prepare_runtime(
        self,
        language: str,
        version: str,
        timeline: list[dict[str, Any]],
    ) -> tuple[RuntimeDefinition, str]:
        """Resolve a runtime, install it and choose the backend that matches the install.

        The container backend is chosen only when the runtime image was pulled
        and the engine still answers. Otherwise the instance runs natively,
        installing host dependencies first when only the image was installed.

        Returns:
            tuple[RuntimeDefinition, str]: Installed runtime and backend kind.

        Raises:
            RuntimeNotFoundError: Raised for unknown or disabled runtimes.
            InstallationFailedError: Raised when installation fails.
        """

        timeline.append(domain_build_stage_event(stage="resolve", status="started"))
        definition = self._runtime_registry.runtime_resolve(language, version)
        timeline.append(
            domain_build_stage_event(stage="resolve", status="completed", details={"runtime": definition.runtime_id})
        )

        timeline.append(domain_build_stage_event(stage="install", status="started"))
        definition = self._runtime_registry.runtime_ensure_installed(definition)
        backend_kind = self._job_select_backend_kind(definition)
        if backend_kind == BACKEND_KIND_NATIVE and not definition.host_installed:
            logger.info("Runtime %s will run natively; installing host dependencies", definition.runtime_id)
            definition = self._runtime_registry.runtime_ensure_host_installed(definition)
        timeline.append(
            domain_build_stage_event(stage="install", status="completed", details={"backend_kind": backend_kind})
        )
        return definition, backend_kind

    def _job_allocate(self, preferred_port: int, timeline: list[dict[str, Any]]) -> int:
        timeline.append(domain_build_stage_event(stage="allocate", status="started"))
        port = self._port_allocator.port_allocate(preferred_port)
        timeline.append(domain_build_stage_event(stage="allocate", status="completed", details={"port": port}))
        return port

    def _job_select_backend_kind(self, definition: RuntimeDefinition) -> str:
        if definition.image_installed and self._container_engine.adapter_engine_available():
            return BACKEND_KIND_CONTAINER
        return BACKEND_KIND_NATIVE

    def _job_provision(
        self,
        instance: ApplicationInstance,
        definition: RuntimeDefinition,
        timeline: list[dict[str, Any]],
    ) -> DeploymentResult:
        """Record `building`, then build, start and persist `running`.

        The port reservation taken by the caller is committed as soon as the
        `building` record exists. Only the instance lock is held here.

        Args:
            instance: Instance snapshot in `building`.
            definition: Installed runtime.
            timeline: Mutable stage timeline of this run.

        Returns:
            DeploymentResult: Outcome of the provisioning run.
        """

        backend = self._backends[instance.backend_kind]
        with self._lock_registry.lock_for(instance.instance_id):
            self._instance_registry.instance_put(replace(instance, diagnostics=tuple(timeline)))
            self._port_allocator.port_commit(instance.port)

            stage = "build"
            try:
                timeline.append(domain_build_stage_event(stage="build", status="started"))
                handle = backend.backend_build(definition, instance)
                timeline.append(domain_build_stage_event(stage="build", status="completed"))

                stage = "start"
                timeline.append(domain_build_stage_event(stage="start", status="started"))
                handle = backend.backend_start(handle, instance)
                timeline.append(
                    domain_build_stage_event(stage="start", status="completed", details={"reference": handle.reference})
                )
            except (DeploymentError, OSError) as error:
                failure = error if isinstance(error, DeploymentError) else BuildError(str(error))
                logger.error("Instance %s failed during %s: %s", instance.instance_id, stage, failure)
                self._job_record_error(instance, failure, timeline, stage)
                return self._job_failure_result(failure, timeline, instance=instance)

            timeline.append(domain_build_stage_event(stage="persist", status="started"))
            running = domain_instance_transition(
                instance,
                INSTANCE_STATUS_RUNNING,
                handle=handle,
                last_error=None,
                diagnostics=tuple(timeline),
            )
            try:
                self._instance_registry.instance_put(running).result(timeout=PERSIST_TIMEOUT_SECONDS)
            except (RuntimeError, TimeoutError, FutureTimeoutError) as error:
                return self._job_handle_persist_failure(running, backend, error, timeline)

            timeline.append(domain_build_stage_event(stage="persist", status="completed"))
            timeline.append(domain_build_stage_event(stage="run", status="success"))
            self._instance_registry.instance_put(replace(running, diagnostics=tuple(timeline)))

        logger.info("Instance %s running on port %s", instance.instance_id, instance.port)
        return DeploymentResult(
            success=True,
            message=f"Application deployed successfully on port {instance.port}",
            instance_id=instance.instance_id,
            port=instance.port,
            backend_kind=instance.backend_kind,
        )

    def _job_handle_persist_failure(
        self,
        running: ApplicationInstance,
        backend: BackendStrategyPort,
        error: Exception,
        timeline: list[dict[str, Any]],
    ) -> DeploymentResult:
        """Undo a start whose `running` record could not be made durable.

        The started backend is stopped so no unrecorded workload keeps
        running, and the instance is left in `error`.

        Returns:
            DeploymentResult: Failed result with `PERSISTENCE_ERROR`.
        """

        failure = InstancePersistenceError(f"Instance record could not be persisted: {error}")
        logger.error("Instance %s started but was not persisted; stopping it: %s", running.instance_id, error)
        try:
            backend.backend_stop(running.handle, running)
        except (DeploymentError, OSError) as stop_error:
            logger.error("Stopping unpersisted instance %s failed: %s", running.instance_id, stop_error)
        self._job_record_error(running, failure, timeline, "persist")
        return self._job_failure_result(failure, timeline, instance=running)

    def _job_record_error(
        self,
        instance: ApplicationInstance,
        error: DeploymentError,
        timeline: list[dict[str, Any]],
        stage: str,
    ) -> None:
        timeline.append(domain_build_failure_event(stage, error))
        timeline.append(domain_build_stage_event(stage="run", status="failed", details={"error_code": error.error_code}))
        self._instance_registry.instance_put(
            domain_instance_transition(
                instance,
                INSTANCE_STATUS_ERROR,
                last_error=str(error),
                diagnostics=tuple(timeline),
            )
        )

    def _job_record_idle_failure(
        self,
        instance: ApplicationInstance,
        error: DeploymentError,
        timeline: list[dict[str, Any]],
        stage: str | None = None,
    ) -> DeploymentResult:
        """Record a redeploy failure that happened before `building`."""

        self._job_record_error(instance, error, timeline, stage or self._job_failed_stage(timeline))
        return self._job_failure_result(error, timeline, instance=instance)

    def _job_failure_result(
        self,
        error: DeploymentError,
        timeline: list[dict[str, Any]],
        instance: ApplicationInstance | None = None,
    ) -> DeploymentResult:
        """Build a failed result, logging runs that never recorded an instance."""

        if instance is None:
            timeline.append(domain_build_failure_event(self._job_failed_stage(timeline), error))
            logger.warning("Deploy rejected (%s): %s", error.error_code, error)
        return DeploymentResult(
            success=False,
            message=str(error),
            instance_id=instance.instance_id if instance is not None else None,
            port=instance.port if instance is not None else None,
            error_code=error.error_code,
            backend_kind=instance.backend_kind if instance is not None else None,
        )

    def _job_failed_stage(self, timeline: list[dict[str, Any]]) -> str:
        # the last stage that started is the one that failed
        for event in reversed(timeline):
            if event["status"] == "started":
                return str(event["stage"])
        return "run"
