"""Application bootstrap wiring for startup validation and dependency assembly."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI

from deployer.adapters import DockerEngineAdapter, LocalHostSystemAdapter
from deployer.allocation import PortAllocator
from deployer.api import create_api_application
from deployer.backends import ContainerBackend, NativeBackend
from deployer.config import AppSettings, config_configure_logging, config_load_settings
from deployer.db import SQLAlchemyApplicationInstanceService, SQLAlchemyDatabaseHealthService, db_create_engine
from deployer.domain import BACKEND_KIND_CONTAINER, BACKEND_KIND_NATIVE, ResourceLimits
from deployer.instances import InstanceLockRegistry, InstanceRegistry
from deployer.jobs import DeploymentOrchestrator, LifecycleManager, ResourcePolicy
from deployer.runtimes import RuntimeRegistry
from deployer.workspace import WorkspaceManager


@dataclass(frozen=True)
class DeployerComponents:
    """Wired service graph shared by the HTTP and CLI surfaces.

    Attributes:
        settings: Validated settings.
        db_health_service: Database health service.
        container_engine: Container engine adapter.
        runtime_registry: Runtime registry.
        instance_registry: Instance registry, already loaded from the database.
        orchestrator: Deployment orchestrator.
        lifecycle_manager: Lifecycle manager.
    """

    settings: AppSettings
    db_health_service: SQLAlchemyDatabaseHealthService
    container_engine: DockerEngineAdapter
    runtime_registry: RuntimeRegistry
    instance_registry: InstanceRegistry
    orchestrator: DeploymentOrchestrator
    lifecycle_manager: LifecycleManager


def bootstrap_create_components(settings: AppSettings | None = None) -> DeployerComponents:
    """Assemble every service and restore persisted instances.

    Args:
        settings: Optional pre-loaded settings; loaded from the environment when omitted.

    Returns:
        DeployerComponents: Fully wired components.

    Raises:
        SettingsLoadError: Raised when startup configuration validation fails.
        RuntimeError: Raised when persisted instances cannot be loaded.
    """

    settings = settings or config_load_settings()
    config_configure_logging(settings.log_level)

    engine = db_create_engine(database_url=settings.database_url)
    db_health_service = SQLAlchemyDatabaseHealthService(engine=engine)
    instance_repository = SQLAlchemyApplicationInstanceService(engine=engine)

    container_engine = DockerEngineAdapter(
        enabled=settings.container_engine_enabled,
        timeout_seconds=settings.container_engine_timeout_seconds,
    )
    host_system = LocalHostSystemAdapter()
    workspace_manager = WorkspaceManager(settings.workspace_root)
    instance_registry = InstanceRegistry(repository=instance_repository)
    lock_registry = InstanceLockRegistry()
    runtime_registry = RuntimeRegistry(container_engine=container_engine, host_system=host_system)
    port_allocator = PortAllocator(held_ports=instance_registry, host_system=host_system)
    backends = {
        BACKEND_KIND_CONTAINER: ContainerBackend(
            container_engine=container_engine,
            workspace_manager=workspace_manager,
            image_prefix=settings.container_image_prefix,
        ),
        BACKEND_KIND_NATIVE: NativeBackend(host_system=host_system, workspace_manager=workspace_manager),
    }
    resource_policy = ResourcePolicy(
        default_limits=ResourceLimits(
            memory_mb=settings.default_memory_limit_mb,
            cpu_cores=settings.default_cpu_limit,
            disk_mb=settings.default_disk_limit_mb,
        ),
        max_memory_mb=settings.max_memory_limit_mb,
        max_cpu_cores=settings.max_cpu_limit,
        max_disk_mb=settings.max_disk_limit_mb,
    )
    orchestrator = DeploymentOrchestrator(
        runtime_registry=runtime_registry,
        port_allocator=port_allocator,
        workspace_manager=workspace_manager,
        instance_registry=instance_registry,
        lock_registry=lock_registry,
        container_engine=container_engine,
        backends=backends,
        resource_policy=resource_policy,
    )
    lifecycle_manager = LifecycleManager(
        instance_registry=instance_registry,
        lock_registry=lock_registry,
        orchestrator=orchestrator,
        workspace_manager=workspace_manager,
        backends=backends,
        resource_policy=resource_policy,
        max_log_lines=settings.api_max_log_lines,
    )

    instance_registry.instance_load()
    return DeployerComponents(
        settings=settings,
        db_health_service=db_health_service,
        container_engine=container_engine,
        runtime_registry=runtime_registry,
        instance_registry=instance_registry,
        orchestrator=orchestrator,
        lifecycle_manager=lifecycle_manager,
    )


def bootstrap_create_application(components: DeployerComponents | None = None) -> FastAPI:
    """Assemble the HTTP application after validating startup configuration.

    Returns:
        FastAPI: Fully initialized FastAPI application instance.

    Raises:
        SettingsLoadError: Raised when startup configuration validation fails.
    """

    components = components or bootstrap_create_components()
    return create_api_application(
        settings=components.settings,
        db_health_service=components.db_health_service,
        runtime_registry=components.runtime_registry,
        orchestrator=components.orchestrator,
        lifecycle_manager=components.lifecycle_manager,
        container_engine=components.container_engine,
        on_shutdown=components.instance_registry.instance_shutdown,
    )
