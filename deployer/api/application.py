"""FastAPI application factory for the deployment service."""

from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from deployer.adapters import ContainerEnginePort
from deployer.config import AppSettings
from deployer.db import DatabaseHealthPort
from deployer.jobs import DeploymentOrchestratorPort, LifecycleManagerPort
from deployer.runtimes import RuntimeRegistry

from .routers import api_create_health_router, api_create_instances_router, api_create_runtimes_router


def create_api_application(
    settings: AppSettings,
    db_health_service: DatabaseHealthPort,
    runtime_registry: RuntimeRegistry,
    orchestrator: DeploymentOrchestratorPort,
    lifecycle_manager: LifecycleManagerPort,
    container_engine: ContainerEnginePort | None = None,
    on_shutdown: Callable[[], None] | None = None,
) -> FastAPI:
    """Create the FastAPI application instance for the service.

    Route handlers are synchronous; FastAPI runs them in its threadpool, so a
    deploy blocking on build and readiness does not stall the event loop.

    Args:
        settings: Validated application settings.
        db_health_service: Database health service used by health endpoints.
        runtime_registry: Runtime registry for catalog listing.
        orchestrator: Deployment orchestrator.
        lifecycle_manager: Lifecycle manager.
        container_engine: Optional engine adapter reported by `/health`.
        on_shutdown: Optional callback run when the server stops.

    Returns:
        FastAPI: Framework application instance.
    """

    @asynccontextmanager
    async def api_lifespan(_application: FastAPI):
        yield
        if on_shutdown is not None:
            on_shutdown()

    application = FastAPI(title="Runtime Deployer", lifespan=api_lifespan)

    @application.get("/", tags=["foundation"])
    def foundation_index() -> dict[str, str]:
        return {
            "service": "runtime-deployer",
            "status": "ready",
            "environment": settings.environment_name,
        }

    application.include_router(
        api_create_health_router(db_health_service=db_health_service, container_engine=container_engine)
    )
    application.include_router(api_create_runtimes_router(runtime_registry=runtime_registry))
    application.include_router(
        api_create_instances_router(
            settings=settings,
            orchestrator=orchestrator,
            lifecycle_manager=lifecycle_manager,
        )
    )

    return application
