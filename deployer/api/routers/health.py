"""Health endpoint router composition for app, database and engine checks."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from deployer.adapters import ContainerEnginePort
from deployer.db import DatabaseHealthPort


def api_create_health_router(
    db_health_service: DatabaseHealthPort,
    container_engine: ContainerEnginePort | None = None,
) -> APIRouter:
    """Create health-check router with app, database and container engine status.

    Args:
        db_health_service: DB-layer health service interface.
        container_engine: Optional engine adapter reported as `container_engine`.

    Returns:
        APIRouter: Router exposing `/health` endpoint.

    Raises:
        ValueError: Raised when db_health_service is invalid.
    """

    if db_health_service is None:
        raise ValueError("db_health_service must not be None")

    router = APIRouter(tags=["health"])

    @router.get("/health")
    def api_health_status() -> JSONResponse:
        """Return application and database health state.

        The container engine is informational only; deploys fall back to the
        native backend when it is down, so it never degrades the status.

        Returns:
            JSONResponse: Health payload, 503 when the database is unreachable.
        """

        engine_state = None
        if container_engine is not None:
            engine_state = "up" if container_engine.adapter_engine_available() else "down"

        try:
            db_health = db_health_service.db_check_health()
            payload = {
                "status": "ok",
                "app": "up",
                "database": db_health.status,
                "detail": db_health.detail,
                "target": db_health_service.db_connection_label(),
                "container_engine": engine_state,
            }
            return JSONResponse(content=payload, status_code=status.HTTP_200_OK)
        except ConnectionError as error:
            payload = {
                "status": "degraded",
                "app": "up",
                "database": "down",
                "detail": str(error),
                "target": db_health_service.db_connection_label(),
                "container_engine": engine_state,
            }
            return JSONResponse(content=payload, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    return router
