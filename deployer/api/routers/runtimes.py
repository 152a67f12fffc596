"""Runtime catalog API router composition."""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from deployer.domain import RuntimeDefinition
from deployer.runtimes import RuntimeRegistry


def api_create_runtimes_router(runtime_registry: RuntimeRegistry) -> APIRouter:
    """Create router listing supported runtimes.

    Args:
        runtime_registry: Runtime registry.

    Returns:
        APIRouter: Router exposing `/runtimes`.

    Raises:
        ValueError: Raised when runtime_registry is None.
    """

    if runtime_registry is None:
        raise ValueError("runtime_registry must not be None")

    router = APIRouter(tags=["runtimes"])

    @router.get("/runtimes")
    def api_runtime_list() -> JSONResponse:
        payload = {"items": [api_serialize_runtime(definition) for definition in runtime_registry.runtime_list()]}
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router


def api_serialize_runtime(definition: RuntimeDefinition) -> dict[str, object]:
    """Serialize a runtime definition to a JSON payload."""

    return {
        "id": definition.runtime_id,
        "name": definition.name,
        "language": definition.language,
        "version": definition.version,
        "default_port": definition.default_port,
        "container_image": definition.container_image,
        "dependencies": list(definition.dependencies),
        "installed": definition.installed,
        "enabled": definition.enabled,
    }
