"""Instance API router composition for deploy and lifecycle endpoints."""

from __future__ import annotations

from typing import Final

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from deployer.adapters import ResourceUsage
from deployer.config import AppSettings
from deployer.domain import (
    ApplicationInstance,
    BackendOperationError,
    DeploymentRequest,
    DeploymentResult,
    InstanceNotFoundError,
    InvalidStateTransitionError,
    OperationResult,
    ResourceLimits,
)
from deployer.jobs import DeploymentOrchestratorPort, LifecycleManagerPort

_FAILURE_STATUS_CODES: Final[dict[str, int]] = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "BACKEND_ERROR": status.HTTP_502_BAD_GATEWAY,
    "WORKSPACE_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ResourceLimitsBody(BaseModel):
    """Resource caps in a request body."""

    memory_mb: int | None = Field(default=None, ge=1)
    cpu_cores: float | None = Field(default=None, gt=0)
    disk_mb: int | None = Field(default=None, ge=1)


class DeployInstanceBody(BaseModel):
    """Deploy request body.

    `source` is either the entry-point text or a mapping of relative file
    paths to contents.
    """

    domain_id: str = Field(min_length=1)
    language: str = Field(min_length=1)
    version: str = Field(min_length=1)
    source: str | dict[str, str]
    environment: dict[str, str] = Field(default_factory=dict)
    limits: ResourceLimitsBody | None = None


def api_create_instances_router(
    settings: AppSettings,
    orchestrator: DeploymentOrchestratorPort,
    lifecycle_manager: LifecycleManagerPort,
) -> APIRouter:
    """Create router exposing deploy, listing and lifecycle endpoints.

    Args:
        settings: Runtime settings used for defaults and log line bounds.
        orchestrator: Job-layer deployment orchestrator.
        lifecycle_manager: Job-layer lifecycle manager.

    Returns:
        APIRouter: Router exposing `/instances` endpoints.

    Raises:
        ValueError: Raised when dependencies are invalid.
    """

    if settings is None:
        raise ValueError("settings must not be None")
    if orchestrator is None:
        raise ValueError("orchestrator must not be None")
    if lifecycle_manager is None:
        raise ValueError("lifecycle_manager must not be None")

    router = APIRouter(prefix="/instances", tags=["instances"])

    @router.post("")
    def api_instance_deploy(body: DeployInstanceBody) -> JSONResponse:
        """Deploy source onto a runtime.

        A deploy that ran but failed still answers 200 with `success=false`
        and an `error_code`; only malformed requests answer 400.

        Returns:
            JSONResponse: Deployment result payload.
        """

        limits = None
        if body.limits is not None:
            limits = ResourceLimits(
                memory_mb=body.limits.memory_mb or settings.default_memory_limit_mb,
                cpu_cores=body.limits.cpu_cores or settings.default_cpu_limit,
                disk_mb=body.limits.disk_mb or settings.default_disk_limit_mb,
            )
        try:
            result = orchestrator.job_deploy(
                DeploymentRequest(
                    domain_id=body.domain_id,
                    language=body.language,
                    version=body.version,
                    source_payload=body.source,
                    environment=body.environment,
                    limits=limits,
                )
            )
        except ValueError as error:
            return api_error_response(str(error), "INVALID_REQUEST", status.HTTP_400_BAD_REQUEST)
        return JSONResponse(content=api_serialize_deployment_result(result), status_code=status.HTTP_200_OK)

    @router.get("")
    def api_instance_list(domain_id: str | None = Query(default=None)) -> JSONResponse:
        instances = lifecycle_manager.lifecycle_list(domain_id)
        payload = {
            "items": [api_serialize_instance(instance) for instance in instances],
            "filters": {"domain_id": domain_id},
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/{instance_id}")
    def api_instance_detail(instance_id: str) -> JSONResponse:
        try:
            instance = lifecycle_manager.lifecycle_get(instance_id)
        except InstanceNotFoundError as error:
            return api_error_response(str(error), error.error_code, status.HTTP_404_NOT_FOUND)
        return JSONResponse(
            content=api_serialize_instance(instance, include_diagnostics=True),
            status_code=status.HTTP_200_OK,
        )

    @router.post("/{instance_id}/stop")
    def api_instance_stop(instance_id: str) -> JSONResponse:
        return api_operation_response(lifecycle_manager.lifecycle_stop(instance_id))

    @router.post("/{instance_id}/restart")
    def api_instance_restart(instance_id: str) -> JSONResponse:
        return api_operation_response(lifecycle_manager.lifecycle_restart(instance_id))

    @router.delete("/{instance_id}")
    def api_instance_delete(instance_id: str) -> JSONResponse:
        return api_operation_response(lifecycle_manager.lifecycle_delete(instance_id))

    @router.get("/{instance_id}/logs")
    def api_instance_logs(
        instance_id: str,
        lines: int = Query(default=settings.api_default_log_lines, ge=1, le=settings.api_max_log_lines),
    ) -> JSONResponse:
        """Return recent log lines of one instance.

        Returns:
            JSONResponse: Log payload, 404 for unknown ids, 502 when the backend cannot be read.
        """

        try:
            log_lines = lifecycle_manager.lifecycle_logs(instance_id, lines)
        except InstanceNotFoundError as error:
            return api_error_response(str(error), error.error_code, status.HTTP_404_NOT_FOUND)
        except BackendOperationError as error:
            return api_error_response(str(error), error.error_code, status.HTTP_502_BAD_GATEWAY)
        payload = {"instance_id": instance_id, "lines": log_lines, "returned": len(log_lines)}
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/{instance_id}/stats")
    def api_instance_stats(instance_id: str) -> JSONResponse:
        """Return one live resource usage sample of a running instance.

        Returns:
            JSONResponse: Usage payload, 404 for unknown ids, 409 when not running,
                502 when the backend cannot be read.
        """

        try:
            usage = lifecycle_manager.lifecycle_stats(instance_id)
        except InstanceNotFoundError as error:
            return api_error_response(str(error), error.error_code, status.HTTP_404_NOT_FOUND)
        except InvalidStateTransitionError as error:
            return api_error_response(str(error), error.error_code, status.HTTP_409_CONFLICT)
        except BackendOperationError as error:
            return api_error_response(str(error), error.error_code, status.HTTP_502_BAD_GATEWAY)
        payload = {"instance_id": instance_id, **api_serialize_usage(usage)}
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.put("/{instance_id}/resources")
    def api_instance_update_resources(instance_id: str, body: ResourceLimitsBody) -> JSONResponse:
        """Update resource caps; omitted fields keep their current value.

        Returns:
            JSONResponse: Operation payload with `applied_live`.
        """

        try:
            current = lifecycle_manager.lifecycle_get(instance_id)
        except InstanceNotFoundError as error:
            return api_error_response(str(error), error.error_code, status.HTTP_404_NOT_FOUND)

        requested = ResourceLimits(
            memory_mb=body.memory_mb if body.memory_mb is not None else current.limits.memory_mb,
            cpu_cores=body.cpu_cores if body.cpu_cores is not None else current.limits.cpu_cores,
            disk_mb=body.disk_mb if body.disk_mb is not None else current.limits.disk_mb,
        )
        try:
            result = lifecycle_manager.lifecycle_update_resources(instance_id, requested)
        except ValueError as error:
            return api_error_response(str(error), "INVALID_LIMITS", status.HTTP_400_BAD_REQUEST)
        return api_operation_response(result)

    return router


def api_error_response(message: str, code: str, status_code: int) -> JSONResponse:
    """Build the shared error envelope."""

    return JSONResponse(
        content={"status": "error", "success": False, "code": code, "message": message},
        status_code=status_code,
    )


def api_operation_response(result: OperationResult) -> JSONResponse:
    """Map a lifecycle result to a response.

    Unknown ids answer 404 and state conflicts 409. A restart whose redeploy
    failed answers 200 with `success=false`, like a failed deploy.

    Args:
        result: Lifecycle operation result.

    Returns:
        JSONResponse: Operation payload.
    """

    status_code = status.HTTP_200_OK
    if not result.success and result.error_code in _FAILURE_STATUS_CODES:
        status_code = _FAILURE_STATUS_CODES[result.error_code]

    payload: dict[str, object] = {
        "success": result.success,
        "message": result.message,
        "instance_id": result.instance_id,
        "error_code": result.error_code,
    }
    if result.applied_live is not None:
        payload["applied_live"] = result.applied_live
    if result.port is not None:
        payload["port"] = result.port
    return JSONResponse(content=payload, status_code=status_code)


def api_serialize_deployment_result(result: DeploymentResult) -> dict[str, object]:
    """Serialize a deployment result to a JSON payload."""

    return {
        "success": result.success,
        "message": result.message,
        "instance_id": result.instance_id,
        "port": result.port,
        "error_code": result.error_code,
        "backend_kind": result.backend_kind,
    }


def api_serialize_instance(instance: ApplicationInstance, include_diagnostics: bool = False) -> dict[str, object]:
    """Serialize an instance snapshot to a JSON payload.

    Args:
        instance: Instance snapshot.
        include_diagnostics: Whether to include the provisioning timeline.

    Returns:
        dict[str, object]: JSON-serializable instance payload.
    """

    payload: dict[str, object] = {
        "instance_id": instance.instance_id,
        "domain_id": instance.domain_id,
        "language": instance.language,
        "version": instance.version,
        "port": instance.port,
        "status": instance.status,
        "backend_kind": instance.backend_kind,
        "limits": {
            "memory_mb": instance.limits.memory_mb,
            "cpu_cores": instance.limits.cpu_cores,
            "disk_mb": instance.limits.disk_mb,
        },
        "environment": dict(instance.environment),
        "backend_reference": instance.handle.reference if instance.handle is not None else None,
        "last_error": instance.last_error,
        "created_at_utc": instance.created_at_utc.isoformat(),
        "updated_at_utc": instance.updated_at_utc.isoformat(),
    }
    if include_diagnostics:
        payload["diagnostics"] = list(instance.diagnostics)
    return payload


def api_serialize_usage(usage: ResourceUsage) -> dict[str, object]:
    """Serialize a resource usage sample to a JSON payload."""

    return {
        "cpu_percent": usage.cpu_percent,
        "memory_bytes": usage.memory_bytes,
        "memory_limit_bytes": usage.memory_limit_bytes,
        "network": {"rx_bytes": usage.network_rx_bytes, "tx_bytes": usage.network_tx_bytes},
        "block_io": {"read_bytes": usage.block_read_bytes, "write_bytes": usage.block_write_bytes},
    }
