"""Tests for deploy and lifecycle API endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi.testclient import TestClient

from deployer.adapters import ResourceUsage
from deployer.api.application import create_api_application
from deployer.config import AppSettings
from deployer.domain import (
    BACKEND_KIND_NATIVE,
    INSTANCE_STATUS_RUNNING,
    ApplicationInstance,
    BackendHandle,
    BackendOperationError,
    DeploymentRequest,
    DeploymentResult,
    HealthStatus,
    InstanceNotFoundError,
    InvalidStateTransitionError,
    OperationResult,
    ResourceLimits,
)
from deployer.runtimes import RuntimeRegistry


class _DatabaseStub:
    """Healthy database double."""

    def db_connection_label(self) -> str:
        """Return deterministic target label.

        Returns:
            str: Health target label.

        Raises:
            RuntimeError: Never raised by this test double.
        """

        return "sqlite://"

    def db_check_health(self) -> HealthStatus:
        """Return healthy database result.

        Returns:
            HealthStatus: Healthy DB response.

        Raises:
            ConnectionError: Never raised by this test double.
        """

        return HealthStatus(status="ok", detail="database connectivity verified")


class _AdapterStub:
    """Engine and host double used only to construct the runtime registry."""

    def adapter_engine_available(self) -> bool:
        """Report the engine as unavailable.

        Returns:
            bool: Always False.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        return False


class _OrchestratorStub:
    """Orchestrator double capturing deploy requests."""

    def __init__(self):
        """Initialize stub state.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.requests: list[DeploymentRequest] = []

    def job_deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """Return a scripted result based on the requested runtime.

        Args:
            request: Deploy request.

        Returns:
            DeploymentResult: Success for known runtimes, failure otherwise.

        Raises:
            ValueError: Raised for blank owners, like the real orchestrator.
        """

        if not request.domain_id.strip():
            raise ValueError("domain_id must not be blank")
        self.requests.append(request)
        if request.version == "9.9":
            return DeploymentResult(
                success=False,
                message=f"Runtime {request.language}-{request.version} not found",
                error_code="RUNTIME_NOT_FOUND",
            )
        return DeploymentResult(
            success=True,
            message="Application deployed successfully on port 3000",
            instance_id="inst-1",
            port=3000,
            backend_kind=BACKEND_KIND_NATIVE,
        )


class _LifecycleStub:
    """Lifecycle manager double over one known running instance."""

    def __init__(self):
        """Initialize stub state.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        self.instance = ApplicationInstance(
            instance_id="inst-1",
            domain_id="dom-1",
            language="nodejs",
            version="20",
            port=3000,
            status=INSTANCE_STATUS_RUNNING,
            limits=ResourceLimits(memory_mb=512, cpu_cores=1.0, disk_mb=1024),
            environment={"MODE": "prod"},
            backend_kind=BACKEND_KIND_NATIVE,
            workspace_path="/srv/apps/inst-1",
            created_at_utc=now,
            updated_at_utc=now,
            handle=BackendHandle(backend_kind=BACKEND_KIND_NATIVE, reference="4242", process_create_time=1.0),
            diagnostics=({"stage": "run", "status": "success", "at_utc": now.isoformat()},),
        )
        self.updated_limits: list[ResourceLimits] = []
        self.logs_error: Exception | None = None
        self.stats_error: Exception | None = None

    def lifecycle_get(self, instance_id: str) -> ApplicationInstance:
        """Return the known instance.

        Args:
            instance_id: Instance id.

        Returns:
            ApplicationInstance: Known instance.

        Raises:
            InstanceNotFoundError: Raised for unknown ids.
        """

        if instance_id != self.instance.instance_id:
            raise InstanceNotFoundError(f"Instance {instance_id} not found")
        return self.instance

    def lifecycle_list(self, domain_id: str | None = None) -> list[ApplicationInstance]:
        """Return instances matching the owner filter.

        Args:
            domain_id: Optional owner filter.

        Returns:
            list[ApplicationInstance]: Matching instances.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        if domain_id is not None and domain_id != self.instance.domain_id:
            return []
        return [self.instance]

    def lifecycle_stop(self, instance_id: str) -> OperationResult:
        """Return a scripted stop result.

        Args:
            instance_id: Instance id.

        Returns:
            OperationResult: Success for the known id, not-found otherwise.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        if instance_id != self.instance.instance_id:
            return OperationResult(False, f"Instance {instance_id} not found", instance_id, "NOT_FOUND")
        return OperationResult(True, "Application stopped successfully", instance_id)

    def lifecycle_restart(self, instance_id: str) -> OperationResult:
        """Return a scripted restart result.

        Args:
            instance_id: Instance id.

        Returns:
            OperationResult: Successful restart on port 3000.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        return OperationResult(True, "Application restarted successfully on port 3000", instance_id, port=3000)

    def lifecycle_delete(self, instance_id: str) -> OperationResult:
        """Refuse deletion because the instance is running.

        Args:
            instance_id: Instance id.

        Returns:
            OperationResult: Invalid-state failure.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        return OperationResult(False, "Instance inst-1 is running; stop it before deleting", instance_id, "INVALID_STATE")

    def lifecycle_update_resources(self, instance_id: str, limits: ResourceLimits) -> OperationResult:
        """Record the update or reject caps above two cores.

        Args:
            instance_id: Instance id.
            limits: Requested caps.

        Returns:
            OperationResult: Stored-update result.

        Raises:
            ValueError: Raised when CPU cap exceeds two cores.
        """

        if limits.cpu_cores > 2.0:
            raise ValueError("cpu_cores must be greater than 0 and at most 2.0")
        self.updated_limits.append(limits)
        return OperationResult(
            True,
            "Resource limits stored; they take effect on next restart",
            instance_id,
            applied_live=False,
        )

    def lifecycle_logs(self, instance_id: str, lines: int) -> list[str]:
        """Return scripted log lines.

        Args:
            instance_id: Instance id.
            lines: Requested line count.

        Returns:
            list[str]: Log lines.

        Raises:
            InstanceNotFoundError: Raised for unknown ids.
            BackendOperationError: Raised when a logs error is configured.
        """

        self.lifecycle_get(instance_id)
        if self.logs_error is not None:
            raise self.logs_error
        return [f"line {index}" for index in range(lines)]

    def lifecycle_stats(self, instance_id: str) -> ResourceUsage:
        """Return a scripted usage sample.

        Args:
            instance_id: Instance id.

        Returns:
            ResourceUsage: Usage sample.

        Raises:
            InstanceNotFoundError: Raised for unknown ids.
            InvalidStateTransitionError: Raised when a stats error of that kind is configured.
            BackendOperationError: Raised when a backend stats error is configured.
        """

        self.lifecycle_get(instance_id)
        if self.stats_error is not None:
            raise self.stats_error
        return ResourceUsage(
            cpu_percent=7.25,
            memory_bytes=1048576,
            memory_limit_bytes=536870912,
            network_rx_bytes=300,
            network_tx_bytes=200,
        )


def _build_client() -> tuple[TestClient, _OrchestratorStub, _LifecycleStub]:
    """Create a test client with stub job dependencies.

    Returns:
        tuple[TestClient, _OrchestratorStub, _LifecycleStub]: Client and stubs.

    Raises:
        ValueError: Raised when factory dependencies are invalid.
    """

    orchestrator = _OrchestratorStub()
    lifecycle = _LifecycleStub()
    adapter = _AdapterStub()
    application = create_api_application(
        settings=AppSettings(environment_name="test", workspace_root="/tmp/deployer-test"),
        db_health_service=_DatabaseStub(),
        runtime_registry=RuntimeRegistry(container_engine=adapter, host_system=adapter),
        orchestrator=orchestrator,
        lifecycle_manager=lifecycle,
    )
    return TestClient(application), orchestrator, lifecycle


def test_api_deploy_returns_result_and_forwards_payload() -> None:
    """Forward a multi-file deploy and return the deployment result.

    Returns:
        None: Assertions validate deploy forwarding.

    Raises:
        AssertionError: Raised when payload or forwarding differs.
    """

    client, orchestrator, _ = _build_client()

    response = client.post(
        "/instances",
        json={
            "domain_id": "dom-1",
            "language": "nodejs",
            "version": "20",
            "source": {"package.json": "{}", "server.js": "//"},
            "environment": {"MODE": "prod"},
            "limits": {"memory_mb": 256},
        },
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["port"] == 3000
    request = orchestrator.requests[0]
    assert request.source_payload == {"package.json": "{}", "server.js": "//"}
    assert request.limits == ResourceLimits(memory_mb=256, cpu_cores=1.0, disk_mb=1024)


def test_api_deploy_reports_failures_with_error_code() -> None:
    """Answer 200 with `success=false` for runs that failed and 400 for bad input.

    Returns:
        None: Assertions validate failure responses.

    Raises:
        AssertionError: Raised when status codes differ.
    """

    client, _, _ = _build_client()

    failed = client.post(
        "/instances",
        json={"domain_id": "dom-1", "language": "ruby", "version": "9.9", "source": "puts 1"},
    )
    blank_owner = client.post(
        "/instances",
        json={"domain_id": " ", "language": "ruby", "version": "3.2", "source": "puts 1"},
    )
    missing_field = client.post("/instances", json={"domain_id": "dom-1", "language": "ruby"})

    assert failed.status_code == 200
    assert failed.json()["error_code"] == "RUNTIME_NOT_FOUND"
    assert failed.json()["success"] is False
    assert blank_owner.status_code == 400
    assert blank_owner.json()["code"] == "INVALID_REQUEST"
    assert missing_field.status_code == 422


def test_api_instance_list_and_detail() -> None:
    """List instances with owner filtering and return detail with diagnostics.

    Returns:
        None: Assertions validate listing and detail payloads.

    Raises:
        AssertionError: Raised when payloads differ.
    """

    client, _, _ = _build_client()

    listing = client.get("/instances", params={"domain_id": "dom-1"})
    other_owner = client.get("/instances", params={"domain_id": "dom-2"})
    detail = client.get("/instances/inst-1")
    missing = client.get("/instances/nope")

    assert listing.json()["items"][0]["backend_reference"] == "4242"
    assert "diagnostics" not in listing.json()["items"][0]
    assert other_owner.json()["items"] == []
    assert detail.json()["diagnostics"][0]["status"] == "success"
    assert detail.json()["created_at_utc"] == "2026-10-18T12:00:00+00:00"
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_api_lifecycle_operations_map_failures_to_status_codes() -> None:
    """Map success to 200, unknown ids to 404 and state conflicts to 409.

    Returns:
        None: Assertions validate status mapping.

    Raises:
        AssertionError: Raised when status codes differ.
    """

    client, _, _ = _build_client()

    stopped = client.post("/instances/inst-1/stop")
    missing = client.post("/instances/nope/stop")
    restarted = client.post("/instances/inst-1/restart")
    conflict = client.delete("/instances/inst-1")

    assert stopped.status_code == 200
    assert stopped.json()["message"] == "Application stopped successfully"
    assert missing.status_code == 404
    assert restarted.json()["port"] == 3000
    assert conflict.status_code == 409
    assert conflict.json()["error_code"] == "INVALID_STATE"


def test_api_logs_enforce_bounds_and_map_backend_errors() -> None:
    """Return requested lines, reject out-of-range counts and surface backend errors.

    Returns:
        None: Assertions validate log endpoint behavior.

    Raises:
        AssertionError: Raised when responses differ.
    """

    client, _, lifecycle = _build_client()

    ok = client.get("/instances/inst-1/logs", params={"lines": 2})
    too_many = client.get("/instances/inst-1/logs", params={"lines": 1001})
    missing = client.get("/instances/nope/logs")
    lifecycle.logs_error = BackendOperationError("daemon unreachable")
    broken = client.get("/instances/inst-1/logs")

    assert ok.json() == {"instance_id": "inst-1", "lines": ["line 0", "line 1"], "returned": 2}
    assert too_many.status_code == 422
    assert missing.status_code == 404
    assert broken.status_code == 502
    assert broken.json()["code"] == "BACKEND_ERROR"


def test_api_resources_merge_partial_body_with_current_limits() -> None:
    """Keep omitted caps at their current values and reject invalid caps.

    Returns:
        None: Assertions validate resource updates.

    Raises:
        AssertionError: Raised when merged caps differ.
    """

    client, _, lifecycle = _build_client()

    updated = client.put("/instances/inst-1/resources", json={"memory_mb": 1024})
    rejected = client.put("/instances/inst-1/resources", json={"cpu_cores": 8})
    missing = client.put("/instances/nope/resources", json={"memory_mb": 1024})

    assert updated.status_code == 200
    assert updated.json()["applied_live"] is False
    assert lifecycle.updated_limits == [ResourceLimits(memory_mb=1024, cpu_cores=1.0, disk_mb=1024)]
    assert rejected.status_code == 400
    assert rejected.json()["code"] == "INVALID_LIMITS"
    assert missing.status_code == 404


def test_api_stats_return_usage_and_map_errors_to_status_codes() -> None:
    """Return the usage payload and map unknown, stopped and unreadable instances.

    Returns:
        None: Assertions validate stats endpoint behavior.

    Raises:
        AssertionError: Raised when payload or status codes differ.
    """

    client, _, lifecycle = _build_client()

    ok = client.get("/instances/inst-1/stats")
    missing = client.get("/instances/nope/stats")
    lifecycle.stats_error = InvalidStateTransitionError(
        "Instance inst-1 is stopped; stats are available only while running"
    )
    stopped = client.get("/instances/inst-1/stats")
    lifecycle.stats_error = BackendOperationError("process for inst-1 is not running")
    broken = client.get("/instances/inst-1/stats")

    assert ok.status_code == 200
    assert ok.json() == {
        "instance_id": "inst-1",
        "cpu_percent": 7.25,
        "memory_bytes": 1048576,
        "memory_limit_bytes": 536870912,
        "network": {"rx_bytes": 300, "tx_bytes": 200},
        "block_io": {"read_bytes": None, "write_bytes": None},
    }
    assert missing.status_code == 404
    assert stopped.status_code == 409
    assert stopped.json()["code"] == "INVALID_STATE"
    assert broken.status_code == 502
    assert broken.json() == {
        "status": "error",
        "success": False,
        "code": "BACKEND_ERROR",
        "message": "process for inst-1 is not running",
    }
