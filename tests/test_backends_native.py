"""Tests for native build steps, launch commands and process lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from deployer.adapters import CommandResult, ResourceUsage, SpawnedProcess
from deployer.backends import NativeBackend, backend_build_steps, backend_launch_command
from deployer.domain import (
    BACKEND_KIND_NATIVE,
    INSTANCE_STATUS_BUILDING,
    ApplicationInstance,
    BackendHandle,
    BackendOperationError,
    BuildError,
    DeploymentTimeoutError,
    ResourceLimits,
)
from deployer.runtimes import RUNTIME_CATALOG
from deployer.workspace import WorkspaceManager


def _definition(language: str, version: str):
    """Return a catalog definition by language and version.

    Args:
        language: Runtime language.
        version: Runtime version.

    Returns:
        RuntimeDefinition: Matching catalog entry.

    Raises:
        StopIteration: Raised when the runtime is missing from the catalog.
    """

    return next(item for item in RUNTIME_CATALOG if item.language == language and item.version == version)


class _HostStub:
    """Host adapter stub with scripted process liveness and port readiness."""

    def __init__(self, alive: bool = True, accepting_after: int | None = 0, returncode: int = 0):
        """Initialize stub state.

        Args:
            alive: Whether spawned processes stay alive.
            accepting_after: Number of probes before the port accepts; None never accepts.
            returncode: Exit code for build commands.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.alive = alive
        self.accepting_after = accepting_after
        self.returncode = returncode
        self.commands: list[tuple[str, ...]] = []
        self.spawned: list[dict[str, object]] = []
        self.terminated: list[tuple[SpawnedProcess, float]] = []
        self.probes = 0
        self.usage: ResourceUsage | None = ResourceUsage(cpu_percent=3.5, memory_bytes=48 * 1024 * 1024)
        self.usage_requests: list[SpawnedProcess] = []

    def adapter_run_command(self, argv, cwd, timeout_seconds, environment=None) -> CommandResult:
        """Record one build command.

        Args:
            argv: Command argv.
            cwd: Working directory.
            timeout_seconds: Timeout.
            environment: Environment.

        Returns:
            CommandResult: Scripted result.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = (cwd, timeout_seconds, environment)
        self.commands.append(tuple(argv))
        return CommandResult(returncode=self.returncode, stdout="", stderr="compile error")

    def adapter_spawn_detached(self, argv, cwd, environment, log_path) -> SpawnedProcess:
        """Record spawn arguments and write a startup line to the log.

        Args:
            argv: Launch argv.
            cwd: Working directory.
            environment: Environment.
            log_path: Log file.

        Returns:
            SpawnedProcess: Fake process identity.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.spawned.append({"argv": tuple(argv), "cwd": cwd, "environment": dict(environment)})
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("SyntaxError: invalid syntax\n", encoding="utf-8")
        return SpawnedProcess(pid=4242, create_time=1700000000.5)

    def adapter_process_alive(self, process: SpawnedProcess) -> bool:
        """Return configured liveness.

        Args:
            process: Process identity.

        Returns:
            bool: Liveness flag.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = process
        return self.alive

    def adapter_port_accepting(self, port: int) -> bool:
        """Report the port as accepting after the configured number of probes.

        Args:
            port: Probed port.

        Returns:
            bool: Whether the port accepts connections.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = port
        self.probes += 1
        return self.accepting_after is not None and self.probes > self.accepting_after

    def adapter_terminate_process(self, process: SpawnedProcess, grace_seconds: float) -> bool:
        """Record termination.

        Args:
            process: Process identity.
            grace_seconds: Grace period.

        Returns:
            bool: Always True.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.terminated.append((process, grace_seconds))
        return True

    def adapter_process_usage(self, process: SpawnedProcess) -> ResourceUsage | None:
        """Record the request and return the configured usage.

        Args:
            process: Process identity.

        Returns:
            ResourceUsage | None: Configured usage; None models a gone process.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.usage_requests.append(process)
        return self.usage


class _FakeClock:
    """Deterministic clock advanced by sleeps."""

    def __init__(self):
        """Initialize clock at zero.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.now = 0.0

    def monotonic(self) -> float:
        """Return current fake time.

        Returns:
            float: Current time.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        return self.now

    def sleep(self, seconds: float) -> None:
        """Advance fake time.

        Args:
            seconds: Seconds to advance.

        Returns:
            None: Time advances as a side effect.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.now += seconds


def _build_backend(tmp_path: Path, host: _HostStub, payload, language: str = "python"):
    """Create a native backend and a building instance with materialized source.

    Args:
        tmp_path: Pytest temporary directory.
        host: Host stub.
        payload: Source payload.
        language: Runtime language.

    Returns:
        tuple[NativeBackend, ApplicationInstance, _FakeClock]: Backend, instance and clock.

    Raises:
        WorkspaceError: Raised when materialization fails.
    """

    clock = _FakeClock()
    manager = WorkspaceManager(tmp_path)
    workspace = manager.workspace_materialize("inst1", language, payload, {"MODE": "test"})
    now = datetime.now(timezone.utc)
    instance = ApplicationInstance(
        instance_id="inst1",
        domain_id="dom-1",
        language=language,
        version="3.11",
        port=8000,
        status=INSTANCE_STATUS_BUILDING,
        limits=ResourceLimits(),
        environment={"MODE": "test"},
        backend_kind=BACKEND_KIND_NATIVE,
        workspace_path=str(workspace),
        created_at_utc=now,
        updated_at_utc=now,
    )
    backend = NativeBackend(host_system=host, workspace_manager=manager, sleep=clock.sleep, monotonic=clock.monotonic)
    return backend, instance, clock


def test_backends_native_build_steps_follow_manifests(tmp_path: Path) -> None:
    """Install manifests and compile Go and Maven projects.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate build steps.

    Raises:
        AssertionError: Raised when steps differ.
    """

    assert backend_build_steps("python", tmp_path) == []
    assert backend_build_steps("go", tmp_path) == [("go", "build", "-o", "app", "main.go")]

    (tmp_path / "requirements.txt").write_text("flask\n", encoding="utf-8")
    (tmp_path / "go.mod").write_text("module app\n", encoding="utf-8")
    (tmp_path / "pom.xml").write_text("<project/>", encoding="utf-8")

    assert backend_build_steps("python", tmp_path) == [("pip3", "install", "-r", "requirements.txt")]
    assert backend_build_steps("go", tmp_path) == [("go", "mod", "download"), ("go", "build", "-o", "app", ".")]
    assert backend_build_steps("java", tmp_path) == [("mvn", "clean", "package")]


def test_backends_native_launch_command_renders_placeholders(tmp_path: Path) -> None:
    """Substitute port, script and document root into launch templates.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate rendered argv.

    Raises:
        AssertionError: Raised when argv differs.
    """

    workspace = tmp_path / "with space"

    assert backend_launch_command(_definition("python", "3.11"), workspace, 8000) == ("python3", "app.py", "8000")
    assert backend_launch_command(_definition("php", "8.2"), workspace, 8080) == (
        "php",
        "-S",
        "0.0.0.0:8080",
        "-t",
        str(workspace),
    )
    assert backend_launch_command(_definition("ruby", "3.2"), workspace, 4567) == ("ruby", "app.rb", "-p", "4567")


def test_backends_native_launch_command_prefers_project_manifests(tmp_path: Path) -> None:
    """Use `npm start` and the Maven jar when project manifests exist.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate manifest-driven commands.

    Raises:
        AssertionError: Raised when argv differs.
    """

    (tmp_path / "package.json").write_text("{}", encoding="utf-8")
    (tmp_path / "pom.xml").write_text("<project/>", encoding="utf-8")

    assert backend_launch_command(_definition("nodejs", "20"), tmp_path, 3000) == ("npm", "start")
    assert backend_launch_command(_definition("java", "17"), tmp_path, 8081) == ("java", "-jar", "target/app.jar")


def test_backends_native_start_returns_handle_once_port_accepts(tmp_path: Path) -> None:
    """Spawn the process with PORT injected and wait for the port.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate spawn and handle.

    Raises:
        AssertionError: Raised when spawn arguments differ.
    """

    host = _HostStub(accepting_after=2)
    backend, instance, clock = _build_backend(tmp_path, host, "print('hi')")

    handle = backend.backend_start(backend.backend_build(_definition("python", "3.11"), instance), instance)

    assert host.spawned[0]["argv"] == ("python3", "app.py", "8000")
    assert host.spawned[0]["environment"] == {"MODE": "test", "PORT": "8000"}
    assert handle.reference == "4242"
    assert handle.process_create_time == 1700000000.5
    assert clock.now == 4.0


def test_backends_native_early_exit_raises_build_error_with_log_tail(tmp_path: Path) -> None:
    """Raise `BuildError` carrying the log tail when the process dies.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate early-exit handling.

    Raises:
        AssertionError: Raised when the error is missing details.
    """

    host = _HostStub(alive=False)
    backend, instance, _ = _build_backend(tmp_path, host, "print(")

    with pytest.raises(BuildError, match="SyntaxError"):
        backend.backend_start(BackendHandle(backend_kind=BACKEND_KIND_NATIVE, command=("python3", "app.py")), instance)


def test_backends_native_timeout_terminates_process(tmp_path: Path) -> None:
    """Terminate the process and raise when the port never accepts.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate timeout handling.

    Raises:
        AssertionError: Raised when the process is left running.
    """

    host = _HostStub(accepting_after=None)
    backend, instance, clock = _build_backend(tmp_path, host, "import time; time.sleep(999)")

    with pytest.raises(DeploymentTimeoutError):
        backend.backend_start(BackendHandle(backend_kind=BACKEND_KIND_NATIVE, command=("python3", "app.py")), instance)

    assert clock.now == 30.0
    assert host.terminated[0][0].pid == 4242


def test_backends_native_build_step_failure_raises_build_error(tmp_path: Path) -> None:
    """Raise `BuildError` when a build step exits non-zero.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate build failure mapping.

    Raises:
        AssertionError: Raised when no error is raised.
    """

    host = _HostStub(returncode=1)
    backend, instance, _ = _build_backend(tmp_path, host, {"main.go": "package main"}, language="go")

    with pytest.raises(BuildError, match="compile error"):
        backend.backend_build(_definition("go", "1.21"), instance)


def test_backends_native_stop_terminates_recorded_process(tmp_path: Path) -> None:
    """Terminate the process identified by pid and creation time.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate stop behavior.

    Raises:
        AssertionError: Raised when termination arguments differ.
    """

    host = _HostStub()
    backend, instance, _ = _build_backend(tmp_path, host, "print('hi')")
    handle = BackendHandle(backend_kind=BACKEND_KIND_NATIVE, reference="4242", process_create_time=12.5)

    backend.backend_stop(handle, instance)

    assert host.terminated == [(SpawnedProcess(pid=4242, create_time=12.5), 10.0)]
    assert backend.backend_update_resources(handle, ResourceLimits()) is False


def test_backends_native_stats_sample_recorded_process(tmp_path: Path) -> None:
    """Read usage for the recorded process and fail once it is gone.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate native stats.

    Raises:
        AssertionError: Raised when stats target the wrong process or a gone process passes.
    """

    host = _HostStub()
    backend, instance, _ = _build_backend(tmp_path, host, "print('hi')")
    handle = BackendHandle(backend_kind=BACKEND_KIND_NATIVE, reference="4242", process_create_time=12.5)

    usage = backend.backend_stats(handle, instance)

    assert usage.memory_bytes == 48 * 1024 * 1024
    assert host.usage_requests == [SpawnedProcess(pid=4242, create_time=12.5)]
    host.usage = None
    with pytest.raises(BackendOperationError, match="not running"):
        backend.backend_stats(handle, instance)
    with pytest.raises(BackendOperationError, match="not running"):
        backend.backend_stats(BackendHandle(backend_kind=BACKEND_KIND_NATIVE), instance)
