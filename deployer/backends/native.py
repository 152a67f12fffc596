"""Native backend running each instance as a detached host process."""

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Final, Sequence

from deployer.adapters import HostSystemPort, ResourceUsage, SpawnedProcess
from deployer.domain import (
    BACKEND_KIND_NATIVE,
    ApplicationInstance,
    BackendHandle,
    BackendOperationError,
    BuildError,
    DeploymentTimeoutError,
    ResourceLimits,
    RuntimeDefinition,
)
from deployer.runtimes import ENTRY_FILENAMES, INSTALL_TIMEOUT_SECONDS
from deployer.workspace import WorkspaceManager

from .interfaces import BackendStrategyPort
from .log_files import backend_read_log_tail

logger = logging.getLogger(__name__)

READINESS_TIMEOUT_SECONDS: Final[float] = 30.0
READINESS_POLL_SECONDS: Final[float] = 2.0
STOP_GRACE_SECONDS: Final[float] = 10.0
FAILURE_LOG_TAIL_LINES: Final[int] = 20

# manifest file -> install command, per language
MANIFEST_INSTALL_COMMANDS: Final[dict[str, tuple[str, tuple[str, ...]]]] = {
    "nodejs": ("package.json", ("npm", "install")),
    "python": ("requirements.txt", ("pip3", "install", "-r", "requirements.txt")),
    "ruby": ("Gemfile", ("bundle", "install")),
    "go": ("go.mod", ("go", "mod", "download")),
    "php": ("composer.json", ("composer", "install")),
}


def backend_build_steps(language: str, workspace: Path) -> list[tuple[str, ...]]:
    """Return the commands that prepare a workspace before launch.

    Args:
        language: Runtime language.
        workspace: Materialized workspace used to detect manifests.

    Returns:
        list[tuple[str, ...]]: Commands in execution order, possibly empty.
    """

    steps: list[tuple[str, ...]] = []
    manifest_install = MANIFEST_INSTALL_COMMANDS.get(language)
    if manifest_install is not None and (workspace / manifest_install[0]).exists():
        steps.append(manifest_install[1])
    if language == "go":
        build_target = "." if (workspace / "go.mod").exists() else ENTRY_FILENAMES["go"]
        steps.append(("go", "build", "-o", "app", build_target))
    if language == "java" and (workspace / "pom.xml").exists():
        steps.append(("mvn", "clean", "package"))
    return steps


def backend_launch_command(definition: RuntimeDefinition, workspace: Path, port: int) -> tuple[str, ...]:
    """Render the launch argv for a runtime.

    Args:
        definition: Runtime providing the `run_command` template.
        workspace: Workspace directory used as document root.
        port: Allocated port.

    Returns:
        tuple[str, ...]: Launch argv.

    Raises:
        BuildError: Raised when the template references an unknown placeholder.
    """

    if definition.language == "nodejs" and (workspace / "package.json").exists():
        return ("npm", "start")
    if definition.language == "java" and (workspace / "pom.xml").exists():
        return ("java", "-jar", "target/app.jar")

    placeholders = {
        "port": str(port),
        "script": ENTRY_FILENAMES.get(definition.language, ""),
        "documentRoot": str(workspace),
    }
    try:
        # split before substitution so paths with spaces stay one argument
        return tuple(token.format(**placeholders) for token in shlex.split(definition.run_command))
    except KeyError as error:
        raise BuildError(f"run command of {definition.runtime_id} uses unknown placeholder {error}") from error


class NativeBackend(BackendStrategyPort):
    """Backend running each instance as a host process in its own session."""

    backend_kind = BACKEND_KIND_NATIVE

    def __init__(
        self,
        host_system: HostSystemPort,
        workspace_manager: WorkspaceManager,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """Initialize backend dependencies.

        Args:
            host_system: Host adapter for commands and processes.
            workspace_manager: Workspace manager resolving log paths.
            sleep: Sleep function used between readiness polls.
            monotonic: Clock used for the readiness deadline.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are missing.
        """

        if host_system is None:
            raise ValueError("host_system must not be None")
        if workspace_manager is None:
            raise ValueError("workspace_manager must not be None")

        self._host_system = host_system
        self._workspace_manager = workspace_manager
        self._sleep = sleep
        self._monotonic = monotonic

    def backend_build(self, definition: RuntimeDefinition, instance: ApplicationInstance) -> BackendHandle:
        workspace = instance.workspace
        environment = self._backend_environment(instance)
        for argv in backend_build_steps(definition.language, workspace):
            self._backend_run_step(argv, workspace, environment, instance)
        command = backend_launch_command(definition, workspace, instance.port)
        return BackendHandle(backend_kind=self.backend_kind, command=command)

    def backend_start(self, handle: BackendHandle, instance: ApplicationInstance) -> BackendHandle:
        if not handle.command:
            raise BuildError(f"no launch command recorded for {instance.instance_id}")

        log_path = self._workspace_manager.workspace_log_path(instance.instance_id)
        try:
            process = self._host_system.adapter_spawn_detached(
                handle.command,
                cwd=instance.workspace,
                environment=self._backend_environment(instance),
                log_path=log_path,
            )
        except OSError as error:
            raise BuildError(f"failed to launch {handle.command[0]}: {error}") from error

        self._backend_wait_ready(process, instance, log_path)
        logger.info("Process %s ready for instance %s on port %s", process.pid, instance.instance_id, instance.port)
        return replace(handle, reference=str(process.pid), process_create_time=process.create_time)

    def backend_stop(self, handle: BackendHandle, instance: ApplicationInstance) -> None:
        process = self._backend_process_identity(handle)
        if process is None:
            return
        try:
            terminated = self._host_system.adapter_terminate_process(process, STOP_GRACE_SECONDS)
        except OSError as error:
            raise BackendOperationError(f"failed to stop process for {instance.instance_id}: {error}") from error
        if not terminated:
            logger.warning("Process %s for %s was already gone", process.pid, instance.instance_id)

    def backend_logs(self, instance: ApplicationInstance, lines: int) -> list[str]:
        try:
            return backend_read_log_tail(self._workspace_manager.workspace_log_path(instance.instance_id), lines)
        except OSError as error:
            raise BackendOperationError(f"failed to read logs for {instance.instance_id}: {error}") from error

    def backend_update_resources(self, handle: BackendHandle, limits: ResourceLimits) -> bool:
        return False

    def backend_stats(self, handle: BackendHandle, instance: ApplicationInstance) -> ResourceUsage:
        process = self._backend_process_identity(handle)
        usage = None
        if process is not None:
            try:
                usage = self._host_system.adapter_process_usage(process)
            except OSError as error:
                raise BackendOperationError(f"failed to read stats for {instance.instance_id}: {error}") from error
        if usage is None:
            raise BackendOperationError(f"process for {instance.instance_id} is not running")
        return usage

    def backend_cleanup(self, instance: ApplicationInstance) -> bool:
        return False

    def _backend_run_step(
        self,
        argv: Sequence[str],
        workspace: Path,
        environment: dict[str, str],
        instance: ApplicationInstance,
    ) -> None:
        logger.info("Running build step %s for %s", " ".join(argv), instance.instance_id)
        try:
            result = self._host_system.adapter_run_command(
                argv,
                cwd=workspace,
                timeout_seconds=INSTALL_TIMEOUT_SECONDS,
                environment=environment,
            )
        except TimeoutError as error:
            raise BuildError(f"{' '.join(argv)} timed out after {INSTALL_TIMEOUT_SECONDS:.0f}s") from error
        if result.returncode != 0:
            raise BuildError(f"{' '.join(argv)} failed with exit code {result.returncode}: {result.command_output_tail()}")

    def _backend_wait_ready(self, process: SpawnedProcess, instance: ApplicationInstance, log_path: Path) -> None:
        """Wait until the process accepts connections on the instance port.

        Raises:
            BuildError: Raised when the process exits before becoming ready.
            DeploymentTimeoutError: Raised after terminating a process that never became ready.
        """

        deadline = self._monotonic() + READINESS_TIMEOUT_SECONDS
        while True:
            if not self._host_system.adapter_process_alive(process):
                tail = backend_read_log_tail(log_path, FAILURE_LOG_TAIL_LINES)
                excerpt = "\n".join(tail) if tail else "no output"
                raise BuildError(f"Process exited during startup: {excerpt}")
            if self._host_system.adapter_port_accepting(instance.port):
                return
            if self._monotonic() >= deadline:
                self._host_system.adapter_terminate_process(process, STOP_GRACE_SECONDS)
                raise DeploymentTimeoutError(
                    f"Instance {instance.instance_id} did not accept connections on port {instance.port} "
                    f"within {READINESS_TIMEOUT_SECONDS:.0f}s"
                )
            self._sleep(READINESS_POLL_SECONDS)

    def _backend_process_identity(self, handle: BackendHandle) -> SpawnedProcess | None:
        if handle.reference is None or handle.process_create_time is None:
            return None
        return SpawnedProcess(pid=int(handle.reference), create_time=handle.process_create_time)

    def _backend_environment(self, instance: ApplicationInstance) -> dict[str, str]:
        return {**instance.environment, "PORT": str(instance.port)}
