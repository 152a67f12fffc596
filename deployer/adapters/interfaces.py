"""Typed interfaces for adapter-layer responsibilities."""

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol, Sequence


@dataclass(frozen=True)
class CommandResult:
    """Completed host command outcome.

    Attributes:
        returncode: Process exit code (127 when the executable is missing).
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    returncode: int
    stdout: str
    stderr: str

    def command_output_tail(self, limit: int = 400) -> str:
        """Return the trailing part of stderr, or stdout when stderr is empty."""

        output = (self.stderr or self.stdout or "").strip()
        return output[-limit:] if output else "no output"


@dataclass(frozen=True)
class SpawnedProcess:
    """Identity of a detached host process.

    Attributes:
        pid: Process id.
        create_time: Kernel process creation time, used to detect pid reuse.
    """

    pid: int
    create_time: float


@dataclass(frozen=True)
class ContainerState:
    """Point-in-time container state reported by the engine.

    Attributes:
        status: Engine status (`created`, `running`, `exited`, `dead`, ...).
        health: Health check status, or None when the image defines no health check.
        exit_code: Exit code when the container has stopped.
    """

    status: str
    health: str | None
    exit_code: int | None = None


@dataclass(frozen=True)
class ResourceUsage:
    """Point-in-time resource consumption of one running workload.

    Attributes:
        cpu_percent: CPU use where 100 equals one fully busy core.
        memory_bytes: Memory in use, excluding reclaimable page cache.
        memory_limit_bytes: Enforced memory cap, or None when nothing enforces one.
        network_rx_bytes: Bytes received, or None when not measurable.
        network_tx_bytes: Bytes sent, or None when not measurable.
        block_read_bytes: Bytes read from block devices, or None when not readable.
        block_write_bytes: Bytes written to block devices, or None when not readable.
    """

    cpu_percent: float
    memory_bytes: int
    memory_limit_bytes: int | None = None
    network_rx_bytes: int | None = None
    network_tx_bytes: int | None = None
    block_read_bytes: int | None = None
    block_write_bytes: int | None = None


class ContainerEnginePort(Protocol):
    """Port definition for the container engine used by the container backend."""

    def adapter_engine_available(self) -> bool:
        """Return whether the engine answers a ping right now."""

    def adapter_pull_image(self, image: str) -> None:
        """Pull one image reference.

        Raises:
            ContainerEngineError: Raised when the pull fails.
        """

    def adapter_build_image(self, context_path: Path, tag: str) -> str:
        """Build an image from a directory containing a Dockerfile.

        Returns:
            str: Built image id.

        Raises:
            ContainerEngineError: Raised when the build fails.
        """

    def adapter_run_container(
        self,
        image_tag: str,
        name: str,
        port: int,
        environment: Mapping[str, str],
        memory_mb: int,
        cpu_cores: float,
    ) -> str:
        """Start a detached container and return its id.

        Raises:
            ContainerEngineError: Raised when the engine rejects the container.
        """

    def adapter_container_state(self, container_id: str) -> ContainerState:
        """Return current container state.

        Raises:
            ContainerEngineError: Raised when the container cannot be inspected.
        """

    def adapter_container_logs(self, container_id: str, lines: int) -> list[str]:
        """Return the last log lines of a container."""

    def adapter_remove_container(self, container_id: str, stop_timeout_seconds: int) -> bool:
        """Stop and remove a container; return False when it no longer exists."""

    def adapter_update_container(self, container_id: str, memory_mb: int, cpu_cores: float) -> None:
        """Apply new memory and CPU caps to a running container."""

    def adapter_container_stats(self, container_id: str) -> ResourceUsage:
        """Return one stats sample of a running container.

        Raises:
            ContainerEngineError: Raised when stats cannot be read.
        """

    def adapter_remove_image(self, tag: str) -> bool:
        """Remove an image tag; return False when it no longer exists."""


class HostSystemPort(Protocol):
    """Port definition for host sockets, commands and processes."""

    def adapter_listening_ports(self) -> frozenset[int]:
        """Return ports currently bound by listening sockets on this host."""

    def adapter_command_available(self, command_name: str) -> bool:
        """Return whether an executable is resolvable on PATH."""

    def adapter_run_command(
        self,
        argv: Sequence[str],
        cwd: Path | None,
        timeout_seconds: float,
        environment: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command to completion.

        Raises:
            TimeoutError: Raised when the command exceeds its timeout.
        """

    def adapter_spawn_detached(
        self,
        argv: Sequence[str],
        cwd: Path,
        environment: Mapping[str, str],
        log_path: Path,
    ) -> SpawnedProcess:
        """Start a process in its own session with output appended to a log file.

        Raises:
            OSError: Raised when the process cannot be started.
        """

    def adapter_process_alive(self, process: SpawnedProcess) -> bool:
        """Return whether exactly this process (pid and creation time) is still alive."""

    def adapter_terminate_process(self, process: SpawnedProcess, grace_seconds: float) -> bool:
        """Terminate the process and its children; return False when already gone."""

    def adapter_process_usage(self, process: SpawnedProcess) -> ResourceUsage | None:
        """Return usage summed over the process tree, or None when the process is gone."""

    def adapter_port_accepting(self, port: int) -> bool:
        """Return whether a TCP connection to the local port succeeds."""
