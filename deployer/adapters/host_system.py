"""Host system adapter for socket inspection, commands and detached processes."""

from __future__ import annotations

import logging
import os
import shutil
import socket
import subprocess
import threading
import time
from pathlib import Path
from typing import Final, Mapping, Sequence

import psutil

from .interfaces import CommandResult, HostSystemPort, ResourceUsage, SpawnedProcess

logger = logging.getLogger(__name__)


class LocalHostSystemAdapter(HostSystemPort):
    """Host adapter backed by `subprocess` for execution and `psutil` for inspection.

    Detached processes are started in their own session so they outlive the
    call that launched them. The `Popen` objects are retained only to reap
    exit statuses; termination always goes through the recorded pid and
    creation time, never through a name or port match.
    """

    _CREATE_TIME_TOLERANCE_SECONDS: Final[float] = 0.01
    _CONNECT_TIMEOUT_SECONDS: Final[float] = 1.0

    def __init__(self, cpu_sample_seconds: float = 0.5):
        if cpu_sample_seconds <= 0:
            raise ValueError("cpu_sample_seconds must be > 0")
        self._cpu_sample_seconds = cpu_sample_seconds
        self._children: dict[int, subprocess.Popen] = {}
        self._children_lock = threading.Lock()

    def adapter_listening_ports(self) -> frozenset[int]:
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.AccessDenied:
            logger.warning("Host socket table is not readable; relying on instance and reservation checks only")
            return frozenset()
        return frozenset(
            connection.laddr.port
            for connection in connections
            if connection.laddr and connection.status == psutil.CONN_LISTEN
        )

    def adapter_command_available(self, command_name: str) -> bool:
        return shutil.which(command_name) is not None

    def adapter_run_command(
        self,
        argv: Sequence[str],
        cwd: Path | None,
        timeout_seconds: float,
        environment: Mapping[str, str] | None = None,
    ) -> CommandResult:
        logger.debug("Running host command %s in %s", list(argv), cwd)
        try:
            completed = subprocess.run(
                list(argv),
                cwd=str(cwd) if cwd is not None else None,
                env=self._adapter_merge_environment(environment),
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            raise TimeoutError(f"command {argv[0]} timed out after {timeout_seconds:.0f}s") from error
        except FileNotFoundError:
            return CommandResult(returncode=127, stdout="", stderr=f"{argv[0]}: executable not found")
        return CommandResult(returncode=completed.returncode, stdout=completed.stdout, stderr=completed.stderr)

    def adapter_spawn_detached(
        self,
        argv: Sequence[str],
        cwd: Path,
        environment: Mapping[str, str],
        log_path: Path,
    ) -> SpawnedProcess:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "ab") as log_handle:
            process = subprocess.Popen(  # pylint: disable=consider-using-with
                list(argv),
                cwd=str(cwd),
                env=self._adapter_merge_environment(environment),
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                close_fds=True,
            )
        with self._children_lock:
            self._children[process.pid] = process
        try:
            create_time = psutil.Process(process.pid).create_time()
        except psutil.NoSuchProcess:
            # exited before inspection; keep a sentinel so liveness checks report it dead
            create_time = 0.0
        logger.info("Spawned detached process pid=%s argv=%s", process.pid, list(argv))
        return SpawnedProcess(pid=process.pid, create_time=create_time)

    def adapter_process_alive(self, process: SpawnedProcess) -> bool:
        self._adapter_reap(process.pid)
        target = self._adapter_match_process(process)
        if target is None:
            return False
        try:
            return target.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def adapter_terminate_process(self, process: SpawnedProcess, grace_seconds: float) -> bool:
        target = self._adapter_match_process(process)
        if target is None:
            self._adapter_reap(process.pid)
            return False

        try:
            family = [target, *target.children(recursive=True)]
        except psutil.NoSuchProcess:
            self._adapter_reap(process.pid)
            return False

        for member in family:
            try:
                member.terminate()
            except psutil.NoSuchProcess:
                continue
        _, still_alive = psutil.wait_procs(family, timeout=grace_seconds)
        for member in still_alive:
            try:
                member.kill()
            except psutil.NoSuchProcess:
                continue
        psutil.wait_procs(still_alive, timeout=grace_seconds)
        self._adapter_reap(process.pid)
        logger.info("Terminated process pid=%s (%d processes in tree)", process.pid, len(family))
        return True

    def adapter_process_usage(self, process: SpawnedProcess) -> ResourceUsage | None:
        """Sample CPU, memory and disk IO of the recorded process tree.

        CPU is measured over one sampling interval. Per-process network
        counters do not exist on the host, so network figures stay None, as do
        IO figures where the platform does not expose them.

        Args:
            process: Recorded process identity.

        Returns:
            ResourceUsage | None: Summed usage, or None when the process is gone or recycled.
        """

        target = self._adapter_match_process(process)
        if target is None:
            return None
        try:
            family = [target, *target.children(recursive=True)]
            for member in family:
                member.cpu_percent(interval=None)
        except psutil.NoSuchProcess:
            return None
        time.sleep(self._cpu_sample_seconds)

        cpu_percent = 0.0
        memory_bytes = 0
        read_bytes: int | None = 0
        write_bytes: int | None = 0
        for member in family:
            try:
                with member.oneshot():
                    cpu_percent += member.cpu_percent(interval=None)
                    memory_bytes += member.memory_info().rss
                    io_counters = self._adapter_io_counters(member)
            except psutil.NoSuchProcess:
                if member is target:
                    return None
                continue
            if io_counters is None or read_bytes is None or write_bytes is None:
                read_bytes = write_bytes = None
            else:
                read_bytes += io_counters.read_bytes
                write_bytes += io_counters.write_bytes

        return ResourceUsage(
            cpu_percent=round(cpu_percent, 2),
            memory_bytes=memory_bytes,
            block_read_bytes=read_bytes,
            block_write_bytes=write_bytes,
        )

    def adapter_port_accepting(self, port: int) -> bool:
        try:
            with socket.create_connection(("127.0.0.1", port), timeout=self._CONNECT_TIMEOUT_SECONDS):
                return True
        except OSError:
            return False

    def _adapter_match_process(self, process: SpawnedProcess) -> psutil.Process | None:
        """Return the psutil handle only when pid and creation time both match.

        Args:
            process: Recorded process identity.

        Returns:
            psutil.Process | None: Live process handle or None when gone or recycled.
        """

        try:
            candidate = psutil.Process(process.pid)
            create_time = candidate.create_time()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None
        if abs(create_time - process.create_time) > self._CREATE_TIME_TOLERANCE_SECONDS:
            logger.warning("Pid %s was reused by another process; refusing to signal it", process.pid)
            return None
        return candidate

    def _adapter_reap(self, pid: int) -> None:
        with self._children_lock:
            child = self._children.get(pid)
            if child is not None and child.poll() is not None:
                self._children.pop(pid, None)

    def _adapter_merge_environment(self, environment: Mapping[str, str] | None) -> dict[str, str]:
        merged = dict(os.environ)
        if environment:
            merged.update(environment)
        return merged

    def _adapter_io_counters(self, member: psutil.Process):
        # not provided on macOS
        io_counters = getattr(member, "io_counters", None)
        if io_counters is None:
            return None
        try:
            return io_counters()
        except psutil.AccessDenied:
            return None
