"""Tests for the local host system adapter against real processes and sockets."""

from __future__ import annotations

import shutil
import socket
from pathlib import Path

import pytest

from deployer.adapters import LocalHostSystemAdapter, SpawnedProcess

pytestmark = pytest.mark.skipif(shutil.which("sh") is None, reason="POSIX shell is required")


def test_adapters_run_command_captures_output_and_exit_code(tmp_path: Path) -> None:
    """Capture stdout, stderr and exit code with the environment merged.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate command results.

    Raises:
        AssertionError: Raised when results differ.
    """

    adapter = LocalHostSystemAdapter()

    result = adapter.adapter_run_command(
        ["sh", "-c", 'echo "$GREETING"; echo oops >&2; exit 3'],
        cwd=tmp_path,
        timeout_seconds=10,
        environment={"GREETING": "hello"},
    )

    assert result.returncode == 3
    assert result.stdout.strip() == "hello"
    assert result.command_output_tail() == "oops"


def test_adapters_run_command_maps_missing_executable_and_timeout(tmp_path: Path) -> None:
    """Return exit code 127 for missing executables and raise on timeout.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate error mapping.

    Raises:
        AssertionError: Raised when mapping differs.
    """

    adapter = LocalHostSystemAdapter()

    missing = adapter.adapter_run_command(["definitely-not-installed-xyz"], cwd=tmp_path, timeout_seconds=5)

    assert missing.returncode == 127
    with pytest.raises(TimeoutError):
        adapter.adapter_run_command(["sh", "-c", "sleep 5"], cwd=tmp_path, timeout_seconds=0.2)


def test_adapters_spawned_process_is_tracked_and_terminated(tmp_path: Path) -> None:
    """Spawn a detached process, observe it alive, then terminate it.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate process lifecycle.

    Raises:
        AssertionError: Raised when liveness or termination differs.
    """

    adapter = LocalHostSystemAdapter()
    log_path = tmp_path / "logs" / "app.log"

    process = adapter.adapter_spawn_detached(
        ["sh", "-c", 'echo "started on $PORT"; exec sleep 30'],
        cwd=tmp_path,
        environment={"PORT": "9999"},
        log_path=log_path,
    )

    assert adapter.adapter_process_alive(process) is True
    assert adapter.adapter_terminate_process(process, grace_seconds=5) is True
    assert adapter.adapter_process_alive(process) is False
    assert adapter.adapter_terminate_process(process, grace_seconds=1) is False
    assert "started on 9999" in log_path.read_text(encoding="utf-8")


def test_adapters_refuses_to_signal_reused_pid(tmp_path: Path) -> None:
    """Treat a pid whose creation time differs as a different process.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate pid-reuse protection.

    Raises:
        AssertionError: Raised when a mismatched process is signalled.
    """

    adapter = LocalHostSystemAdapter()
    process = adapter.adapter_spawn_detached(
        ["sleep", "30"],
        cwd=tmp_path,
        environment={},
        log_path=tmp_path / "app.log",
    )
    impostor = SpawnedProcess(pid=process.pid, create_time=process.create_time - 1000.0)

    try:
        assert adapter.adapter_process_alive(impostor) is False
        assert adapter.adapter_terminate_process(impostor, grace_seconds=1) is False
        assert adapter.adapter_process_alive(process) is True
    finally:
        adapter.adapter_terminate_process(process, grace_seconds=5)


def test_adapters_port_accepting_reflects_listening_socket() -> None:
    """Report a port as accepting only while a socket listens on it.

    Returns:
        None: Assertions validate port probing.

    Raises:
        AssertionError: Raised when probe results differ.
    """

    adapter = LocalHostSystemAdapter()
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]

    try:
        assert adapter.adapter_port_accepting(port) is True
    finally:
        listener.close()
    assert adapter.adapter_port_accepting(port) is False


def test_adapters_process_usage_samples_live_process_only(tmp_path: Path) -> None:
    """Sample usage of a live process and return None once it is gone or recycled.

    Args:
        tmp_path: Pytest temporary directory.

    Returns:
        None: Assertions validate process usage sampling.

    Raises:
        AssertionError: Raised when usage is reported for a dead or foreign process.
    """

    adapter = LocalHostSystemAdapter(cpu_sample_seconds=0.05)
    process = adapter.adapter_spawn_detached(
        ["sleep", "30"],
        cwd=tmp_path,
        environment={},
        log_path=tmp_path / "app.log",
    )

    try:
        usage = adapter.adapter_process_usage(process)
        impostor_usage = adapter.adapter_process_usage(
            SpawnedProcess(pid=process.pid, create_time=process.create_time - 1000.0)
        )
    finally:
        adapter.adapter_terminate_process(process, grace_seconds=5)

    assert usage is not None
    assert usage.memory_bytes > 0
    assert usage.cpu_percent >= 0.0
    assert usage.memory_limit_bytes is None
    assert usage.network_rx_bytes is None
    assert impostor_usage is None
    assert adapter.adapter_process_usage(process) is None
