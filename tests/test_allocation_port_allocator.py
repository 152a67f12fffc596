"""Tests for reserve-then-commit port allocation."""

from __future__ import annotations

import threading

import pytest

from deployer.allocation import PortAllocator
from deployer.domain import NoPortAvailableError


class _HeldPortsStub:
    """Held-port source stub returning a fixed set."""

    def __init__(self, ports: set[int] | None = None):
        """Initialize stub state.

        Args:
            ports: Ports reported as held by live instances.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.ports = set(ports or set())

    def instance_held_ports(self) -> set[int]:
        """Return configured held ports.

        Returns:
            set[int]: Held ports.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        return set(self.ports)


class _ListeningHostStub:
    """Host adapter stub reporting a fixed set of listening ports."""

    def __init__(self, listening: set[int] | None = None):
        """Initialize stub state.

        Args:
            listening: Ports reported as bound on the host.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.listening = frozenset(listening or set())

    def adapter_listening_ports(self) -> frozenset[int]:
        """Return configured listening ports.

        Returns:
            frozenset[int]: Listening ports.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        return self.listening


def test_allocation_returns_preferred_port_when_free() -> None:
    """Reserve the preferred port when nothing uses it.

    Returns:
        None: Assertions validate allocation.

    Raises:
        AssertionError: Raised when the allocated port is unexpected.
    """

    allocator = PortAllocator(held_ports=_HeldPortsStub(), host_system=_ListeningHostStub())

    port = allocator.port_allocate(3000)

    assert port == 3000
    assert allocator.port_reserved() == frozenset({3000})


def test_allocation_skips_reserved_held_and_listening_ports() -> None:
    """Skip ports excluded by reservations, live instances, and host sockets.

    Returns:
        None: Assertions validate exclusion sets.

    Raises:
        AssertionError: Raised when an excluded port is handed out.
    """

    allocator = PortAllocator(
        held_ports=_HeldPortsStub({8081}),
        host_system=_ListeningHostStub({8082}),
    )

    first = allocator.port_allocate(8080)
    second = allocator.port_allocate(8080)

    assert first == 8080
    assert second == 8083


def test_allocation_release_and_commit_drop_reservations() -> None:
    """Make released ports reusable and drop committed reservations.

    Returns:
        None: Assertions validate reservation bookkeeping.

    Raises:
        AssertionError: Raised when reservations are not dropped.
    """

    held_ports = _HeldPortsStub()
    allocator = PortAllocator(held_ports=held_ports, host_system=_ListeningHostStub())

    released_port = allocator.port_allocate(5000)
    allocator.port_release(released_port)
    committed_port = allocator.port_allocate(5000)
    allocator.port_commit(committed_port)
    held_ports.ports.add(committed_port)

    assert released_port == committed_port == 5000
    assert allocator.port_reserved() == frozenset()
    assert allocator.port_allocate(5000) == 5001


def test_allocation_never_exceeds_highest_port_number() -> None:
    """Stop probing at 65535 and fail when the tail of the range is taken.

    Returns:
        None: Assertions validate the upper bound.

    Raises:
        AssertionError: Raised when a port above 65535 is produced.
    """

    allocator = PortAllocator(
        held_ports=_HeldPortsStub(),
        host_system=_ListeningHostStub({65534}),
    )

    assert allocator.port_allocate(65534) == 65535
    with pytest.raises(NoPortAvailableError, match="65534-65535"):
        allocator.port_allocate(65534)


def test_allocation_raises_when_probe_window_is_exhausted() -> None:
    """Raise `NoPortAvailableError` after one hundred occupied candidates.

    Returns:
        None: Assertions validate exhaustion.

    Raises:
        AssertionError: Raised when exhaustion is not surfaced.
    """

    allocator = PortAllocator(
        held_ports=_HeldPortsStub(set(range(9000, 9100))),
        host_system=_ListeningHostStub(),
    )

    with pytest.raises(NoPortAvailableError, match="No available port in range 9000-9099"):
        allocator.port_allocate(9000)


@pytest.mark.parametrize("preferred_port", [0, 65536])
def test_allocation_rejects_out_of_range_preferred_port(preferred_port: int) -> None:
    """Reject preferred ports outside 1..65535.

    Args:
        preferred_port: Invalid preferred port.

    Returns:
        None: Assertions validate input validation.

    Raises:
        AssertionError: Raised when no error is raised.
    """

    allocator = PortAllocator(held_ports=_HeldPortsStub(), host_system=_ListeningHostStub())

    with pytest.raises(ValueError):
        allocator.port_allocate(preferred_port)


def test_allocation_concurrent_callers_receive_distinct_ports() -> None:
    """Hand distinct ports to concurrent callers with the same preference.

    Returns:
        None: Assertions validate uniqueness under concurrency.

    Raises:
        AssertionError: Raised when two callers share a port.
    """

    allocator = PortAllocator(held_ports=_HeldPortsStub(), host_system=_ListeningHostStub())
    barrier = threading.Barrier(8)
    results: list[int] = []
    results_lock = threading.Lock()

    def _allocate() -> None:
        barrier.wait()
        port = allocator.port_allocate(8080)
        with results_lock:
            results.append(port)

    threads = [threading.Thread(target=_allocate) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == list(range(8080, 8088))
