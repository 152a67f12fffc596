"""Reserve-then-commit host port allocation."""

from __future__ import annotations

import logging
import threading
from typing import Final, Protocol

from deployer.adapters import HostSystemPort
from deployer.domain import NoPortAvailableError

logger = logging.getLogger(__name__)

PORT_PROBE_MAX_ATTEMPTS: Final[int] = 100
MAX_PORT_NUMBER: Final[int] = 65535


class HeldPortSourcePort(Protocol):
    """Source of ports already owned by live instances."""

    def instance_held_ports(self) -> set[int]:
        """Return ports held by instances in `building`, `running` or `stopping`."""


class PortAllocator:
    """Pick free host ports without handing the same port to two callers.

    A chosen port enters the reserved set before `port_allocate` returns and
    stays there until the caller commits (the instance record now holds it)
    or releases (deployment failed before recording).
    """

    def __init__(self, held_ports: HeldPortSourcePort, host_system: HostSystemPort):
        """Initialize allocator dependencies.

        Args:
            held_ports: Registry exposing ports held by live instances.
            host_system: Host adapter exposing listening sockets.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are missing.
        """

        if held_ports is None:
            raise ValueError("held_ports must not be None")
        if host_system is None:
            raise ValueError("host_system must not be None")

        self._held_ports = held_ports
        self._host_system = host_system
        self._reserved: set[int] = set()
        self._lock = threading.Lock()

    def port_allocate(self, preferred_port: int) -> int:
        """Reserve the first free port at or after `preferred_port`.

        Args:
            preferred_port: First candidate, normally the runtime default port.

        Returns:
            int: Reserved port.

        Raises:
            ValueError: Raised when the preferred port is outside 1..65535.
            NoPortAvailableError: Raised when no candidate within the probe window is free.
        """

        if preferred_port < 1 or preferred_port > MAX_PORT_NUMBER:
            raise ValueError(f"preferred_port must be between 1 and {MAX_PORT_NUMBER}")

        last_candidate = min(preferred_port + PORT_PROBE_MAX_ATTEMPTS - 1, MAX_PORT_NUMBER)
        with self._lock:
            unavailable = self._reserved | self._held_ports.instance_held_ports()
            unavailable |= self._host_system.adapter_listening_ports()
            for candidate in range(preferred_port, last_candidate + 1):
                if candidate not in unavailable:
                    self._reserved.add(candidate)
                    logger.debug("Reserved port %s", candidate)
                    return candidate

        raise NoPortAvailableError(f"No available port in range {preferred_port}-{last_candidate}")

    def port_commit(self, port: int) -> None:
        """Drop the reservation once the instance record owns the port."""

        with self._lock:
            self._reserved.discard(port)

    def port_release(self, port: int) -> None:
        """Drop the reservation of a port whose deployment failed before recording."""

        with self._lock:
            if port in self._reserved:
                self._reserved.discard(port)
                logger.debug("Released port %s", port)

    def port_reserved(self) -> frozenset[int]:
        """Return a snapshot of currently reserved ports."""

        with self._lock:
            return frozenset(self._reserved)
