"""Port allocation package."""

from .port_allocator import MAX_PORT_NUMBER, PORT_PROBE_MAX_ATTEMPTS, HeldPortSourcePort, PortAllocator

__all__ = [
	"HeldPortSourcePort",
	"MAX_PORT_NUMBER",
	"PORT_PROBE_MAX_ATTEMPTS",
	"PortAllocator",
]
