"""Instance registry and per-instance locking package."""

from .locks import InstanceLockRegistry
from .registry import InstanceRegistry

__all__ = [
	"InstanceLockRegistry",
	"InstanceRegistry",
]
