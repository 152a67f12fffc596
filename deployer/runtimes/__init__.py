"""Runtime catalog and registry package."""

from .catalog import ENTRY_FILENAMES, RUNTIME_CATALOG
from .registry import INSTALL_TIMEOUT_SECONDS, RuntimeRegistry

__all__ = [
	"ENTRY_FILENAMES",
	"INSTALL_TIMEOUT_SECONDS",
	"RUNTIME_CATALOG",
	"RuntimeRegistry",
]
