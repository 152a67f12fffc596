"""Execution backend package."""

from .container import ContainerBackend, backend_render_dockerfile
from .interfaces import BackendStrategyPort
from .log_files import backend_append_log_lines, backend_read_log_tail
from .native import NativeBackend, backend_build_steps, backend_launch_command

__all__ = [
	"BackendStrategyPort",
	"ContainerBackend",
	"NativeBackend",
	"backend_append_log_lines",
	"backend_build_steps",
	"backend_launch_command",
	"backend_read_log_tail",
	"backend_render_dockerfile",
]
