"""Instance workspace package."""

from .manager import (
    ENV_FILENAME,
    LOG_FILENAME,
    WorkspaceManager,
    workspace_normalize_relative_path,
    workspace_render_env_file,
)

__all__ = [
	"ENV_FILENAME",
	"LOG_FILENAME",
	"WorkspaceManager",
	"workspace_normalize_relative_path",
	"workspace_render_env_file",
]
