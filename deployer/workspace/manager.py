"""Per-instance workspace directories holding source, env file and logs."""

from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path, PurePosixPath
from typing import Final, Mapping

from deployer.domain import WorkspaceError
from deployer.runtimes import ENTRY_FILENAMES

logger = logging.getLogger(__name__)

ENV_FILENAME: Final[str] = ".env"
LOG_DIRECTORY: Final[str] = "logs"
LOG_FILENAME: Final[str] = "app.log"
METADATA_DIRECTORY: Final[str] = ".deployer"
SOURCE_INDEX_FILENAME: Final[str] = "source-files.json"

_ENV_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_INSTANCE_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]+$")
_RESERVED_TOP_LEVEL: Final[frozenset[str]] = frozenset({ENV_FILENAME, LOG_DIRECTORY, METADATA_DIRECTORY})


def workspace_render_env_file(environment: Mapping[str, str]) -> str:
    """Serialize environment variables as `KEY=value` lines.

    Args:
        environment: Variables to serialize.

    Returns:
        str: File content, newline terminated when non-empty.

    Raises:
        WorkspaceError: Raised when a key is not a valid identifier or a value spans lines.
    """

    lines: list[str] = []
    for key, value in environment.items():
        if not _ENV_KEY_PATTERN.match(str(key)):
            raise WorkspaceError(f"invalid environment variable name {key!r}")
        text_value = str(value)
        if "\n" in text_value or "\r" in text_value:
            raise WorkspaceError(f"environment variable {key} must not contain newlines")
        lines.append(f"{key}={text_value}")
    return "\n".join(lines) + ("\n" if lines else "")


def workspace_normalize_relative_path(raw_path: str) -> str:
    """Normalize a payload path and reject anything escaping the workspace.

    Args:
        raw_path: Workspace-relative path from a multi-file payload.

    Returns:
        str: Normalized POSIX relative path.

    Raises:
        WorkspaceError: Raised for empty, absolute, parent-traversing or reserved paths.
    """

    candidate = str(raw_path or "").strip().replace("\\", "/")
    if not candidate:
        raise WorkspaceError("source file path must not be blank")
    pure_path = PurePosixPath(candidate)
    if pure_path.is_absolute() or ".." in pure_path.parts:
        raise WorkspaceError(f"source file path {raw_path!r} escapes the workspace")
    parts = [part for part in pure_path.parts if part not in ("", ".")]
    if not parts:
        raise WorkspaceError(f"source file path {raw_path!r} is not a file")
    if parts[0] in _RESERVED_TOP_LEVEL:
        raise WorkspaceError(f"source file path {raw_path!r} is reserved")
    return "/".join(parts)


class WorkspaceManager:
    """Create, rewrite, read and delete instance workspaces under one root."""

    def __init__(self, root_path: Path | str):
        """Initialize the manager.

        Args:
            root_path: Directory under which `<instance_id>` workspaces live.

        Raises:
            ValueError: Raised when root path is blank.
        """

        if not str(root_path).strip():
            raise ValueError("root_path must not be blank")
        self._root_path = Path(root_path)

    def workspace_path(self, instance_id: str) -> Path:
        """Return the workspace directory for an instance id.

        Raises:
            WorkspaceError: Raised when the id could address a path outside the root.
        """

        if not _INSTANCE_ID_PATTERN.match(instance_id or ""):
            raise WorkspaceError(f"invalid instance id {instance_id!r}")
        return self._root_path / instance_id

    def workspace_log_path(self, instance_id: str) -> Path:
        """Return the application log file path for an instance."""

        return self.workspace_path(instance_id) / LOG_DIRECTORY / LOG_FILENAME

    def workspace_materialize(
        self,
        instance_id: str,
        language: str,
        source_payload: str | Mapping[str, str],
        environment: Mapping[str, str],
    ) -> Path:
        """Write source files and the env file into the instance workspace.

        Re-materializing removes the previously written source files before
        writing the new set. The log directory is left untouched.

        Args:
            instance_id: Owning instance id.
            language: Runtime language, used to place single-file payloads.
            source_payload: Entry-point source text or mapping of relative path to content.
            environment: Variables written to `.env`.

        Returns:
            Path: Workspace directory.

        Raises:
            WorkspaceError: Raised for invalid payloads, invalid environment, or I/O failures.
        """

        workspace = self.workspace_path(instance_id)
        files = self._workspace_normalize_payload(language, source_payload)
        env_content = workspace_render_env_file(environment)

        try:
            workspace.mkdir(parents=True, exist_ok=True)
            self._workspace_remove_indexed_files(workspace)
            for relative_path, content in files.items():
                target_path = workspace / relative_path
                target_path.parent.mkdir(parents=True, exist_ok=True)
                target_path.write_text(content, encoding="utf-8")
            (workspace / ENV_FILENAME).write_text(env_content, encoding="utf-8")
            (workspace / LOG_DIRECTORY).mkdir(exist_ok=True)
            metadata_directory = workspace / METADATA_DIRECTORY
            metadata_directory.mkdir(exist_ok=True)
            (metadata_directory / SOURCE_INDEX_FILENAME).write_text(
                json.dumps(sorted(files), indent=2),
                encoding="utf-8",
            )
        except OSError as error:
            raise WorkspaceError(f"failed to materialize workspace {workspace}: {error}") from error

        logger.info("Materialized workspace %s with %d source files", workspace, len(files))
        return workspace

    def workspace_read_source(self, instance_id: str) -> dict[str, str]:
        """Read back the source files recorded for an instance.

        Returns:
            dict[str, str]: Mapping of relative path to file content.

        Raises:
            WorkspaceError: Raised when the index or a recorded file is missing or unreadable.
        """

        workspace = self.workspace_path(instance_id)
        relative_paths = self._workspace_read_index(workspace)
        if relative_paths is None:
            raise WorkspaceError(f"workspace {workspace} has no source index")
        try:
            return {
                relative_path: (workspace / relative_path).read_text(encoding="utf-8")
                for relative_path in relative_paths
            }
        except OSError as error:
            raise WorkspaceError(f"failed to read workspace source {workspace}: {error}") from error

    def workspace_delete(self, instance_id: str) -> bool:
        """Remove an instance workspace.

        Returns:
            bool: False when the workspace did not exist.

        Raises:
            WorkspaceError: Raised when removal fails.
        """

        workspace = self.workspace_path(instance_id)
        if not workspace.exists():
            return False
        try:
            shutil.rmtree(workspace)
        except OSError as error:
            raise WorkspaceError(f"failed to delete workspace {workspace}: {error}") from error
        logger.info("Deleted workspace %s", workspace)
        return True

    def _workspace_normalize_payload(
        self,
        language: str,
        source_payload: str | Mapping[str, str],
    ) -> dict[str, str]:
        if isinstance(source_payload, str):
            entry_filename = ENTRY_FILENAMES.get(language)
            if entry_filename is None:
                raise WorkspaceError(f"no entry point known for language {language}")
            return {entry_filename: source_payload}

        if not isinstance(source_payload, Mapping) or not source_payload:
            raise WorkspaceError("source payload must be text or a non-empty mapping of files")

        files: dict[str, str] = {}
        for raw_path, content in source_payload.items():
            if not isinstance(content, str):
                raise WorkspaceError(f"content of {raw_path!r} must be text")
            relative_path = workspace_normalize_relative_path(raw_path)
            if relative_path in files:
                raise WorkspaceError(f"duplicate source file path {relative_path!r}")
            files[relative_path] = content
        return files

    def _workspace_read_index(self, workspace: Path) -> list[str] | None:
        index_path = workspace / METADATA_DIRECTORY / SOURCE_INDEX_FILENAME
        if not index_path.exists():
            return None
        try:
            payload = json.loads(index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as error:
            raise WorkspaceError(f"source index {index_path} is unreadable: {error}") from error
        if not isinstance(payload, list):
            raise WorkspaceError(f"source index {index_path} is malformed")
        return [workspace_normalize_relative_path(str(item)) for item in payload]

    def _workspace_remove_indexed_files(self, workspace: Path) -> None:
        for relative_path in self._workspace_read_index(workspace) or []:
            (workspace / relative_path).unlink(missing_ok=True)
