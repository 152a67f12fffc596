"""Workspace log file helpers shared by backends."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable


def backend_read_log_tail(log_path: Path, lines: int) -> list[str]:
    """Return the last non-blank lines of a log file, or [] when it does not exist."""

    if lines < 1 or not log_path.exists():
        return []
    tail: deque[str] = deque(maxlen=lines)
    with open(log_path, encoding="utf-8", errors="replace") as log_handle:
        for line in log_handle:
            stripped_line = line.rstrip("\n")
            if stripped_line.strip():
                tail.append(stripped_line)
    return list(tail)


def backend_append_log_lines(log_path: Path, header: str, lines: Iterable[str]) -> None:
    """Append a timestamped section to a log file.

    Args:
        log_path: Target log file; parent directories are created.
        header: Section title.
        lines: Lines to append.

    Raises:
        OSError: Raised when the file cannot be written.
    """

    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "a", encoding="utf-8") as log_handle:
        log_handle.write(f"--- {header} at {datetime.now(timezone.utc).isoformat()} ---\n")
        for line in lines:
            log_handle.write(f"{line}\n")
