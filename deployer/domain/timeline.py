"""Provisioning timeline event helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def domain_build_stage_event(
    stage: str,
    status: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build one structured provisioning timeline event.

    Args:
        stage: Pipeline stage name (`resolve`, `install`, `allocate`, ...).
        status: Stage status marker (`started`, `completed`, `failed`).
        details: Optional JSON-serializable details.

    Returns:
        dict[str, Any]: Timeline event stamped with the current UTC time.
    """

    event_payload: dict[str, Any] = {
        "stage": stage,
        "status": status,
        "at_utc": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        event_payload["details"] = details
    return event_payload


def domain_build_failure_event(stage: str, error: Exception) -> dict[str, Any]:
    """Build a `failed` timeline event carrying the error type, code and message."""

    return domain_build_stage_event(
        stage=stage,
        status="failed",
        details={
            "error_type": type(error).__name__,
            "error_code": getattr(error, "error_code", None),
            "error_message": str(error),
        },
    )
