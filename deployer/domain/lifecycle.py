"""Instance status state machine and resource limit validation."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Final

from .errors import InvalidStateTransitionError
from .models import (
    INSTANCE_STATUS_BUILDING,
    INSTANCE_STATUS_ERROR,
    INSTANCE_STATUS_RUNNING,
    INSTANCE_STATUS_STOPPED,
    INSTANCE_STATUS_STOPPING,
    ApplicationInstance,
    ResourceLimits,
)

_ALLOWED_TRANSITIONS: Final[dict[str, frozenset[str]]] = {
    INSTANCE_STATUS_BUILDING: frozenset({INSTANCE_STATUS_RUNNING, INSTANCE_STATUS_ERROR}),
    INSTANCE_STATUS_RUNNING: frozenset({INSTANCE_STATUS_STOPPING, INSTANCE_STATUS_ERROR}),
    INSTANCE_STATUS_STOPPING: frozenset({INSTANCE_STATUS_STOPPED, INSTANCE_STATUS_STOPPING, INSTANCE_STATUS_ERROR}),
    INSTANCE_STATUS_STOPPED: frozenset({INSTANCE_STATUS_BUILDING, INSTANCE_STATUS_ERROR}),
    INSTANCE_STATUS_ERROR: frozenset({INSTANCE_STATUS_BUILDING, INSTANCE_STATUS_ERROR}),
}

_HANDLE_STATUSES: Final[frozenset[str]] = frozenset({INSTANCE_STATUS_RUNNING, INSTANCE_STATUS_STOPPING})


def domain_instance_transition(
    instance: ApplicationInstance,
    status: str,
    **changes: Any,
) -> ApplicationInstance:
    """Return a copy of the instance moved to a new status.

    The handle invariant is enforced here: entering `running` or `stopping`
    requires a handle, and every other status clears it.

    Args:
        instance: Current instance snapshot.
        status: Target status.
        **changes: Additional field overrides applied with the transition.

    Returns:
        ApplicationInstance: Updated snapshot with refreshed `updated_at_utc`.

    Raises:
        InvalidStateTransitionError: Raised when the transition is not allowed or
            the handle invariant would be violated.
    """

    allowed_targets = _ALLOWED_TRANSITIONS.get(instance.status, frozenset())
    if status not in allowed_targets:
        raise InvalidStateTransitionError(
            f"instance {instance.instance_id} cannot move from {instance.status} to {status}"
        )

    if status in _HANDLE_STATUSES:
        handle = changes.get("handle", instance.handle)
        if handle is None or handle.reference is None:
            raise InvalidStateTransitionError(f"instance {instance.instance_id} requires a backend handle in {status}")
        changes["handle"] = handle
    else:
        changes["handle"] = None

    return replace(
        instance,
        status=status,
        updated_at_utc=datetime.now(timezone.utc),
        **changes,
    )


def domain_validate_limits(
    limits: ResourceLimits,
    max_memory_mb: int,
    max_cpu_cores: float,
    max_disk_mb: int,
) -> ResourceLimits:
    """Validate requested resource caps against configured maxima.

    Args:
        limits: Requested caps.
        max_memory_mb: Memory ceiling.
        max_cpu_cores: CPU ceiling.
        max_disk_mb: Disk ceiling.

    Returns:
        ResourceLimits: The validated limits.

    Raises:
        ValueError: Raised when any cap is non-positive or above its ceiling.
    """

    if limits.memory_mb < 1 or limits.memory_mb > max_memory_mb:
        raise ValueError(f"memory_mb must be between 1 and {max_memory_mb}")
    if limits.cpu_cores <= 0 or limits.cpu_cores > max_cpu_cores:
        raise ValueError(f"cpu_cores must be greater than 0 and at most {max_cpu_cores}")
    if limits.disk_mb < 1 or limits.disk_mb > max_disk_mb:
        raise ValueError(f"disk_mb must be between 1 and {max_disk_mb}")
    return limits
