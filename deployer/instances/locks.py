"""Per-instance re-entrant locks."""

from __future__ import annotations

import threading


class InstanceLockRegistry:
    """Hand out one re-entrant lock per instance id.

    Locks are created on first use and kept until `lock_discard`, so every
    caller operating on the same id serializes on the same object.
    """

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, instance_id: str) -> threading.RLock:
        """Return the lock for an instance id, creating it if needed."""

        with self._guard:
            lock = self._locks.get(instance_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[instance_id] = lock
            return lock

    def lock_discard(self, instance_id: str) -> None:
        """Forget the lock of a deleted instance."""

        with self._guard:
            self._locks.pop(instance_id, None)
