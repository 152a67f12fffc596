"""Authoritative in-memory instance map with ordered write-through persistence."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from deployer.db import ApplicationInstanceRepositoryPort
from deployer.domain import (
    INSTANCE_STATUS_BUILDING,
    INSTANCE_STATUS_ERROR,
    PORT_HOLDING_STATUSES,
    ApplicationInstance,
    domain_instance_transition,
)

logger = logging.getLogger(__name__)


class InstanceRegistry:
    """Thread-safe instance map that mirrors every change to the repository.

    The map is the source of truth for readers. Writes are applied to the map
    immediately and queued on a single worker so the repository sees them in
    submission order. Callers that need durability wait on the returned future.
    """

    def __init__(self, repository: ApplicationInstanceRepositoryPort):
        """Initialize the registry.

        Args:
            repository: Durable instance repository.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when repository is None.
        """

        if repository is None:
            raise ValueError("repository must not be None")

        self._repository = repository
        self._instances: dict[str, ApplicationInstance] = {}
        self._lock = threading.Lock()
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="instance-writer")

    def instance_put(self, instance: ApplicationInstance) -> Future:
        """Store an instance snapshot and queue its durable write.

        Args:
            instance: Snapshot replacing any previous value for its id.

        Returns:
            Future: Completes when the repository write finishes; raises its error.
        """

        with self._lock:
            self._instances[instance.instance_id] = instance
            write_future = self._writer.submit(self._repository.db_instance_upsert, instance)
        write_future.add_done_callback(self._instance_log_write_failure(f"upsert {instance.instance_id}"))
        return write_future

    def instance_get(self, instance_id: str) -> ApplicationInstance | None:
        """Return the current snapshot for an id, or None."""

        with self._lock:
            return self._instances.get(instance_id)

    def instance_list(self) -> list[ApplicationInstance]:
        """Return all instances ordered by creation time."""

        with self._lock:
            instances = list(self._instances.values())
        return sorted(instances, key=lambda item: (item.created_at_utc, item.instance_id))

    def instance_list_by_owner(self, domain_id: str) -> list[ApplicationInstance]:
        """Return instances owned by one domain, ordered by creation time."""

        return [instance for instance in self.instance_list() if instance.domain_id == domain_id]

    def instance_remove(self, instance_id: str) -> Future:
        """Drop an instance from the map and queue deletion of its record.

        Returns:
            Future: Resolves to the repository delete result.
        """

        with self._lock:
            self._instances.pop(instance_id, None)
            delete_future = self._writer.submit(self._repository.db_instance_delete, instance_id)
        delete_future.add_done_callback(self._instance_log_write_failure(f"delete {instance_id}"))
        return delete_future

    def instance_held_ports(self) -> set[int]:
        """Return ports owned by instances in `building`, `running` or `stopping`."""

        with self._lock:
            return {
                instance.port for instance in self._instances.values() if instance.status in PORT_HOLDING_STATUSES
            }

    def instance_load(self) -> int:
        """Restore persisted instances into the map.

        Instances recorded as `building` cannot resume provisioning after a
        restart and are moved to `error`.

        Returns:
            int: Number of instances loaded.

        Raises:
            RuntimeError: Raised when the repository read fails.
        """

        persisted = self._repository.db_instance_list()
        for instance in persisted:
            if instance.status == INSTANCE_STATUS_BUILDING:
                logger.warning("Instance %s was interrupted while building; marking error", instance.instance_id)
                instance = domain_instance_transition(
                    instance,
                    INSTANCE_STATUS_ERROR,
                    last_error="provisioning interrupted by service restart",
                )
                self.instance_put(instance)
            else:
                with self._lock:
                    self._instances[instance.instance_id] = instance
        logger.info("Loaded %d persisted instances", len(persisted))
        return len(persisted)

    def instance_shutdown(self) -> None:
        """Wait for queued writes to finish and stop the writer thread."""

        self._writer.shutdown(wait=True)

    def _instance_log_write_failure(self, description: str):
        def _log_failure(future: Future) -> None:
            error = future.exception()
            if error is not None:
                logger.error("Instance write %s failed: %s", description, error)

        return _log_failure
