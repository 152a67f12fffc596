"""Typed interfaces for database-layer services.

All SQL access must remain in the db package and its submodules.
"""

from typing import Protocol

from deployer.domain import ApplicationInstance, HealthStatus


class DatabaseHealthPort(Protocol):
    """Port definition for database connectivity verification."""

    def db_connection_label(self) -> str:
        """Return a stable label for the active database connection target.

        Returns:
            str: Database target label for diagnostics.

        Raises:
            RuntimeError: Raised when connection metadata is unavailable.
        """

    def db_check_health(self) -> HealthStatus:
        """Check database connectivity and return deterministic health payload.

        Returns:
            HealthStatus: Database health status payload.

        Raises:
            ConnectionError: Raised when database cannot be reached.
        """


class ApplicationInstanceRepositoryPort(Protocol):
    """Port definition for durable application instance records."""

    def db_instance_upsert(self, instance: ApplicationInstance) -> None:
        """Insert or fully replace one instance record.

        Args:
            instance: Instance snapshot to persist.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

    def db_instance_delete(self, instance_id: str) -> bool:
        """Delete one instance record.

        Args:
            instance_id: Instance identifier.

        Returns:
            bool: False when no record existed.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

    def db_instance_list(self) -> list[ApplicationInstance]:
        """Return every persisted instance ordered by creation time.

        Returns:
            list[ApplicationInstance]: Persisted instances.

        Raises:
            RuntimeError: Raised when database read fails.
        """
