"""Instance store health checks over the SQLAlchemy engine."""

from typing import Final

from sqlalchemy import Engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from deployer.domain import HealthStatus

from .interfaces import DatabaseHealthPort

_INSTANCE_TABLE: Final[str] = "application_instance"
_STATUS_COUNTS_SQL = text(f"SELECT status, COUNT(*) FROM {_INSTANCE_TABLE} GROUP BY status ORDER BY status")


class SQLAlchemyDatabaseHealthService(DatabaseHealthPort):
    """Check that the instance store is reachable and migrated.

    A reachable database without the instance table counts as unhealthy:
    the registry cannot persist instances until migrations have run.
    """

    def __init__(self, engine: Engine):
        """Initialize database health service.

        Args:
            engine: SQLAlchemy engine of the instance store.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_connection_label(self) -> str:
        """Return the target database URL with the password masked."""

        return self._engine.url.render_as_string(hide_password=True)

    def db_check_health(self) -> HealthStatus:
        """Verify the instance table and summarize stored instances by status.

        Returns:
            HealthStatus: `ok` with a per-status instance count in `detail`.

        Raises:
            ConnectionError: Raised when the database is unreachable or not migrated.
        """

        try:
            with self._engine.connect() as connection:
                if not inspect(connection).has_table(_INSTANCE_TABLE):
                    raise ConnectionError(f"instance store is not migrated: table {_INSTANCE_TABLE} missing")
                status_counts = [(str(row[0]), int(row[1])) for row in connection.execute(_STATUS_COUNTS_SQL)]
        except SQLAlchemyError as error:
            raise ConnectionError("database connectivity check failed") from error

        total = sum(count for _, count in status_counts)
        if not status_counts:
            return HealthStatus(status="ok", detail="instance store reachable; 0 instances")
        breakdown = ", ".join(f"{count} {status_name}" for status_name, count in status_counts)
        return HealthStatus(status="ok", detail=f"instance store reachable; {total} instances ({breakdown})")
