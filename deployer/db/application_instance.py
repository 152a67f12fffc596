"""Database service for application instance records."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Final, Mapping

from sqlalchemy import DateTime, Engine, bindparam, text
from sqlalchemy.exc import SQLAlchemyError

from deployer.domain import ApplicationInstance, BackendHandle, ResourceLimits

from .interfaces import ApplicationInstanceRepositoryPort

_INSTANCE_COLUMNS: Final[tuple[str, ...]] = (
    "instance_id",
    "domain_id",
    "language",
    "version",
    "port",
    "status",
    "memory_limit_mb",
    "cpu_limit",
    "disk_limit_mb",
    "environment_json",
    "backend_kind",
    "workspace_path",
    "handle_json",
    "last_error",
    "diagnostics_json",
    "created_at_utc",
    "updated_at_utc",
)

_UPSERT_SQL: Final[str] = (
    f"INSERT INTO application_instance ({', '.join(_INSTANCE_COLUMNS)}) "
    f"VALUES ({', '.join(':' + column for column in _INSTANCE_COLUMNS)}) "
    "ON CONFLICT (instance_id) DO UPDATE SET "
    + ", ".join(f"{column} = excluded.{column}" for column in _INSTANCE_COLUMNS if column != "instance_id")
)

_SELECT_SQL: Final[str] = (
    f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM application_instance ORDER BY created_at_utc, instance_id"
)

# typed timestamps so SQLite stores and returns them consistently with PostgreSQL
_UPSERT_STATEMENT = text(_UPSERT_SQL).bindparams(
    bindparam("created_at_utc", type_=DateTime(timezone=True)),
    bindparam("updated_at_utc", type_=DateTime(timezone=True)),
)
_SELECT_STATEMENT = text(_SELECT_SQL).columns(
    created_at_utc=DateTime(timezone=True),
    updated_at_utc=DateTime(timezone=True),
)


class SQLAlchemyApplicationInstanceService(ApplicationInstanceRepositoryPort):
    """SQLAlchemy-backed application instance repository.

    Queries are plain SQL that runs unchanged on PostgreSQL and SQLite. JSON
    columns are stored as text and decoded here.
    """

    def __init__(self, engine: Engine):
        """Initialize instance persistence service.

        Args:
            engine: SQLAlchemy engine used for all persistence operations.

        Returns:
            None: This initializer does not return a value.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_instance_upsert(self, instance: ApplicationInstance) -> None:
        """Insert or fully replace one instance record.

        Args:
            instance: Instance snapshot to persist.

        Returns:
            None: Record is written as side effect.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

        try:
            with self._engine.begin() as connection:
                connection.execute(_UPSERT_STATEMENT, db_instance_to_row(instance))
        except SQLAlchemyError as error:
            raise RuntimeError(f"failed to persist application instance {instance.instance_id}") from error

    def db_instance_delete(self, instance_id: str) -> bool:
        """Delete one instance record.

        Args:
            instance_id: Instance identifier.

        Returns:
            bool: False when no record existed.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

        try:
            with self._engine.begin() as connection:
                deleted = connection.execute(
                    text("DELETE FROM application_instance WHERE instance_id = :instance_id"),
                    {"instance_id": instance_id},
                )
                return deleted.rowcount > 0
        except SQLAlchemyError as error:
            raise RuntimeError(f"failed to delete application instance {instance_id}") from error

    def db_instance_list(self) -> list[ApplicationInstance]:
        """Return every persisted instance ordered by creation time.

        Returns:
            list[ApplicationInstance]: Persisted instances.

        Raises:
            RuntimeError: Raised when database read fails.
        """

        try:
            with self._engine.connect() as connection:
                rows = connection.execute(_SELECT_STATEMENT).mappings().all()
        except SQLAlchemyError as error:
            raise RuntimeError("failed to list application instances") from error
        return [db_instance_from_row(row) for row in rows]


def db_instance_to_row(instance: ApplicationInstance) -> dict[str, Any]:
    """Map an instance snapshot to bind parameters for `application_instance`."""

    handle_payload = None
    if instance.handle is not None:
        handle_payload = json.dumps(
            {
                "backend_kind": instance.handle.backend_kind,
                "reference": instance.handle.reference,
                "image_tag": instance.handle.image_tag,
                "process_create_time": instance.handle.process_create_time,
                "command": list(instance.handle.command),
            }
        )

    return {
        "instance_id": instance.instance_id,
        "domain_id": instance.domain_id,
        "language": instance.language,
        "version": instance.version,
        "port": instance.port,
        "status": instance.status,
        "memory_limit_mb": instance.limits.memory_mb,
        "cpu_limit": instance.limits.cpu_cores,
        "disk_limit_mb": instance.limits.disk_mb,
        "environment_json": json.dumps(dict(instance.environment), sort_keys=True),
        "backend_kind": instance.backend_kind,
        "workspace_path": instance.workspace_path,
        "handle_json": handle_payload,
        "last_error": instance.last_error,
        "diagnostics_json": json.dumps(list(instance.diagnostics)) if instance.diagnostics else None,
        "created_at_utc": instance.created_at_utc,
        "updated_at_utc": instance.updated_at_utc,
    }


def db_instance_from_row(row: Mapping[str, Any]) -> ApplicationInstance:
    """Map one `application_instance` row back to a domain snapshot.

    Args:
        row: Row mapping with all instance columns.

    Returns:
        ApplicationInstance: Decoded instance.

    Raises:
        ValueError: Raised when a JSON or timestamp column is malformed.
    """

    handle = None
    if row["handle_json"]:
        handle_payload = json.loads(row["handle_json"])
        handle = BackendHandle(
            backend_kind=str(handle_payload["backend_kind"]),
            reference=handle_payload.get("reference"),
            image_tag=handle_payload.get("image_tag"),
            process_create_time=handle_payload.get("process_create_time"),
            command=tuple(handle_payload.get("command") or ()),
        )

    return ApplicationInstance(
        instance_id=str(row["instance_id"]),
        domain_id=str(row["domain_id"]),
        language=str(row["language"]),
        version=str(row["version"]),
        port=int(row["port"]),
        status=str(row["status"]),
        limits=ResourceLimits(
            memory_mb=int(row["memory_limit_mb"]),
            cpu_cores=float(row["cpu_limit"]),
            disk_mb=int(row["disk_limit_mb"]),
        ),
        environment=json.loads(row["environment_json"] or "{}"),
        backend_kind=str(row["backend_kind"]),
        workspace_path=str(row["workspace_path"]),
        created_at_utc=_db_parse_timestamp(row["created_at_utc"]),
        updated_at_utc=_db_parse_timestamp(row["updated_at_utc"]),
        handle=handle,
        last_error=row["last_error"],
        diagnostics=tuple(json.loads(row["diagnostics_json"])) if row["diagnostics_json"] else (),
    )


def _db_parse_timestamp(value: Any) -> datetime:
    # SQLite hands timestamps back as text
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
