"""Database layer package for all SQL and persistence boundaries."""

from .application_instance import SQLAlchemyApplicationInstanceService, db_instance_from_row, db_instance_to_row
from .health import SQLAlchemyDatabaseHealthService
from .interfaces import ApplicationInstanceRepositoryPort, DatabaseHealthPort
from .session import db_create_engine

__all__ = [
	"ApplicationInstanceRepositoryPort",
	"DatabaseHealthPort",
	"SQLAlchemyApplicationInstanceService",
	"SQLAlchemyDatabaseHealthService",
	"db_create_engine",
	"db_instance_from_row",
	"db_instance_to_row",
]
