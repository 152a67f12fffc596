"""Database engine utilities.

This module centralizes database connectivity primitives to enforce the db-layer
boundary for all SQLAlchemy usage.
"""

from sqlalchemy import Engine, create_engine


def db_create_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for instance persistence.

    Args:
        database_url: SQLAlchemy database URL.

    Returns:
        Engine: Configured SQLAlchemy engine.

    Raises:
        ValueError: Raised when the database URL is blank.
    """

    if not database_url.strip():
        raise ValueError("database_url must not be blank")

    if database_url.startswith("sqlite"):
        # registry writes come from a worker thread, not the creating thread
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)
