"""
Database session management for crepo.

Provides session factory and initialization utilities.
"""

from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine

from .models import Base

DB_FILENAME = 'repository.db'

# Global session factory
_SessionFactory: Optional[sessionmaker] = None
_engine: Optional[Engine] = None


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    # Only SQLite understands the pragma; other drivers are left alone
    if type(dbapi_conn).__module__.startswith('sqlite3'):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_db(repository_path: Path, echo: bool = False) -> Engine:
    """
    Initialize database and create all tables.

    Args:
        repository_path: Path to repository directory
        echo: If True, log all SQL statements (debug mode)

    Returns:
        SQLAlchemy engine
    """
    global _engine, _SessionFactory

    repository_path = Path(repository_path)
    repository_path.mkdir(parents=True, exist_ok=True)

    db_path = repository_path / DB_FILENAME
    db_url = f'sqlite:///{db_path}'

    _engine = create_engine(db_url, echo=echo)

    # Create all tables
    Base.metadata.create_all(_engine)

    # Create session factory
    _SessionFactory = sessionmaker(bind=_engine)

    return _engine


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        SQLAlchemy session

    Raises:
        RuntimeError: If database not initialized
    """
    if _SessionFactory is None:
        raise RuntimeError(
            "Database not initialized. Call init_db() first."
        )
    return _SessionFactory()


def close_db():
    """Close database connection and cleanup."""
    global _engine, _SessionFactory

    if _engine:
        _engine.dispose()
        _engine = None

    _SessionFactory = None
