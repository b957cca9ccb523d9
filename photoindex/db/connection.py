"""
Database connection management for photoindex.

A Database object owns one SQLAlchemy engine and session factory. It is
created by the caller and passed to the stores that need it; there is no
process-wide connection state.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, Engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ..exceptions import StorageFailureError
from .models import Base

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return url.startswith('sqlite')


def _is_memory_sqlite(url: str) -> bool:
    return url in ('sqlite://', 'sqlite:///:memory:')


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False):
        """
        Create the engine for a database URL.

        Args:
            url: SQLAlchemy database URL (sqlite:///..., postgresql://...)
            echo: Log every SQL statement
        """
        self.url = url
        engine_kwargs: Dict[str, Any] = {'echo': echo, 'future': True}

        if _is_memory_sqlite(url):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            engine_kwargs['poolclass'] = StaticPool
        elif _is_sqlite(url):
            self._ensure_sqlite_directory(url)
        else:
            engine_kwargs['pool_pre_ping'] = True

        try:
            self.engine: Engine = create_engine(url, **engine_kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database engine for {url}: {e}")
            raise StorageFailureError(f"Cannot create database engine: {e}") from e

        if _is_sqlite(url):
            event.listen(self.engine, 'connect', _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.debug(f"Database engine created for {self.engine.url.render_as_string(hide_password=True)}")

    @staticmethod
    def _ensure_sqlite_directory(url: str) -> None:
        db_path = url.split(':///', 1)[-1]
        if db_path:
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    def init_schema(self) -> None:
        """Create all tables that do not yet exist."""
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database schema initialized")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database schema: {e}")
            raise StorageFailureError(f"Cannot initialize schema: {e}") from e

    def check_connection(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database connection check failed: {e}")
            return False

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Context manager for a transactional session.

        Commits on success, rolls back on any exception. SQLAlchemy errors are
        re-raised as StorageFailureError; other exceptions propagate unchanged.

        Usage:
            with db.session() as session:
                session.add(photo)
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise StorageFailureError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()


def configure_database(config: Dict[str, Any], init_schema: Optional[bool] = None) -> Database:
    """
    Build a Database from the 'database' section of a photoindex configuration.

    Args:
        config: photoindex configuration dictionary
        init_schema: Create tables; defaults to database.auto_init

    Returns:
        Configured Database handle
    """
    db_config = config.get('database', {})
    url = db_config.get('url', 'sqlite:///:memory:')
    if _is_sqlite(url) and '~' in url:
        prefix, path = url.split(':///', 1)
        url = f"{prefix}:///{Path(path).expanduser()}"

    database = Database(url, echo=db_config.get('echo', False))

    if init_schema is None:
        init_schema = db_config.get('auto_init', True)
    if init_schema:
        database.init_schema()
    return database
