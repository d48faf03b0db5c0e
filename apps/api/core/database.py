"""
Database connection management.

`Database` owns the engine and session factory for one store. It is built
explicitly (by the application on startup, or by a test), opened, handed to
the code that needs it, and closed on shutdown. Nothing here connects at
import time.
"""
import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Set connection-level settings."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine + session factory with an explicit open/close lifecycle."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    @property
    def dialect(self) -> str:
        return make_url(self.url).get_backend_name()

    def open(self) -> "Database":
        if self.engine is not None:
            return self

        url = make_url(self.url)
        kwargs = {"echo": self.echo}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
            if not url.database or url.database == ":memory:":
                # One shared connection, otherwise every checkout is a new empty db.
                kwargs["poolclass"] = StaticPool
            else:
                directory = os.path.dirname(os.path.abspath(url.database))
                os.makedirs(directory, exist_ok=True)
        else:
            kwargs["pool_pre_ping"] = True

        self.engine = create_engine(self.url, **kwargs)
        if url.get_backend_name() == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,  # Prevent lazy loading issues
        )
        logger.info(
            "Database opened",
            extra={"extra_fields": {"dialect": url.get_backend_name()}},
        )
        return self

    def close(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Database closed")

    def create_all(self) -> None:
        """Create every mapped table (tests and local sqlite; production uses alembic)."""
        import models  # noqa: F401  registers the mapped classes on Base

        Base.metadata.create_all(self._require_engine())

    def new_session(self) -> Session:
        """Bare session. Caller manages transactions explicitly."""
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """One unit of work: commit on success, roll back on any error."""
        db = self.new_session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            with self._require_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError("Database is not open")
        return self.engine


def dialect_insert(db: Session, model):
    """INSERT construct with ON CONFLICT support for the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported on {dialect}")


def get_database(request: Request) -> Database:
    """Dependency: the Database opened by the application on startup."""
    return request.app.state.database


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency for FastAPI to get a database session.

    Commits when the endpoint returns, rolls back if it raises.
    """
    database: Database = request.app.state.database
    db = database.new_session()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        from fastapi import HTTPException
        if not isinstance(e, HTTPException):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()
