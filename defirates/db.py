from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from defirates.tables import Base

logger = logging.getLogger(__name__)


class DatabaseNotInitialized(RuntimeError):
    pass


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the SQLAlchemy engine and session factory for one database URL."""

    def __init__(self, url: str):
        self.url = url
        self._engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseNotInitialized("Database not initialized. Call connect() on startup.")
        return self._engine

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def connect(self) -> None:
        if self._engine is not None:
            return

        if self.url.startswith("sqlite"):
            # store calls run in the threadpool, so connections cross threads
            engine = create_engine(self.url, connect_args={"check_same_thread": False})
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(self.url, pool_pre_ping=True, pool_size=10, max_overflow=20)

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        Base.metadata.create_all(engine)

        self._engine = engine
        self._sessions = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info("Database initialized at %s", engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessions = None

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._sessions is None:
            raise DatabaseNotInitialized("Database not initialized. Call connect() on startup.")
        db = self._sessions()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
