"""Database engine configuration and initialization."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from flightwatch.db.models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
SessionLocal: sessionmaker[Session] = sessionmaker()


def get_engine(db_url: str | None = None) -> Engine:
    """Return a singleton SQLAlchemy engine.

    Defaults:
      - ENVIRONMENT=development → sqlite:///data/flightwatch.db
      - ENVIRONMENT=production  → DATABASE_URL env var
    """
    global _engine
    if _engine is not None:
        return _engine

    if db_url is None:
        env = os.environ.get("ENVIRONMENT", "development")
        if env == "production":
            db_url = os.environ.get("DATABASE_URL")
            if not db_url:
                raise ValueError(
                    "DATABASE_URL environment variable must be set in production"
                )
        else:
            data_dir = os.environ.get("DATA_DIR", "data")
            os.makedirs(data_dir, exist_ok=True)
            db_url = f"sqlite:///{data_dir}/flightwatch.db"

    # Heroku-style URLs still use the old scheme name.
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql+psycopg2://", 1)

    connect_args = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30

    _engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    SessionLocal.configure(bind=_engine)

    # Poller and delivery workers write from different threads
    if db_url.startswith("sqlite"):
        @event.listens_for(_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.info("Database engine created: %s", db_url.split("@")[-1])
    return _engine


def reset_engine() -> None:
    """Reset the singleton engine (for testing)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
    SessionLocal.configure(bind=None)


def init_db(engine: Engine | None = None) -> None:
    """Create all tables. Use in dev mode; prod uses Alembic."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database tables created")


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Yield a session, committing on success or rolling back on error."""
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
