"""Persistence layer: ORM rows, the engine and transaction scopes."""

from flightwatch.db.engine import SessionLocal, get_engine, init_db, session_scope
from flightwatch.db.models import Base

__all__ = ["Base", "SessionLocal", "get_engine", "init_db", "session_scope"]
