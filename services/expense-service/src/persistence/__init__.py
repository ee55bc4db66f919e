"""Persistence primitives for the expense service."""

from persistence.database import (
    DB_URL_ENV_VAR,
    DEFAULT_DB_FILENAME,
    DEFAULT_DB_PATH,
    SessionLocal,
    build_engine,
    build_session_factory,
    get_database_url,
    get_engine,
    init_db,
)
from persistence.models import Base, ExpenseRecord
from persistence.repository import ExpenseRepository

__all__ = [
    "Base",
    "DB_URL_ENV_VAR",
    "DEFAULT_DB_FILENAME",
    "DEFAULT_DB_PATH",
    "ExpenseRecord",
    "ExpenseRepository",
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "get_database_url",
    "get_engine",
    "init_db",
]
