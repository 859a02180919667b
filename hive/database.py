from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from hive.config import get_settings
from hive.errors import ValidationError

# Applied on every new DBAPI connection
SQLITE_PRAGMAS = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "foreign_keys": "ON",
    "busy_timeout": "5000",
    "temp_store": "MEMORY",
}


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch_ms(value) -> datetime:
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).replace(tzinfo=None)
    except (ValueError, OverflowError, OSError) as exc:
        raise ValidationError(f"Timestamp out of range: {value}", {"timestamp": value}) from exc


def to_epoch_ms(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLite engine with the relay's connection pragmas.

    Writes serialize through SQLite's single writer lock; WAL lets
    readers proceed while a write is in flight.
    """
    db_engine = create_engine(
        database_url,
        echo=False,  # Set True for SQL debugging
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(db_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        # Let SQLAlchemy own BEGIN so DDL inside a migration is transactional
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        for name, value in SQLITE_PRAGMAS.items():
            cursor.execute(f"PRAGMA {name} = {value}")
        cursor.close()

    @event.listens_for(db_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return db_engine


def create_session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


engine = create_db_engine(get_settings().database_url)

# Session factory for request-scoped sessions
SessionLocal = create_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def get_db(request: Request):
    """
    FastAPI dependency to get a database session.

    Uses the session factory attached to the running app, so tests can
    point an app instance at a throwaway database.

    Yields:
        Session: Database session that auto-closes after request
    """
    factory = getattr(request.app.state, "session_factory", SessionLocal)
    db = factory()
    try:
        yield db
    finally:
        db.close()
