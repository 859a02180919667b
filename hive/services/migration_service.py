"""
Versioned schema migrations for the relay store.

The schema version lives in SQLite's ``PRAGMA user_version`` header
field, so it can be read before any table exists. Each migration runs
in its own transaction together with the version bump. A migration
that fails only because its change is already present (a column that
already exists, for example) is recorded as applied; anything else
aborts startup.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from hive.database import Base
from hive.errors import FatalError
import hive.models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)


class AlreadyApplied(Exception):
    """Raised by an upgrade step whose change is already in the schema."""


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    upgrade: Callable[[Connection], None]


# ============ SCHEMA HELPERS ============

def column_exists(conn: Connection, table: str, column: str) -> bool:
    rows = conn.exec_driver_sql(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


def table_exists(conn: Connection, table: str) -> bool:
    row = conn.exec_driver_sql(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    ).first()
    return row is not None


def add_column_if_missing(conn: Connection, table: str, column: str, ddl: str) -> bool:
    """Add a column unless it is already present. Returns True if added."""
    if column_exists(conn, table, column):
        return False
    conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    return True


# ============ MIGRATIONS ============

def _initial_schema(conn: Connection) -> None:
    Base.metadata.create_all(conn)


def _update_priority(conn: Connection) -> None:
    add_column_if_missing(conn, "updates", "priority", "INTEGER NOT NULL DEFAULT 0")


def _metadata_columns(conn: Connection) -> None:
    add_column_if_missing(conn, "connections", "metadata", "TEXT")
    add_column_if_missing(conn, "app_states", "metadata", "TEXT")


def _connection_health(conn: Connection) -> None:
    add_column_if_missing(conn, "connections", "status", "VARCHAR(20) NOT NULL DEFAULT 'active'")
    add_column_if_missing(conn, "connections", "retry_count", "INTEGER NOT NULL DEFAULT 0")
    add_column_if_missing(conn, "connections", "last_error", "TEXT")
    if add_column_if_missing(conn, "connections", "original_source_ref", "VARCHAR(255)"):
        conn.exec_driver_sql(
            "UPDATE connections SET original_source_ref = source_ref "
            "WHERE original_source_ref IS NULL"
        )
        conn.exec_driver_sql(
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_connections_pair_idx "
            "ON connections (original_source_ref, target_ref)"
        )


def _indexes(conn: Connection) -> None:
    for table in Base.metadata.sorted_tables:
        for index in table.indexes:
            index.create(conn, checkfirst=True)


MIGRATIONS: list[Migration] = [
    Migration(1, "initial schema", _initial_schema),
    Migration(2, "update priority", _update_priority),
    Migration(3, "metadata columns", _metadata_columns),
    Migration(4, "connection health columns", _connection_health),
    Migration(5, "indexes", _indexes),
]


# ============ ENGINE ============

def current_version(db_engine: Engine) -> int:
    with db_engine.connect() as conn:
        return conn.exec_driver_sql("PRAGMA user_version").scalar() or 0


def _set_version(conn: Connection, version: int) -> None:
    conn.exec_driver_sql(f"PRAGMA user_version = {int(version)}")


def _is_already_applied(exc: Exception) -> bool:
    if isinstance(exc, AlreadyApplied):
        return True
    message = str(exc).lower()
    return "duplicate column name" in message or "already exists" in message


def apply_migrations(db_engine: Engine, migrations: Sequence[Migration] = None) -> int:
    """
    Apply every migration newer than the stored version, in order.

    Returns:
        int: The schema version after the run.

    Raises:
        FatalError: A migration failed for a reason other than being
            already applied. The stored version is left at the last
            successful migration.
    """
    migrations = sorted(migrations or MIGRATIONS, key=lambda m: m.version)
    version = current_version(db_engine)
    logger.info("Current schema version: %d", version)

    for migration in migrations:
        if migration.version <= version:
            continue

        logger.info("Running migration %d (%s)", migration.version, migration.description)
        try:
            with db_engine.begin() as conn:
                migration.upgrade(conn)
                _set_version(conn, migration.version)
        except (AlreadyApplied, OperationalError) as exc:
            if not _is_already_applied(exc):
                logger.error("Migration %d failed: %s", migration.version, exc)
                raise FatalError(
                    f"Migration {migration.version} failed: {exc}",
                    {"version": migration.version},
                ) from exc
            logger.warning(
                "Migration %d already applied (%s), recording version",
                migration.version, exc,
            )
            with db_engine.begin() as conn:
                _set_version(conn, migration.version)
        except Exception as exc:
            logger.error("Migration %d failed: %s", migration.version, exc)
            raise FatalError(
                f"Migration {migration.version} failed: {exc}",
                {"version": migration.version},
            ) from exc

        version = migration.version
        logger.info("Migration %d completed", migration.version)

    return version


def init_db(db_engine: Engine) -> int:
    """Bring the store up to the latest schema before it is used."""
    return apply_migrations(db_engine)
