# tests/test_migrations.py
import pytest
from sqlalchemy import text

from hive.database import create_db_engine
from hive.errors import FatalError
from hive.services.migration_service import (
    MIGRATIONS, Migration, apply_migrations, column_exists, current_version, table_exists,
)

LATEST = max(m.version for m in MIGRATIONS)

# Schema as shipped before priorities, metadata and connection health existed
LEGACY_SCHEMA = [
    """CREATE TABLE connections (
        id VARCHAR(64) PRIMARY KEY,
        source_ref VARCHAR(255) NOT NULL,
        target_ref VARCHAR(255) NOT NULL,
        active BOOLEAN NOT NULL DEFAULT 1,
        sync_enabled BOOLEAN NOT NULL DEFAULT 1,
        last_sync_time DATETIME,
        created_at DATETIME
    )""",
    """CREATE TABLE updates (
        id VARCHAR(64) PRIMARY KEY,
        type VARCHAR(20) NOT NULL,
        source_type VARCHAR(50) NOT NULL,
        target_type VARCHAR(50) NOT NULL,
        content TEXT NOT NULL,
        processed BOOLEAN NOT NULL DEFAULT 0,
        processed_at DATETIME,
        acknowledged BOOLEAN NOT NULL DEFAULT 0,
        error_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at DATETIME NOT NULL
    )""",
    """CREATE TABLE app_states (
        id VARCHAR(128) PRIMARY KEY,
        app_type VARCHAR(50) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'active',
        connection_count INTEGER NOT NULL DEFAULT 0,
        last_seen DATETIME,
        last_error TEXT,
        created_at DATETIME,
        updated_at DATETIME
    )""",
    """CREATE TABLE error_logs (
        id VARCHAR(64) PRIMARY KEY,
        app_type VARCHAR(50) NOT NULL,
        error_type VARCHAR(100) NOT NULL,
        message TEXT NOT NULL,
        stack_trace TEXT,
        metadata TEXT,
        created_at DATETIME
    )""",
    """CREATE TABLE sync_status (
        id VARCHAR(64) PRIMARY KEY,
        connection_id VARCHAR(64) NOT NULL REFERENCES connections(id),
        status VARCHAR(20) NOT NULL DEFAULT 'synced',
        retry_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        last_sync_time DATETIME,
        created_at DATETIME,
        updated_at DATETIME
    )""",
]


@pytest.fixture
def raw_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'migrate.db'}")
    yield engine
    engine.dispose()


def _set_version(engine, version):
    with engine.begin() as conn:
        conn.exec_driver_sql(f"PRAGMA user_version = {version}")


def test_fresh_database_reaches_latest_version(raw_engine):
    assert current_version(raw_engine) == 0

    assert apply_migrations(raw_engine) == LATEST
    assert current_version(raw_engine) == LATEST

    with raw_engine.connect() as conn:
        for table in ("connections", "updates", "app_states", "error_logs", "sync_status"):
            assert table_exists(conn, table)
        assert column_exists(conn, "updates", "priority")
        assert column_exists(conn, "connections", "original_source_ref")


def test_legacy_database_is_upgraded(raw_engine):
    with raw_engine.begin() as conn:
        for ddl in LEGACY_SCHEMA:
            conn.exec_driver_sql(ddl)
        conn.exec_driver_sql(
            "INSERT INTO connections (id, source_ref, target_ref) VALUES ('conn-1', 'Sheet1!A1', 'el-1')"
        )
    _set_version(raw_engine, 1)

    assert apply_migrations(raw_engine) == LATEST

    with raw_engine.connect() as conn:
        assert column_exists(conn, "updates", "priority")
        assert column_exists(conn, "connections", "metadata")
        assert column_exists(conn, "app_states", "metadata")
        assert column_exists(conn, "connections", "retry_count")
        original = conn.execute(
            text("SELECT original_source_ref FROM connections WHERE id = 'conn-1'")
        ).scalar()
    assert original == "Sheet1!A1"


def test_rerun_against_partially_migrated_store_is_safe(raw_engine):
    apply_migrations(raw_engine)
    _set_version(raw_engine, 1)

    assert apply_migrations(raw_engine) == LATEST


def test_already_applied_failure_is_recorded_as_success(raw_engine):
    apply_migrations(raw_engine)

    duplicate = Migration(
        LATEST + 1,
        "duplicate column",
        lambda conn: conn.exec_driver_sql("ALTER TABLE updates ADD COLUMN priority INTEGER"),
    )
    assert apply_migrations(raw_engine, MIGRATIONS + [duplicate]) == LATEST + 1
    assert current_version(raw_engine) == LATEST + 1


def test_other_failures_abort_and_roll_back(raw_engine):
    apply_migrations(raw_engine)

    def broken(conn):
        conn.exec_driver_sql("CREATE TABLE scratch (id INTEGER)")
        conn.exec_driver_sql("ALTER TABLE no_such_table ADD COLUMN x INTEGER")

    with pytest.raises(FatalError):
        apply_migrations(raw_engine, MIGRATIONS + [Migration(LATEST + 1, "broken", broken)])

    assert current_version(raw_engine) == LATEST
    with raw_engine.connect() as conn:
        assert not table_exists(conn, "scratch")
