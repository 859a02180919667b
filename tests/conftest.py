# tests/conftest.py
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from hive.config import Settings
from hive.database import create_db_engine, create_session_factory, utcnow
from hive.client.host import HostAdapter
from hive.services.migration_service import init_db


@pytest.fixture
def settings():
    return Settings(reap_interval_seconds=0, stale_connection_minutes=5)


@pytest.fixture
def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'hive.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(settings, session_factory, db_engine):
    from main import create_app

    app = create_app(settings, session_factory, db_engine)
    return TestClient(app)


@pytest.fixture
def minutes_ago():
    def _minutes_ago(minutes):
        return utcnow() - timedelta(minutes=minutes)
    return _minutes_ago


class FakeHost(HostAdapter):
    """In-memory host application recording every call."""

    def __init__(self, selection=None):
        self.selection = selection
        self.values = {}
        self.highlighted = []
        self.protected = set()
        self.value_calls = []
        self.errors = []

    def get_local_selection(self):
        return self.selection

    def apply_remote_value(self, ref, value):
        self.value_calls.append((ref, value))
        self.values[ref] = value

    def highlight_remote(self, ref):
        self.highlighted.append(ref)

    def protect_local_ref(self, ref):
        self.protected.add(ref)

    def notify_error(self, message):
        self.errors.append(message)


@pytest.fixture
def host():
    return FakeHost(selection={"ref": "Sheet1!A1", "sheetName": "Sheet1"})
