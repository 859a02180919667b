# tests/test_connection_service.py
from types import SimpleNamespace

import pytest

from hive.errors import ConstraintViolation, NotFound, ValidationError
from hive.models import Connection, ConnectionStatus, SyncStatus
from hive.services import connection_service


def test_create_is_idempotent(db):
    first = connection_service.create_or_reactivate(db, "Sheet1!A1", "element-1")
    second = connection_service.create_or_reactivate(db, "Sheet1!A1", "element-1")

    assert first.id == second.id
    assert db.query(Connection).filter(Connection.active.is_(True)).count() == 1
    assert first.original_source_ref == "Sheet1!A1"


def test_soft_delete_then_recreate_reactivates_same_row(db):
    connection = connection_service.create_or_reactivate(db, "Sheet1!B2", "element-2")
    connection_service.soft_delete(db, connection.id)

    deleted = connection_service.get_connection(db, connection.id)
    assert deleted.active is False
    assert deleted.status == ConnectionStatus.DELETED

    again = connection_service.create_or_reactivate(db, "Sheet1!B2", "element-2")
    assert again.id == connection.id
    assert again.active is True
    assert again.status == ConnectionStatus.ACTIVE
    assert db.query(Connection).count() == 1


def test_relocate_keeps_original_identity(db):
    connection = connection_service.create_or_reactivate(db, "Sheet1!A1", "element-1")

    moved = connection_service.relocate(db, connection.id, "Sheet1!C5")
    assert moved.source_ref == "Sheet1!C5"
    assert moved.original_source_ref == "Sheet1!A1"

    # Identity is still the original locator
    same = connection_service.create_or_reactivate(db, "Sheet1!A1", "element-1")
    assert same.id == connection.id


def test_update_status_counts_retries(db):
    connection = connection_service.create_or_reactivate(db, "A1", "el")

    connection_service.update_status(db, connection.id, ConnectionStatus.ERROR, "timeout")
    updated = connection_service.update_status(db, connection.id, ConnectionStatus.ERROR, "timeout again")
    assert updated.retry_count == 2
    assert updated.last_error == "timeout again"

    recovered = connection_service.update_status(db, connection.id, ConnectionStatus.ACTIVE)
    assert recovered.retry_count == 0
    assert recovered.last_error is None


def test_update_status_rejects_unknown_status(db):
    connection = connection_service.create_or_reactivate(db, "A1", "el")
    with pytest.raises(ValidationError):
        connection_service.update_status(db, connection.id, "sleeping")


def test_missing_locators_are_rejected(db):
    with pytest.raises(ValidationError):
        connection_service.create_or_reactivate(db, "", "el")
    with pytest.raises(ValidationError):
        connection_service.create_or_reactivate(db, "A1", None)


def test_unknown_connection_raises_not_found(db):
    with pytest.raises(NotFound):
        connection_service.soft_delete(db, "conn-missing")


def test_list_active_and_stale(db, minutes_ago):
    fresh = connection_service.create_or_reactivate(db, "A1", "el-1")
    stale = connection_service.create_or_reactivate(db, "A2", "el-2")
    gone = connection_service.create_or_reactivate(db, "A3", "el-3")
    connection_service.soft_delete(db, gone.id)

    stale.last_sync_time = minutes_ago(10)
    db.commit()

    assert {c.id for c in connection_service.list_active(db)} == {fresh.id, stale.id}
    assert [c.id for c in connection_service.list_stale(db, 5)] == [stale.id]


def test_record_sync_status_appends_history(db):
    connection = connection_service.create_or_reactivate(db, "A1", "el")

    connection_service.record_sync_status(db, connection.id, "error", "element missing")
    connection_service.record_sync_status(db, connection.id, "synced")

    history = connection_service.list_sync_history(db, connection.id)
    assert len(history) == 2
    assert {h.status for h in history} == {"error", "synced"}

    refreshed = connection_service.get_connection(db, connection.id)
    assert refreshed.status == ConnectionStatus.ACTIVE
    assert refreshed.retry_count == 0


def test_concurrent_create_returns_the_winner(db, session_factory, monkeypatch):
    real_find_pair = connection_service._find_pair
    lookups = []

    def racing_find_pair(session, source_ref, target_ref):
        lookups.append(source_ref)
        if len(lookups) == 1:
            # Another request inserts the same pair after this lookup
            other = session_factory()
            other.add(Connection(
                id="conn-winner", source_ref=source_ref, target_ref=target_ref,
                original_source_ref=source_ref
            ))
            other.commit()
            other.close()
            return None
        return real_find_pair(session, source_ref, target_ref)

    monkeypatch.setattr(connection_service, "_find_pair", racing_find_pair)

    connection = connection_service.create_or_reactivate(db, "Sheet1!A1", "element-1")
    assert connection.id == "conn-winner"
    assert len(lookups) == 2
    assert db.query(Connection).count() == 1


def test_failed_sync_record_leaves_connection_untouched(db, session_factory, monkeypatch):
    connection = connection_service.create_or_reactivate(db, "A1", "el")
    db.commit()  # end the read snapshot opened by refresh

    other = session_factory()
    other.add(SyncStatus(id="sync-taken", connection_id=connection.id, status="synced"))
    other.commit()
    other.close()

    monkeypatch.setattr(connection_service.uuid, "uuid4", lambda: SimpleNamespace(hex="taken"))
    with pytest.raises(ConstraintViolation):
        connection_service.record_sync_status(db, connection.id, "error", "element missing")

    unchanged = connection_service.get_connection(db, connection.id)
    assert unchanged.status == ConnectionStatus.ACTIVE
    assert unchanged.retry_count == 0
    assert unchanged.last_error is None
    assert db.query(SyncStatus).count() == 1
