# tests/test_api.py
"""
HTTP surface tests against a throwaway database.

Run with: pytest tests/test_api.py -v
"""

from hive.models import Connection
from hive.services.migration_service import MIGRATIONS

API = "/api/v1"


def _connect(client, source="Sheet1!A1", target="element-1"):
    response = client.post(f"{API}/connections", json={"cellId": source, "slideElementId": target})
    assert response.status_code == 200
    return response.json()["connection"]


def test_root_health(client):
    assert client.get("/").json() == {"status": "ok"}


# ============ SCENARIO ============

def test_selection_round_trip(client):
    source = client.post(f"{API}/register", json={"type": "source"})
    target = client.post(f"{API}/register", json={"type": "target"})
    assert source.json()["success"] is True
    assert target.json()["type"] == "target"
    assert target.json()["initialState"] == {"connections": [], "updates": []}

    broadcast = client.post(
        f"{API}/selection/source/broadcast",
        json={"selection": {"range": "A1:B2"}, "timestamp": 1700000000000}
    )
    assert broadcast.json()["success"] is True

    polled = client.get(f"{API}/updates/target", params={"lastUpdate": 0}).json()
    assert len(polled["updates"]) == 1
    update = polled["updates"][0]
    assert update["type"] == "selection"
    assert update["content"] == {"range": "A1:B2"}

    unacked = client.get(f"{API}/updates/target/unacknowledged").json()["updates"]
    assert [u["id"] for u in unacked] == [update["id"]]

    ack = client.post(f"{API}/updates/acknowledge", json={"updateIds": [update["id"]]})
    assert ack.json() == {"success": True, "processed": 1}
    assert client.get(f"{API}/updates/target/unacknowledged").json()["updates"] == []

    # Already consumed
    assert client.get(f"{API}/updates/target", params={"lastUpdate": 0}).json()["updates"] == []


def test_register_returns_pending_updates_and_reuses_app_id(client):
    client.post(f"{API}/selection/target/broadcast", json={"element": {"elementId": "el-9"}})

    first = client.post(f"{API}/register", json={"type": "source", "appId": "app-source-fixed"}).json()
    assert first["appId"] == "app-source-fixed"
    assert [u["type"] for u in first["initialState"]["updates"]] == ["selection"]

    heartbeat = client.post(f"{API}/apps/app-source-fixed/heartbeat")
    assert heartbeat.json()["app"]["id"] == "app-source-fixed"
    assert client.post(f"{API}/apps/unknown/heartbeat").status_code == 404


# ============ VALIDATION ============

def test_unknown_audience_is_rejected(client):
    response = client.post(f"{API}/register", json={"type": "printer"})
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["errorType"] == "ValidationError"

    assert client.get(f"{API}/updates/printer").status_code == 400


def test_malformed_body_is_a_400_and_logged(client):
    response = client.post(f"{API}/register", json={})
    assert response.status_code == 400
    assert response.json()["success"] is False

    logged = client.get(f"{API}/errors/relay").json()["errors"]
    assert logged[0]["errorType"] == "ValidationError"
    assert logged[0]["metadata"]["path"] == f"{API}/register"


def test_broadcast_requires_payload(client):
    response = client.post(f"{API}/selection/source/broadcast", json={"timestamp": 1})
    assert response.status_code == 400


def test_connection_requires_both_locators(client):
    response = client.post(f"{API}/connections", json={"cellId": "A1"})
    assert response.status_code == 400
    assert "Missing required fields" in response.json()["error"]


# ============ CONNECTIONS ============

def test_create_connection_is_idempotent(client, db):
    first = _connect(client)
    second = client.post(
        f"{API}/connections", json={"sourceRef": "Sheet1!A1", "targetRef": "element-1"}
    ).json()["connection"]

    assert first["id"] == second["id"]
    assert db.query(Connection).filter(Connection.active.is_(True)).count() == 1


def test_connection_changes_are_queued_for_target(client):
    connection = _connect(client)

    updates = client.get(f"{API}/updates/target").json()["updates"]
    assert [u["type"] for u in updates] == ["connection"]
    assert updates[0]["content"]["action"] == "created"
    assert updates[0]["content"]["connection"]["id"] == connection["id"]


def test_relocate_keeps_identity(client):
    connection = _connect(client)

    moved = client.put(f"{API}/connections/{connection['id']}", json={"cellId": "Sheet1!D4"}).json()
    assert moved["connection"]["sourceRef"] == "Sheet1!D4"
    assert moved["connection"]["originalSourceRef"] == "Sheet1!A1"

    again = _connect(client)
    assert again["id"] == connection["id"]


def test_delete_then_recreate_reactivates(client):
    connection = _connect(client)

    assert client.delete(f"{API}/connections/{connection['id']}").json() == {"success": True}
    assert client.get(f"{API}/connections").json()["connections"] == []

    again = _connect(client)
    assert again["id"] == connection["id"]
    assert again["active"] is True
    assert again["status"] == "active"


def test_unknown_connection_is_404(client):
    response = client.get(f"{API}/connections/conn-missing")
    assert response.status_code == 404
    assert response.json()["errorType"] == "NotFound"
    assert client.delete(f"{API}/connections/conn-missing").status_code == 404


def test_stale_connections_are_reported(client, db, minutes_ago):
    stale = _connect(client, "A1", "el-1")
    _connect(client, "A2", "el-2")

    row = db.get(Connection, stale["id"])
    row.last_sync_time = minutes_ago(10)
    db.commit()

    body = client.get(f"{API}/connections/health").json()
    assert [c["id"] for c in body["staleConnections"]] == [stale["id"]]
    assert "timestamp" in body


def test_sync_status_round_trip(client):
    connection = _connect(client)

    recorded = client.post(
        f"{API}/connections/{connection['id']}/sync", json={"status": "error", "error": "missing element"}
    ).json()
    assert recorded["connection"]["status"] == "error"
    assert recorded["connection"]["retryCount"] == 1

    history = client.get(f"{API}/connections/{connection['id']}/sync").json()["history"]
    assert [h["status"] for h in history] == ["error"]


# ============ VALUE PUSH ============

def test_cell_push_queues_value_for_target(client):
    connection = _connect(client)
    client.get(f"{API}/updates/target")  # drain the connection notice

    pushed = client.post(
        f"{API}/updates/cell", json={"connectionId": connection["id"], "value": 42, "timestamp": 1700000000000}
    )
    assert pushed.status_code == 200
    content = pushed.json()["update"]["content"]
    assert content == {
        "connectionId": connection["id"],
        "value": 42,
        "sourceRef": "Sheet1!A1",
        "targetRef": "element-1",
    }

    refreshed = client.get(f"{API}/connections/{connection['id']}").json()["connection"]
    assert refreshed["lastSyncTime"].startswith("2023-11-14T22:13:20")

    updates = client.get(f"{API}/updates/target").json()["updates"]
    assert [u["type"] for u in updates] == ["value"]


def test_cell_push_errors(client):
    missing = client.post(f"{API}/updates/cell", json={"connectionId": "conn-missing", "value": 1})
    assert missing.status_code == 404

    connection = _connect(client)
    client.put(f"{API}/connections/{connection['id']}", json={"syncEnabled": False})
    disabled = client.post(f"{API}/updates/cell", json={"connectionId": connection["id"], "value": 1})
    assert disabled.status_code == 400

    no_value = client.post(f"{API}/updates/cell", json={"connectionId": connection["id"]})
    assert no_value.status_code == 400


def test_null_value_is_accepted(client):
    connection = _connect(client)
    pushed = client.post(f"{API}/updates/cell", json={"connectionId": connection["id"], "value": None})
    assert pushed.status_code == 200
    assert pushed.json()["update"]["content"]["value"] is None


def test_acknowledge_ignores_unknown_ids(client):
    response = client.post(f"{API}/updates/acknowledge", json={"updateIds": ["upd-nope"]})
    assert response.json() == {"success": True, "processed": 0}


# ============ ERRORS / HEALTH / DEBUG ============

def test_error_reporting(client):
    reported = client.post(
        f"{API}/errors",
        json={"type": "target", "errorType": "ApplyError", "message": "element gone", "metadata": {"ref": "el-1"}}
    )
    assert reported.status_code == 200

    errors = client.get(f"{API}/errors/target").json()["errors"]
    assert errors[0]["message"] == "element gone"
    assert errors[0]["metadata"] == {"ref": "el-1"}


def test_health_metrics_and_reap(client):
    _connect(client)
    client.get(f"{API}/updates/target")

    metrics = client.get(f"{API}/health/metrics").json()["metrics"]
    assert metrics["activeConnections"] == 1
    assert metrics["pendingUpdates"] == 0

    reaped = client.post(f"{API}/health/reap", json={"retentionMinutes": 0}).json()
    assert reaped["deleted"]["updates"] == 1

    assert client.get(f"{API}/health/stale-apps").json()["staleApps"] == []


def test_debug_stats_and_cleanup(client):
    _connect(client)

    stats = client.get(f"{API}/debug/db/stats").json()
    assert stats["schemaVersion"] == MIGRATIONS[-1].version
    assert stats["tables"]["connections"] == 1
    assert stats["tables"]["updates"] == 1

    client.post(f"{API}/debug/cleanup")
    tables = client.get(f"{API}/debug/db/stats").json()["tables"]
    assert all(count == 0 for count in tables.values())


def test_out_of_range_cursor_is_a_400(client):
    response = client.get(f"{API}/updates/target", params={"lastUpdate": 10 ** 18})
    assert response.status_code == 400
    assert response.json()["errorType"] == "ValidationError"


def test_out_of_range_push_timestamp_queues_nothing(client):
    connection = _connect(client)

    response = client.post(
        f"{API}/updates/cell", json={"connectionId": connection["id"], "value": 1, "timestamp": 10 ** 18}
    )
    assert response.status_code == 400

    # Only the connection notice is queued
    assert client.get(f"{API}/debug/db/stats").json()["tables"]["updates"] == 1
