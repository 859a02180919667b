"""
Health monitor and reaper.

``snapshot`` only reads; threshold breaches become warnings and never
change stored state. ``reap`` deletes terminal rows only (processed
updates, sync history, old errors), so it can run alongside live
traffic.
"""

import logging
import sqlite3
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from hive.config import Settings
from hive.database import utcnow
from hive.models import Connection, Update, ErrorLog, SyncStatus, AppState

logger = logging.getLogger(__name__)


def snapshot(db: Session, settings: Settings) -> dict:
    """
    Liveness metrics for the relay.

    Returns:
        dict with activeConnections, pendingUpdates, errorsLastHour,
        avgSyncLatencySeconds and a list of threshold warnings
    """
    hour_ago = utcnow() - timedelta(hours=1)

    active_connections = db.query(func.count(Connection.id)).filter(
        Connection.active.is_(True)
    ).scalar()
    pending_updates = db.query(func.count(Update.id)).filter(
        Update.processed.is_(False)
    ).scalar()
    errors_last_hour = db.query(func.count(ErrorLog.id)).filter(
        ErrorLog.created_at > hour_ago
    ).scalar()

    recent_syncs = db.query(SyncStatus.last_sync_time, SyncStatus.created_at).filter(
        SyncStatus.created_at > hour_ago
    ).all()
    latencies = [
        (synced - created).total_seconds()
        for synced, created in recent_syncs
        if synced is not None and created is not None
    ]
    avg_latency = sum(latencies) / len(latencies) if latencies else None

    warnings = []
    if pending_updates > settings.pending_updates_ceiling:
        warnings.append(f"High number of pending updates: {pending_updates}")
    if errors_last_hour > settings.error_count_ceiling:
        warnings.append(f"High error rate detected: {errors_last_hour} in the last hour")
    for warning in warnings:
        logger.warning(warning)

    return {
        "activeConnections": active_connections,
        "pendingUpdates": pending_updates,
        "errorsLastHour": errors_last_hour,
        "avgSyncLatencySeconds": avg_latency,
        "warnings": warnings,
        "timestamp": utcnow().isoformat(),
    }


def reap(db: Session, retention_minutes: int, error_multiplier: int = 24) -> dict:
    """
    Delete aged terminal rows in three independent statements.

    - processed updates created more than ``retention_minutes`` ago
    - sync history older than ``retention_minutes``
    - error logs older than ``retention_minutes * error_multiplier``

    Returns:
        dict: Rows deleted per table
    """
    now = utcnow()
    cutoff = now - timedelta(minutes=retention_minutes)
    error_cutoff = now - timedelta(minutes=retention_minutes * error_multiplier)

    deleted = {}
    deleted["updates"] = db.query(Update).filter(
        Update.processed.is_(True),
        Update.created_at <= cutoff
    ).delete(synchronize_session=False)
    db.commit()

    deleted["syncStatus"] = db.query(SyncStatus).filter(
        SyncStatus.created_at <= cutoff
    ).delete(synchronize_session=False)
    db.commit()

    deleted["errorLogs"] = db.query(ErrorLog).filter(
        ErrorLog.created_at <= error_cutoff
    ).delete(synchronize_session=False)
    db.commit()

    if any(deleted.values()):
        logger.info(
            "Reaped %d updates, %d sync rows, %d error logs",
            deleted["updates"], deleted["syncStatus"], deleted["errorLogs"],
        )
    return deleted


def table_counts(db: Session) -> dict:
    return {
        "connections": db.query(Connection).count(),
        "updates": db.query(Update).count(),
        "appStates": db.query(AppState).count(),
        "errorLogs": db.query(ErrorLog).count(),
        "syncStatus": db.query(SyncStatus).count(),
    }


def clear_all(db: Session) -> None:
    """Empty every table, children first. Used by integration scripts."""
    for model in (SyncStatus, Update, ErrorLog, AppState, Connection):
        db.query(model).delete(synchronize_session=False)
    db.commit()


# ============ STORE MAINTENANCE ============

def vacuum(db_engine: Engine) -> None:
    # The raw DBAPI connection runs in autocommit mode; VACUUM cannot run in a transaction
    raw = db_engine.raw_connection()
    try:
        raw.driver_connection.execute("VACUUM")
        raw.driver_connection.execute("ANALYZE")
    finally:
        raw.close()


def backup(db_engine: Engine, target_path: Optional[str] = None) -> str:
    """
    Online copy of the SQLite store.

    Defaults to ``<database>.backup-<epoch-ms>`` next to the database file.
    """
    if target_path is None:
        database = db_engine.url.database or "hive.db"
        target_path = f"{database}.backup-{int(time.time() * 1000)}"

    raw = db_engine.raw_connection()
    destination = sqlite3.connect(target_path)
    try:
        raw.driver_connection.backup(destination)
    finally:
        destination.close()
        raw.close()

    logger.info("Backup completed: %s", target_path)
    return str(Path(target_path))


# ============ BACKGROUND REAPER ============

class Reaper:
    """
    Runs ``reap`` on a fixed interval in a daemon thread.

    ``stop`` wakes the thread immediately.
    """

    def __init__(self, session_factory, settings: Settings):
        self.session_factory = session_factory
        self.settings = settings
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> dict:
        db = self.session_factory()
        try:
            return reap(
                db,
                self.settings.retention_minutes,
                self.settings.error_retention_multiplier,
            )
        finally:
            db.close()

    def _loop(self) -> None:
        interval = self.settings.reap_interval_seconds
        while not self._stop.wait(interval):
            try:
                self.run_once()
            except Exception as exc:  # noqa: BLE001
                logger.error("Reaper pass failed: %s", exc)

    def start(self) -> None:
        if self.settings.reap_interval_seconds <= 0 or self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="hive-reaper", daemon=True)
        self._thread.start()
        logger.info("Reaper started (every %.0fs)", self.settings.reap_interval_seconds)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
