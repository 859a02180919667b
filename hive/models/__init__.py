"""
SQLAlchemy models for the relay store.

This package contains:
- Connection: source/target locator pairings and their health
- Update: the relay log exchanged between the two audiences
- AppState: liveness of registered client instances
- SyncStatus: append-only sync attempts per connection
- ErrorLog: append-only diagnostics
"""

from hive.models.connection import Connection, ConnectionStatus
from hive.models.update import Update, UpdateType
from hive.models.app_state import AppState
from hive.models.sync_status import SyncStatus
from hive.models.error_log import ErrorLog

__all__ = [
    "Connection",
    "ConnectionStatus",
    "Update",
    "UpdateType",
    "AppState",
    "SyncStatus",
    "ErrorLog",
]
