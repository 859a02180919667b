"""
App liveness: registration and heartbeats of participating clients.
"""

import json
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from hive.database import utcnow
from hive.models import AppState, Connection


def register_app(
    db: Session,
    app_type: str,
    app_id: Optional[str] = None,
    metadata: dict = None
) -> AppState:
    """
    Create or refresh the AppState for a client instance.

    Re-registering an existing id refreshes ``last_seen``, resets the
    status to active and recounts active connections.
    """
    app_id = app_id or f"app-{app_type}-{uuid.uuid4().hex}"
    connection_count = db.query(Connection).filter(Connection.active.is_(True)).count()

    state = db.get(AppState, app_id)
    if state is None:
        state = AppState(id=app_id, app_type=app_type)
        db.add(state)

    state.app_type = app_type
    state.status = "active"
    state.connection_count = connection_count
    state.last_seen = utcnow()
    state.last_error = None
    if metadata is not None:
        state.meta = json.dumps(metadata)

    db.commit()
    db.refresh(state)
    return state


def touch_app(db: Session, app_id: str) -> Optional[AppState]:
    """Refresh ``last_seen``. Unknown ids are ignored."""
    state = db.get(AppState, app_id)
    if state is None:
        return None
    state.last_seen = utcnow()
    db.commit()
    db.refresh(state)
    return state


def record_app_error(db: Session, app_id: str, message: str) -> Optional[AppState]:
    state = db.get(AppState, app_id)
    if state is None:
        return None
    state.last_error = message
    db.commit()
    return state


def list_stale_apps(db: Session, minutes: int) -> list[AppState]:
    """Active apps not seen within ``minutes``."""
    cutoff = utcnow() - timedelta(minutes=minutes)
    return db.query(AppState).filter(
        AppState.status == "active",
        AppState.last_seen < cutoff
    ).order_by(AppState.last_seen).all()
