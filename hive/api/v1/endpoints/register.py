"""
Client registration and heartbeats.

A client registers once on start (and again after losing connectivity)
and receives everything it needs to resume: the active pairings and
the updates still pending for its audience.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from hive.api.deps import get_app_settings, check_audience
from hive.config import Settings
from hive.database import get_db
from hive.errors import NotFound
from hive.services import app_service, connection_service, update_service

router = APIRouter(tags=["Registration"])


class RegisterRequest(BaseModel):
    """Registration body. ``appId`` is reused across re-registrations."""
    type: str
    app_id: Optional[str] = Field(None, alias="appId")
    metadata: Optional[dict] = None


@router.post("/register")
def register(
    body: RegisterRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """
    Register (or re-register) a client instance.

    **Returns:**
    - `appId`: id to send with heartbeats and polls
    - `initialState.connections`: active pairings
    - `initialState.updates`: updates pending for this audience
    """
    check_audience(body.type, settings)

    state = app_service.register_app(db, body.type, body.app_id, body.metadata)
    connections = connection_service.list_active(db)
    pending = update_service.initial_state(db, body.type)

    return {
        "success": True,
        "type": body.type,
        "appId": state.id,
        "initialState": {
            "connections": [c.to_dict() for c in connections],
            "updates": [u.to_dict() for u in pending],
        },
    }


@router.post("/apps/{app_id}/heartbeat")
def heartbeat(app_id: str, db: Session = Depends(get_db)):
    """Refresh a registered client's ``lastSeen``."""
    state = app_service.touch_app(db, app_id)
    if state is None:
        raise NotFound(f"App {app_id} is not registered", {"appId": app_id})
    return {"success": True, "app": state.to_dict()}
