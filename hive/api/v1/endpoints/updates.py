"""
Update polling, acknowledgment and value pushes.

Fetching marks rows processed immediately (at consumption time), so
a client may see an update again only through the unacknowledged
listing; clients must apply updates idempotently.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from hive.api.deps import get_app_settings, check_audience
from hive.config import Settings
from hive.database import get_db, from_epoch_ms, utcnow
from hive.errors import ValidationError
from hive.models import UpdateType
from hive.services import app_service, connection_service, update_service

router = APIRouter(prefix="/updates", tags=["Updates"])


# ============ Request Schemas ============

class AcknowledgeRequest(BaseModel):
    update_ids: list[str] = Field(alias="updateIds")


class CellUpdateRequest(BaseModel):
    """A value edit on a paired source locator. ``value`` may be null but not absent."""
    connection_id: Optional[str] = Field(None, alias="connectionId")
    value: Any = None
    timestamp: Optional[int] = None


# ============ POLLING ============

@router.get("/{type}")
def get_updates(
    type: str,
    last_update: int = Query(0, alias="lastUpdate", ge=0, description="Epoch ms of the newest update already seen"),
    app_id: Optional[str] = Query(None, alias="appId"),
    limit: Optional[int] = Query(None, ge=1, description="Batch size, capped by the server limit"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """
    Pending updates for an audience, most urgent first.

    ``lastUpdate`` is the client's cursor and is validated, but it does
    not filter: a pending row older than the cursor is still delivered,
    since the processed flag alone prevents redelivery.

    **Example:**
    ```
    GET /api/v1/updates/target?lastUpdate=0
    ```
    """
    check_audience(type, settings)

    if app_id:
        app_service.touch_app(db, app_id)

    batch = min(limit or settings.pending_batch_limit, settings.pending_batch_limit)
    if last_update:
        from_epoch_ms(last_update)
    updates = update_service.consume(db, type, limit=batch)

    return {"success": True, "updates": [u.to_dict() for u in updates]}


@router.get("/{type}/unacknowledged")
def get_unacknowledged(
    type: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    check_audience(type, settings)
    updates = update_service.fetch_unacknowledged(db, type)
    return {"success": True, "updates": [u.to_dict() for u in updates]}


@router.post("/acknowledge")
def acknowledge_updates(body: AcknowledgeRequest, db: Session = Depends(get_db)):
    """Confirm applied updates. Unknown ids are ignored."""
    count = update_service.acknowledge(db, body.update_ids)
    return {"success": True, "processed": count}


# ============ VALUE PUSH ============

@router.post("/cell")
def push_cell_value(
    body: CellUpdateRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """
    Queue a value change on a paired source locator for the target side.

    **Returns:**
    - 200: The queued update
    - 400: Missing fields, or the connection is inactive / sync-disabled
    - 404: Unknown connection
    """
    if not body.connection_id or "value" not in body.model_fields_set:
        raise ValidationError("Missing required fields: connectionId and value")

    connection = connection_service.get_connection(db, body.connection_id)
    if not connection.active or not connection.sync_enabled:
        raise ValidationError(
            f"Connection {connection.id} is not accepting updates",
            {"connectionId": connection.id, "status": connection.status}
        )

    synced_at = from_epoch_ms(body.timestamp) if body.timestamp else utcnow()

    source_type, target_type = settings.audiences
    update = update_service.enqueue(
        db,
        type=UpdateType.VALUE,
        source_type=source_type,
        target_type=target_type,
        content={
            "connectionId": connection.id,
            "value": body.value,
            "sourceRef": connection.source_ref,
            "targetRef": connection.target_ref,
        },
        priority=settings.value_priority
    )

    connection_service.touch_sync_time(db, connection.id, synced_at)

    return {"success": True, "update": update.to_dict()}
