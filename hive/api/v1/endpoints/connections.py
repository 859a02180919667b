"""
Connection registry endpoints.

Accepts both the generic locator names (``sourceRef``/``targetRef``)
and the cell/element names used by the spreadsheet and slide clients
(``cellId``/``slideElementId``).

Every change to a pairing is also queued as a ``connection`` update
for the target audience, so the other client learns about it on its
next poll.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from hive.api.deps import get_app_settings
from hive.config import Settings
from hive.database import get_db, utcnow
from hive.errors import ValidationError
from hive.models import Connection, UpdateType
from hive.services import connection_service, update_service

router = APIRouter(prefix="/connections", tags=["Connections"])


# ============ Request Schemas ============

class ConnectionCreateRequest(BaseModel):
    source_ref: Optional[str] = Field(None, alias="sourceRef")
    cell_id: Optional[str] = Field(None, alias="cellId")
    target_ref: Optional[str] = Field(None, alias="targetRef")
    slide_element_id: Optional[str] = Field(None, alias="slideElementId")
    metadata: Optional[dict] = None


class ConnectionUpdateRequest(BaseModel):
    active: Optional[bool] = None
    sync_enabled: Optional[bool] = Field(None, alias="syncEnabled")
    source_ref: Optional[str] = Field(None, alias="sourceRef")
    cell_id: Optional[str] = Field(None, alias="cellId")


class SyncStatusRequest(BaseModel):
    status: str = "synced"
    error: Optional[str] = None


def _notify(db: Session, settings: Settings, action: str, connection: Connection) -> None:
    source_type, target_type = settings.audiences
    update_service.enqueue(
        db,
        type=UpdateType.CONNECTION,
        source_type=source_type,
        target_type=target_type,
        content={"action": action, "connection": connection.to_dict()},
        priority=settings.connection_priority
    )


# ============ REGISTRY ============

@router.post("")
def create_connection(
    body: ConnectionCreateRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """
    Create a pairing, or reactivate/return the existing one.

    Safe to retry: the same (sourceRef, targetRef) always yields the
    same connection id.
    """
    source_ref = body.source_ref or body.cell_id
    target_ref = body.target_ref or body.slide_element_id
    if not source_ref or not target_ref:
        raise ValidationError("Missing required fields: sourceRef/cellId and targetRef/slideElementId")

    connection = connection_service.create_or_reactivate(db, source_ref, target_ref, body.metadata)
    _notify(db, settings, "created", connection)
    return {"success": True, "connection": connection.to_dict()}


@router.get("")
def list_connections(db: Session = Depends(get_db)):
    connections = connection_service.list_active(db)
    return {"success": True, "connections": [c.to_dict() for c in connections]}


@router.get("/health")
def connection_health(
    minutes: Optional[int] = Query(None, ge=0, description="Staleness threshold, defaults to server setting"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """Active connections that have not synced within the threshold."""
    threshold = settings.stale_connection_minutes if minutes is None else minutes
    stale = connection_service.list_stale(db, threshold)
    return {
        "success": True,
        "staleConnections": [c.to_dict() for c in stale],
        "timestamp": utcnow().isoformat(),
    }


@router.get("/{connection_id}")
def get_connection(connection_id: str, db: Session = Depends(get_db)):
    connection = connection_service.get_connection(db, connection_id)
    return {"success": True, "connection": connection.to_dict()}


@router.put("/{connection_id}")
def update_connection(
    connection_id: str,
    body: ConnectionUpdateRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """
    Toggle ``active``/``syncEnabled`` and/or relocate the source locator.

    Relocation keeps ``originalSourceRef``, so the pairing identity
    does not change.
    """
    new_source = body.source_ref or body.cell_id
    connection = connection_service.update_settings(
        db,
        connection_id,
        active=body.active,
        sync_enabled=body.sync_enabled,
        source_ref=new_source
    )
    _notify(db, settings, "updated", connection)
    return {"success": True, "connection": connection.to_dict()}


@router.delete("/{connection_id}")
def delete_connection(
    connection_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """Soft-delete: the row stays, inactive, so re-creating it reactivates it."""
    connection = connection_service.soft_delete(db, connection_id)
    _notify(db, settings, "deleted", connection)
    return {"success": True}


# ============ SYNC STATUS ============

@router.post("/{connection_id}/sync")
def record_sync(
    connection_id: str,
    body: SyncStatusRequest,
    db: Session = Depends(get_db)
):
    record = connection_service.record_sync_status(db, connection_id, body.status, body.error)
    connection = connection_service.get_connection(db, connection_id)
    return {
        "success": True,
        "syncStatus": record.to_dict(),
        "connection": connection.to_dict(),
    }


@router.get("/{connection_id}/sync")
def sync_history(
    connection_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    history = connection_service.list_sync_history(db, connection_id, limit)
    return {"success": True, "history": [s.to_dict() for s in history]}
