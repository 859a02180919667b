"""
Relay health metrics and on-demand reaping.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from hive.api.deps import get_app_settings
from hive.config import Settings
from hive.database import get_db
from hive.services import app_service, health_service

router = APIRouter(prefix="/health", tags=["Health"])


class ReapRequest(BaseModel):
    retention_minutes: Optional[int] = Field(None, alias="retentionMinutes", ge=0)


@router.get("/metrics")
def metrics(db: Session = Depends(get_db), settings: Settings = Depends(get_app_settings)):
    """
    Active connections, pending updates, errors in the last hour and
    mean sync latency. Threshold breaches are listed in ``warnings``.
    """
    return {"success": True, "metrics": health_service.snapshot(db, settings)}


@router.get("/stale-apps")
def stale_apps(
    minutes: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    threshold = settings.stale_app_minutes if minutes is None else minutes
    apps = app_service.list_stale_apps(db, threshold)
    return {"success": True, "staleApps": [a.to_dict() for a in apps]}


@router.post("/reap")
def reap_now(
    body: Optional[ReapRequest] = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """Run one reaper pass, optionally with a custom retention window."""
    retention = settings.retention_minutes
    if body is not None and body.retention_minutes is not None:
        retention = body.retention_minutes
    deleted = health_service.reap(db, retention, settings.error_retention_multiplier)
    return {"success": True, "deleted": deleted}
