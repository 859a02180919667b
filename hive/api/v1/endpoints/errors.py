"""
Client error reporting.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from hive.api.deps import get_app_settings, check_audience
from hive.config import Settings
from hive.database import get_db
from hive.services import app_service, error_service

router = APIRouter(prefix="/errors", tags=["Errors"])


class ErrorReportRequest(BaseModel):
    type: str
    error_type: str = Field("Error", alias="errorType")
    message: str
    stack_trace: Optional[str] = Field(None, alias="stackTrace")
    metadata: Optional[dict] = None
    app_id: Optional[str] = Field(None, alias="appId")


@router.post("")
def report_error(
    body: ErrorReportRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    check_audience(body.type, settings)
    entry = error_service.report_error(
        db,
        app_type=body.type,
        error_type=body.error_type,
        message=body.message,
        stack_trace=body.stack_trace,
        metadata=body.metadata
    )
    if body.app_id:
        app_service.record_app_error(db, body.app_id, body.message)
    return {"success": True, "error": entry.to_dict()}


@router.get("/{type}")
def recent_errors(
    type: str,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """Most recent errors for an app type (an audience, or ``relay``)."""
    entries = error_service.recent_errors(db, type, limit)
    return {"success": True, "errors": [e.to_dict() for e in entries]}
