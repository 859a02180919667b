"""
Selection broadcasting.

A client posts its current selection; the relay queues it for the
opposite audience as an opaque payload.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from hive.api.deps import get_app_settings, check_audience
from hive.config import Settings
from hive.database import get_db
from hive.errors import ValidationError
from hive.models import UpdateType
from hive.services import update_service

router = APIRouter(prefix="/selection", tags=["Selection"])


class BroadcastRequest(BaseModel):
    """Either ``selection`` (cell side) or ``element`` (element side)."""
    selection: Optional[Any] = None
    element: Optional[Any] = None
    timestamp: Optional[int] = None


@router.post("/{type}/broadcast")
def broadcast_selection(
    type: str,
    body: BroadcastRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    check_audience(type, settings)

    content = body.selection if body.selection is not None else body.element
    if content is None:
        raise ValidationError("Missing selection or element data")

    update = update_service.enqueue(
        db,
        type=UpdateType.SELECTION,
        source_type=type,
        target_type=settings.opposite(type),
        content=content,
        priority=settings.selection_priority
    )
    return {"success": True, "update": update.to_dict()}
