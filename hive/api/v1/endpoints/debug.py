"""
Debug endpoints for inspecting and resetting the relay store.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from hive.database import get_db, engine as default_engine
from hive.services import health_service
from hive.services.migration_service import current_version

router = APIRouter(prefix="/debug", tags=["Debug"])


def _engine(request: Request):
    return getattr(request.app.state, "engine", None) or default_engine


@router.get("/db/stats")
def get_db_stats(request: Request, db: Session = Depends(get_db)):
    """Row counts per table and the schema version."""
    return {
        "success": True,
        "schemaVersion": current_version(_engine(request)),
        "tables": health_service.table_counts(db),
    }


@router.post("/cleanup")
def cleanup(db: Session = Depends(get_db)):
    """Empty every table. Intended for integration test runs."""
    health_service.clear_all(db)
    return {"success": True}


@router.post("/vacuum")
def vacuum(request: Request):
    health_service.vacuum(_engine(request))
    return {"success": True}


@router.post("/backup")
def backup(request: Request):
    """Online copy of the store next to the database file."""
    path = health_service.backup(_engine(request))
    return {"success": True, "path": path}
