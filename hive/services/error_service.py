"""
ErrorLog writer.

``log_error`` is best-effort: a failure to record an error is itself
only logged, never raised, so error reporting cannot mask the error
being reported.
"""

import json
import logging
import traceback
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hive.models import ErrorLog

logger = logging.getLogger(__name__)

RELAY_APP_TYPE = "relay"


def report_error(
    db: Session,
    app_type: str,
    error_type: str,
    message: str,
    stack_trace: Optional[str] = None,
    metadata: dict = None
) -> ErrorLog:
    """Append an error reported by a client. Raises on store failure."""
    entry = ErrorLog(
        id=f"err-{uuid.uuid4().hex}",
        app_type=app_type,
        error_type=error_type,
        message=message,
        stack_trace=stack_trace,
        meta=json.dumps(metadata or {}, default=str)
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def log_error(
    session_factory,
    exc: BaseException,
    app_type: str = RELAY_APP_TYPE,
    metadata: dict = None
) -> Optional[ErrorLog]:
    """
    Record an exception in a fresh session. Never raises.

    Uses its own session so a request session in a failed state does
    not block the write.
    """
    error_type = getattr(exc, "error_type", type(exc).__name__)
    merged = dict(getattr(exc, "metadata", None) or {})
    merged.update(metadata or {})
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    try:
        db = session_factory()
    except Exception as factory_exc:  # noqa: BLE001
        logger.warning("Could not open session to record %s: %s", error_type, factory_exc)
        return None

    try:
        return report_error(db, app_type, error_type, str(exc), stack, merged)
    except (SQLAlchemyError, TypeError, ValueError) as write_exc:
        db.rollback()
        logger.warning("Could not record %s in error log: %s", error_type, write_exc)
        return None
    finally:
        db.close()


def recent_errors(db: Session, app_type: str, limit: int = 100) -> list[ErrorLog]:
    return db.query(ErrorLog).filter(
        ErrorLog.app_type == app_type
    ).order_by(ErrorLog.created_at.desc()).limit(limit).all()
