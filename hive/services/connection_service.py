"""
Connection registry.

Pairings are keyed by (original_source_ref, target_ref). Creating a
pairing that already exists reactivates or returns the existing row,
so clients on an unreliable link can retry creation freely.
"""

import json
import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hive.database import utcnow
from hive.errors import ConstraintViolation, NotFound, ValidationError
from hive.models import Connection, ConnectionStatus, SyncStatus

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return f"conn-{uuid.uuid4().hex}"


def _find_pair(db: Session, source_ref: str, target_ref: str) -> Optional[Connection]:
    return db.query(Connection).filter(
        Connection.original_source_ref == source_ref,
        Connection.target_ref == target_ref
    ).first()


def get_connection(db: Session, connection_id: str) -> Connection:
    """Get a connection by id or raise NotFound."""
    connection = db.get(Connection, connection_id)
    if connection is None:
        raise NotFound(f"Connection {connection_id} not found", {"connectionId": connection_id})
    return connection


def create_or_reactivate(
    db: Session,
    source_ref: str,
    target_ref: str,
    metadata: dict = None
) -> Connection:
    """
    Create a pairing, or reuse the existing row for the same pair.

    - Existing and inactive -> reactivated (active, status=active,
      last_sync_time refreshed) and returned
    - Existing and active -> returned unchanged
    - Otherwise -> new row with original_source_ref = source_ref

    A concurrent insert of the same pair loses on the unique
    constraint; the loser re-reads and returns the winner's row.
    """
    if not source_ref or not target_ref:
        raise ValidationError("Both sourceRef and targetRef are required")

    existing = _find_pair(db, source_ref, target_ref)
    if existing:
        if not existing.active:
            existing.active = True
            existing.sync_enabled = True
            existing.status = ConnectionStatus.ACTIVE
            existing.retry_count = 0
            existing.last_error = None
            existing.last_sync_time = utcnow()
            db.commit()
            db.refresh(existing)
            logger.info("Reactivated connection %s", existing.id)
        return existing

    connection = Connection(
        id=_new_id(),
        source_ref=source_ref,
        target_ref=target_ref,
        original_source_ref=source_ref,
        meta=json.dumps(metadata) if metadata else None
    )
    db.add(connection)

    try:
        db.commit()
        db.refresh(connection)
    except IntegrityError as exc:
        # Race condition - another request created the same pair
        db.rollback()
        winner = _find_pair(db, source_ref, target_ref)
        if winner is None:
            raise ConstraintViolation(
                f"Connection {source_ref} -> {target_ref} violates a constraint",
                {"sourceRef": source_ref, "targetRef": target_ref}
            ) from exc
        return winner

    logger.info("Created connection %s (%s -> %s)", connection.id, source_ref, target_ref)
    return connection


def relocate(db: Session, connection_id: str, new_source_ref: str) -> Connection:
    """Move the source locator; original_source_ref keeps the identity."""
    if not new_source_ref:
        raise ValidationError("A new sourceRef is required")

    connection = get_connection(db, connection_id)
    connection.source_ref = new_source_ref
    db.commit()
    db.refresh(connection)
    return connection


def update_settings(
    db: Session,
    connection_id: str,
    active: Optional[bool] = None,
    sync_enabled: Optional[bool] = None,
    source_ref: Optional[str] = None
) -> Connection:
    """Apply a partial update from the PUT surface. Unset fields are left alone."""
    connection = get_connection(db, connection_id)

    if source_ref is not None and source_ref != connection.source_ref:
        connection.source_ref = source_ref
    if active is not None:
        connection.active = active
        if active and connection.status == ConnectionStatus.DELETED:
            connection.status = ConnectionStatus.ACTIVE
    if sync_enabled is not None:
        connection.sync_enabled = sync_enabled
    connection.last_sync_time = utcnow()

    db.commit()
    db.refresh(connection)
    return connection


def _apply_status(connection: Connection, status: str, error: Optional[str]) -> None:
    connection.status = status
    connection.last_error = error
    connection.last_sync_time = utcnow()
    if status == ConnectionStatus.ERROR:
        connection.retry_count = (connection.retry_count or 0) + 1
    else:
        connection.retry_count = 0


def update_status(
    db: Session,
    connection_id: str,
    status: str,
    error: Optional[str] = None
) -> Connection:
    """
    Record a health transition.

    ``retry_count`` grows by one on every ``error`` and resets to 0 on
    any other status; upstream backoff decisions read it.
    """
    if status not in ConnectionStatus.ALL:
        raise ValidationError(f"Invalid connection status: {status}")

    connection = get_connection(db, connection_id)
    _apply_status(connection, status, error)
    db.commit()
    db.refresh(connection)
    return connection


def soft_delete(db: Session, connection_id: str) -> Connection:
    connection = get_connection(db, connection_id)
    connection.active = False
    connection.status = ConnectionStatus.DELETED
    connection.last_sync_time = utcnow()
    db.commit()
    db.refresh(connection)
    logger.info("Soft-deleted connection %s", connection_id)
    return connection


def touch_sync_time(db: Session, connection_id: str, when=None) -> Connection:
    connection = get_connection(db, connection_id)
    connection.last_sync_time = when or utcnow()
    db.commit()
    db.refresh(connection)
    return connection


# ============ QUERIES ============

def list_active(db: Session) -> list[Connection]:
    return db.query(Connection).filter(
        Connection.active.is_(True)
    ).order_by(Connection.created_at).all()


def list_stale(db: Session, threshold_minutes: int) -> list[Connection]:
    """Active connections whose last sync is older than the threshold."""
    cutoff = utcnow() - timedelta(minutes=threshold_minutes)
    return db.query(Connection).filter(
        Connection.active.is_(True),
        Connection.last_sync_time < cutoff
    ).order_by(Connection.last_sync_time).all()


# ============ SYNC STATUS ============

def record_sync_status(
    db: Session,
    connection_id: str,
    status: str = "synced",
    error: Optional[str] = None
) -> SyncStatus:
    """
    Append a SyncStatus row and mirror the outcome onto the connection,
    in one transaction.

    ``synced`` maps to an active connection; ``error`` bumps its
    retry count.
    """
    connection = get_connection(db, connection_id)
    if status == ConnectionStatus.ERROR:
        connection_status = ConnectionStatus.ERROR
    elif connection.status == ConnectionStatus.DELETED:
        connection_status = ConnectionStatus.DELETED
    else:
        connection_status = ConnectionStatus.ACTIVE
    _apply_status(connection, connection_status, error)

    record = SyncStatus(
        id=f"sync-{uuid.uuid4().hex}",
        connection_id=connection_id,
        status=status,
        retry_count=connection.retry_count,
        last_error=error,
        last_sync_time=connection.last_sync_time
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConstraintViolation(f"Sync status for {connection_id} rejected: {exc}") from exc
    db.refresh(record)
    return record


def list_sync_history(db: Session, connection_id: str, limit: int = 50) -> list[SyncStatus]:
    get_connection(db, connection_id)
    return db.query(SyncStatus).filter(
        SyncStatus.connection_id == connection_id
    ).order_by(SyncStatus.created_at.desc()).limit(limit).all()
