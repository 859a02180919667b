"""
Update queue - the append-only relay log.

Consumption is two-phase:
1. processed: set when a consumer fetches the row (delivery is
   at-least-once, consumers apply idempotently)
2. acknowledged: set when the consumer confirms it applied the row

The queue never interprets ``content``; it is stored as JSON text.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import literal_column
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hive.database import utcnow
from hive.errors import ConstraintViolation, ValidationError
from hive.models import Update, UpdateType

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return f"upd-{uuid.uuid4().hex}"


def enqueue(
    db: Session,
    type: str,
    source_type: str,
    target_type: str,
    content,
    priority: int = 0,
    update_id: str = None
) -> Update:
    """
    Append an update to the log.

    Raises:
        ValidationError: Unknown update type or unserializable content
        ConstraintViolation: The id is already taken
    """
    if type not in UpdateType.ALL:
        raise ValidationError(f"Invalid update type: {type}")

    try:
        payload = json.dumps(content)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Update content is not serializable: {exc}") from exc

    update = Update(
        id=update_id or _new_id(),
        type=type,
        source_type=source_type,
        target_type=target_type,
        content=payload,
        priority=priority
    )
    db.add(update)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConstraintViolation(
            f"Update {update.id} already exists",
            {"updateId": update.id}
        ) from exc

    db.refresh(update)
    logger.debug("Enqueued %s update %s (%s -> %s)", type, update.id, source_type, target_type)
    return update


def fetch_pending(
    db: Session,
    target_type: str,
    limit: int = 100,
    offset: int = 0,
    since: Optional[datetime] = None
) -> list[Update]:
    """
    Unprocessed updates for an audience.

    Ordered by priority (highest first), then oldest first within a
    priority band; insertion order breaks timestamp ties.
    """
    query = db.query(Update).filter(
        Update.target_type == target_type,
        Update.processed.is_(False)
    )
    if since is not None:
        query = query.filter(Update.created_at > since)

    query = query.order_by(
        Update.priority.desc(),
        Update.created_at.asc(),
        literal_column("updates.rowid").asc()
    )
    return query.offset(offset).limit(limit).all()


def count_pending(db: Session, target_type: Optional[str] = None) -> int:
    query = db.query(Update).filter(Update.processed.is_(False))
    if target_type:
        query = query.filter(Update.target_type == target_type)
    return query.count()


def mark_processed(db: Session, ids: Iterable[str]) -> int:
    """
    Mark updates processed. Unknown or already-processed ids are
    ignored, since duplicate confirmation is expected under retry.

    Returns:
        int: Number of rows that moved to processed
    """
    ids = [i for i in dict.fromkeys(ids) if i]
    if not ids:
        return 0

    count = db.query(Update).filter(
        Update.id.in_(ids),
        Update.processed.is_(False)
    ).update(
        {Update.processed: True, Update.processed_at: utcnow()},
        synchronize_session=False
    )
    db.commit()
    return count


def acknowledge(db: Session, ids: Iterable[str]) -> int:
    """
    Confirm application of updates: processed (if not yet) and
    acknowledged. Unknown ids are ignored.

    Returns:
        int: Number of known ids acknowledged
    """
    ids = [i for i in dict.fromkeys(ids) if i]
    if not ids:
        return 0

    mark_processed(db, ids)
    count = db.query(Update).filter(
        Update.id.in_(ids)
    ).update(
        {Update.acknowledged: True},
        synchronize_session=False
    )
    db.commit()
    return count


def fetch_unacknowledged(db: Session, target_type: str) -> list[Update]:
    """Processed but never confirmed; used for reconciliation."""
    return db.query(Update).filter(
        Update.target_type == target_type,
        Update.processed.is_(True),
        Update.acknowledged.is_(False)
    ).order_by(Update.created_at.asc()).all()


def consume(db: Session, target_type: str, limit: int = 100) -> list[Update]:
    """
    Fetch pending updates and mark them processed in the same call.

    Every unprocessed row is eligible regardless of age, so a row cut
    from an earlier batch by the limit is returned by a later call even
    when newer, higher-priority rows were delivered first.

    Rows are processed at consumption time, not at application time:
    a consumer that crashes between this call and applying them will
    not see them again from ``fetch_pending``. Clients mitigate this
    by applying idempotently; ``fetch_unacknowledged`` exposes the gap.
    """
    updates = fetch_pending(db, target_type, limit=limit)
    if updates:
        mark_processed(db, [u.id for u in updates])
        for update in updates:
            db.refresh(update)
    return updates


def initial_state(db: Session, target_type: Optional[str] = None) -> list[Update]:
    """Pending updates in delivery order, for a freshly registered client."""
    query = db.query(Update).filter(Update.processed.is_(False))
    if target_type:
        query = query.filter(Update.target_type == target_type)
    return query.order_by(
        Update.priority.desc(),
        Update.created_at.asc(),
        literal_column("updates.rowid").asc()
    ).all()
