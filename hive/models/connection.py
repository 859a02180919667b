"""
Connection model - a pairing between a source locator and a target locator.

Rows are never physically deleted: retiring a pairing sets
``active=0, status='deleted'`` so that re-creating the same pair
reactivates the original row.
"""

import json

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, Index, UniqueConstraint

from hive.database import Base, utcnow


class ConnectionStatus:
    ACTIVE = "active"
    ERROR = "error"
    DELETED = "deleted"

    ALL = (ACTIVE, ERROR, DELETED)


class Connection(Base):
    __tablename__ = "connections"

    id = Column(String(64), primary_key=True)

    # ============ LOCATORS ============
    source_ref = Column(String(255), nullable=False)  # e.g. "Sheet1!A1", follows relocation
    target_ref = Column(String(255), nullable=False)  # e.g. a slide element id
    original_source_ref = Column(String(255), nullable=False)  # stable identity key

    # ============ FLAGS & HEALTH ============
    active = Column(Boolean, default=True, nullable=False)
    sync_enabled = Column(Boolean, default=True, nullable=False)
    status = Column(String(20), default=ConnectionStatus.ACTIVE, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)

    last_sync_time = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    meta = Column("metadata", Text)

    __table_args__ = (
        UniqueConstraint("original_source_ref", "target_ref", name="uq_connections_pair"),
        Index("idx_connections_active", "active"),
    )

    def __repr__(self):
        return f"<Connection(id={self.id}, source={self.source_ref}, target={self.target_ref}, status={self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sourceRef": self.source_ref,
            "targetRef": self.target_ref,
            "originalSourceRef": self.original_source_ref,
            "active": bool(self.active),
            "syncEnabled": bool(self.sync_enabled),
            "status": self.status,
            "retryCount": self.retry_count,
            "lastError": self.last_error,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "metadata": json.loads(self.meta) if self.meta else {},
        }
