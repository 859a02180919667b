"""
Update model - one unit of relay traffic.

``content`` is stored as serialized JSON and never interpreted by the
relay. Once ``processed`` is set the row only ever changes its
``acknowledged`` flag.
"""

import json

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, Index

from hive.database import Base, utcnow, to_epoch_ms


class UpdateType:
    SELECTION = "selection"
    VALUE = "value"
    CONNECTION = "connection"

    ALL = (SELECTION, VALUE, CONNECTION)


class Update(Base):
    __tablename__ = "updates"

    id = Column(String(64), primary_key=True)
    type = Column(String(20), nullable=False)

    # Audiences
    source_type = Column(String(50), nullable=False)
    target_type = Column(String(50), nullable=False)

    content = Column(Text, nullable=False)
    priority = Column(Integer, default=0, nullable=False)  # higher = more urgent

    # Two-phase consumption
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime)
    acknowledged = Column(Boolean, default=False, nullable=False)

    error_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_updates_processed", "processed"),
        Index("idx_updates_type", "type"),
        Index("idx_updates_pending", "target_type", "processed", "priority", "created_at"),
    )

    def __repr__(self):
        return f"<Update(id={self.id}, type={self.type}, {self.source_type}->{self.target_type})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "sourceType": self.source_type,
            "targetType": self.target_type,
            "content": json.loads(self.content),
            "priority": self.priority,
            "processed": bool(self.processed),
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "acknowledged": bool(self.acknowledged),
            "errorCount": self.error_count,
            "lastError": self.last_error,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "timestamp": to_epoch_ms(self.created_at) if self.created_at else None,
        }
