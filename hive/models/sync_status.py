"""
SyncStatus model - append-only audit trail of sync attempts per connection.
"""

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from hive.database import Base, utcnow


class SyncStatus(Base):
    __tablename__ = "sync_status"

    id = Column(String(64), primary_key=True)
    connection_id = Column(String(64), ForeignKey("connections.id"), nullable=False)
    status = Column(String(20), default="synced", nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)
    last_sync_time = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    connection = relationship("Connection")

    __table_args__ = (
        Index("idx_sync_status_connection", "connection_id"),
    )

    def __repr__(self):
        return f"<SyncStatus(id={self.id}, connection={self.connection_id}, status={self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "connectionId": self.connection_id,
            "status": self.status,
            "retryCount": self.retry_count,
            "lastError": self.last_error,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
