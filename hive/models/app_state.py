"""
AppState model - liveness record per registered client instance.
"""

import json

from sqlalchemy import Column, String, Text, Integer, DateTime, Index

from hive.database import Base, utcnow


class AppState(Base):
    __tablename__ = "app_states"

    id = Column(String(128), primary_key=True)
    app_type = Column(String(50), nullable=False)  # one of the configured audiences
    status = Column(String(20), default="active", nullable=False)
    connection_count = Column(Integer, default=0, nullable=False)
    last_seen = Column(DateTime, default=utcnow)
    last_error = Column(Text)
    meta = Column("metadata", Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_app_states_status", "status"),
    )

    def __repr__(self):
        return f"<AppState(id={self.id}, type={self.app_type}, status={self.status})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "appType": self.app_type,
            "status": self.status,
            "connectionCount": self.connection_count,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
            "lastError": self.last_error,
            "metadata": json.loads(self.meta) if self.meta else {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
