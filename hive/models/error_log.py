"""
ErrorLog model - append-only diagnostics reported by participating apps
and by the relay itself.
"""

import json

from sqlalchemy import Column, String, Text, DateTime, Index

from hive.database import Base, utcnow


class ErrorLog(Base):
    __tablename__ = "error_logs"

    id = Column(String(64), primary_key=True)
    app_type = Column(String(50), nullable=False)  # audience, or "relay" for server-side errors
    error_type = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    stack_trace = Column(Text)
    meta = Column("metadata", Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_error_logs_app_created", "app_type", "created_at"),
    )

    def __repr__(self):
        return f"<ErrorLog(id={self.id}, app={self.app_type}, type={self.error_type})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "appType": self.app_type,
            "errorType": self.error_type,
            "message": self.message,
            "stackTrace": self.stack_trace,
            "metadata": json.loads(self.meta) if self.meta else {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
