import enum

from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, JSON, Index
from sqlalchemy.sql import func
from marketplace.db.base import Base


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(64), nullable=False, index=True)
    message = Column(String(1024), nullable=False)
    data = Column(JSON, default=dict)  # "metadata" is reserved on declarative models
    priority = Column(String(16), nullable=False, default=NotificationPriority.NORMAL.value)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    source = Column(String(32), nullable=False, default="system")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "message": self.message,
            "data": self.data or {},
            "priority": self.priority,
            "is_read": self.is_read,
            "source": self.source,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
