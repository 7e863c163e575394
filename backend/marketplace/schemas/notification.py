from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NotificationResponse(BaseModel):
    id: int
    type: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BulkDeleteRequest(BaseModel):
    notification_ids: List[int]


class NotificationStats(BaseModel):
    total: int
    unread: int
    read: int
    by_type: Dict[str, int]
    by_priority: Dict[str, int]
