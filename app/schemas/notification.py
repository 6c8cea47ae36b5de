# classroom-bazaar/app/schemas/notification.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class NotificationResponse(BaseModel):
    id: int
    type: str  # "mystery_box_opened" など
    title: str
    message: str
    link: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


class NotificationReadResponse(BaseModel):
    """既読にした通知と、残りの未読数"""

    id: int
    unread_count: int
