from typing import Optional
from pydantic import BaseModel
from datetime import datetime

from modules.notifications.models.notification import NotificationKind

class NotificationResponse(BaseModel):
    id: int
    kind: NotificationKind
    title: str
    message: str
    created_at: datetime
    updated_at: datetime
    user_id: int
    document_id: Optional[int] = None
    read: bool = False

    model_config = {"from_attributes": True}

class UnreadCountResponse(BaseModel):
    user_id: int
    unread: int

class MarkAllReadResponse(BaseModel):
    user_id: int
    updated: int
