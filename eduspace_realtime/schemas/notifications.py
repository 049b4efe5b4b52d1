from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from eduspace_realtime.models.notification import NotificationType
from eduspace_realtime.schemas.events import NotificationEvent


class NotificationOut(BaseModel):

    id: str
    recipient_id: str
    sender_id: Optional[str] = None
    title: str
    message: str
    type: NotificationType
    related_id: Optional[str] = None
    class_id: Optional[str] = None
    action_type: Optional[str] = None
    is_read: bool = False
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "NotificationOut":
        return cls(id=doc["_id"], **{k: v for k, v in doc.items() if k != "_id"})


class NavigationTarget(BaseModel):
    """What the caller needs to route a clicked notification; routing itself is theirs."""

    type: NotificationType
    related_id: Optional[str] = None
    class_id: Optional[str] = None
    role: Optional[str] = None


class UnreadCounts(BaseModel):

    notifications: int = 0
    messages: int = 0


class FanOutRequest(BaseModel):

    event: NotificationEvent
    recipient_ids: List[str] = Field(default_factory=list)
    idempotency_key: Optional[str] = None


class FanOutResult(BaseModel):

    delivered: int = 0
    skipped: int = 0
    failed: int = 0
    duplicates: int = 0
    notification_ids: List[str] = Field(default_factory=list)
