from datetime import datetime
from typing import Literal, Optional, TypedDict


NotificationType = Literal[
    "message",
    "assignment",
    "schedule",
    "access_request",
    "submission",
    "grade",
    "announcement",
]


class NotificationDocument(TypedDict, total=False):
    _id: str
    recipient_id: str
    sender_id: Optional[str]
    title: str
    message: str
    type: NotificationType
    related_id: Optional[str]
    class_id: Optional[str]
    action_type: Optional[str]
    # only set when the caller supplied an idempotency key
    dedup_key: Optional[str]
    is_read: bool
    created_at: datetime
