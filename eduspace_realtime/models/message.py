from datetime import datetime
from typing import Optional, TypedDict


class AttachmentDocument(TypedDict, total=False):
    name: str
    url: str
    type: str
    size: Optional[str]


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    attachment: Optional[AttachmentDocument]
    is_read: bool
    created_at: datetime
