from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Attachment(BaseModel):

    name: str
    url: str
    type: str
    size: Optional[str] = None


class SendMessageRequest(BaseModel):

    receiver_id: str
    content: str = ""
    conversation_id: Optional[str] = None
    attachment: Optional[Attachment] = None


class MessageOut(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    attachment: Optional[Attachment] = None
    is_read: bool = False
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MessageOut":
        return cls(id=doc["_id"], **{k: v for k, v in doc.items() if k != "_id"})


class ConversationOut(BaseModel):

    id: str
    participant_1: str
    participant_2: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    other_user_id: Optional[str] = None
    other_user_name: Optional[str] = None
    other_user_avatar: Optional[str] = None
    other_user_role: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ConversationOut":
        return cls(id=doc["_id"], **{k: v for k, v in doc.items() if k != "_id"})


class ResolveConversationRequest(BaseModel):

    other_user_id: str


class MarkReadRequest(BaseModel):

    conversation_id: str


class TypingRequest(BaseModel):

    conversation_id: str


class TypingSignal(BaseModel):
    """Ephemeral broadcast payload; never persisted."""

    conversation_id: str
    user_id: str
    sent_at: float = Field(description="Sender wall clock, seconds since epoch")
