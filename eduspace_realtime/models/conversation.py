from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    participant_1: str
    participant_2: str
    # sorted "a:b" of both participants; unique, so one row per unordered pair
    pair_key: str
    participants: List[str]
    last_message: Optional[str]
    last_message_at: Optional[datetime]
    created_at: datetime
