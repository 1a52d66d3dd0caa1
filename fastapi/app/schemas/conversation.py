from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):

    participant_id: str = Field(min_length=1)


class ConversationPublic(BaseModel):

    id: str
    participants: List[str]
    other_participant: str
    created_at: datetime


class LastMessagePreview(BaseModel):

    id: int
    sender_id: Optional[str] = None
    preview: Optional[str] = None
    sent_at: Optional[datetime] = None


class ConversationSummary(BaseModel):

    conversation_id: str
    other_participant: str
    last_message: Optional[LastMessagePreview] = None
    unread_count: int = 0
    created_at: Optional[datetime] = None


class ConversationPage(BaseModel):

    items: List[ConversationSummary]
    next_cursor: Optional[str] = None
