from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class MessageCreate(BaseModel):

    body: str
    attachments: List[str] = Field(default_factory=list)
    # idempotency token; a retried send with the same token returns the stored message
    client_message_id: Optional[str] = Field(default=None, max_length=128)


class MessagePublic(BaseModel):

    id: int
    conversation_id: str
    sender_id: str
    body: str
    attachments: List[str] = Field(default_factory=list)
    sent_at: datetime
    client_message_id: Optional[str] = None


class MessagePage(BaseModel):

    items: List[MessagePublic]
    # pass as ?after= to continue
    next_after: Optional[int] = None


class MarkReadRequest(BaseModel):

    upto_message_id: int = Field(ge=0)


class ReadState(BaseModel):

    conversation_id: str
    last_read_message_id: int
    unread_count: int


class UnreadCount(BaseModel):

    conversation_id: str
    unread_count: int
