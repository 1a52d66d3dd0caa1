from datetime import datetime
from typing import TypedDict


class ReadCursorDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    participant_id: str
    last_read_message_id: int
    updated_at: datetime
