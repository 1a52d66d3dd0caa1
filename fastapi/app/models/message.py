from datetime import datetime
from typing import List, Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    # public message id, strictly increasing per conversation
    seq: int
    sender_id: str
    body: str
    attachments: List[str]
    sent_at: datetime
    # "<conversation_id>:<sender_id>:<client_message_id>", only when the client sent a token
    dedupe_key: Optional[str]
    client_message_id: Optional[str]
