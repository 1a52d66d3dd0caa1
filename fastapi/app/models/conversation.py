from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    # "<a>:<b>" with a < b, unique
    pair_key: str
    participants: List[str]
    created_at: datetime
    # derived summary, advanced only by a newer message id
    last_message_id: int
    last_message_at: datetime
    last_activity_ms: int
    last_message_preview: Optional[str]
    last_sender_id: Optional[str]
