import logging
from typing import Any, Dict, List, Optional, Tuple

from app.exceptions import InvalidCursor
from app.repositories.conversation_repository import ConversationRepository
from app.repositories.message_repository import MessageRepository
from app.repositories.read_cursor_repository import ReadCursorRepository
from app.services.conversation_resolver import ConversationResolver, other_participant


logger = logging.getLogger(__name__)


class ThreadReader:

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        cursor_repo: ReadCursorRepository,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._cursor_repo = cursor_repo
        self._resolver = ConversationResolver(conversation_repo)

    async def unread_count(self, conversation_id: str, participant_id: str) -> int:
        """Messages past the participant's read cursor, excluding their own sends."""
        conversation = await self._resolver.get_for_participant(conversation_id, participant_id)
        last_read = await self._cursor_repo.get(conversation["_id"], participant_id)
        return await self._message_repo.count_unread(conversation["_id"], participant_id, last_read)

    async def last_read(self, conversation_id: str, participant_id: str) -> int:
        conversation = await self._resolver.get_for_participant(conversation_id, participant_id)
        return await self._cursor_repo.get(conversation["_id"], participant_id)

    async def mark_read(self, conversation_id: str, participant_id: str, upto_message_id: int) -> int:
        if upto_message_id < 0:
            raise InvalidCursor(
                "'upto_message_id' must be a non-negative message id",
                {"upto_message_id": upto_message_id},
            )
        conversation = await self._resolver.get_for_participant(conversation_id, participant_id)
        # a cursor past the end would swallow messages that do not exist yet
        latest = await self._message_repo.latest_id(conversation["_id"])
        upto = min(upto_message_id, latest)
        value = await self._cursor_repo.advance(conversation["_id"], participant_id, upto)
        logger.debug("Read cursor %s/%s now at %s", conversation_id, participant_id, value)
        return value

    async def list_for_participant(
        self, participant_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Conversation summaries, most recent activity first."""
        conversations, next_cursor = await self._conversation_repo.list_for_user(
            participant_id, limit=limit, cursor=cursor
        )
        cursors = await self._cursor_repo.get_many(participant_id, [c["_id"] for c in conversations])
        summaries = []
        for convo in conversations:
            unread = 0
            if convo.get("last_message_id"):
                unread = await self._message_repo.count_unread(
                    convo["_id"], participant_id, cursors.get(convo["_id"], 0)
                )
            last_message = None
            if convo.get("last_message_id"):
                last_message = {
                    "id": convo["last_message_id"],
                    "sender_id": convo.get("last_sender_id"),
                    "preview": convo.get("last_message_preview"),
                    "sent_at": convo.get("last_message_at"),
                }
            summaries.append({
                "conversation_id": convo["_id"],
                "other_participant": other_participant(convo, participant_id),
                "last_message": last_message,
                "unread_count": unread,
                "created_at": convo.get("created_at"),
            })
        return summaries, next_cursor
