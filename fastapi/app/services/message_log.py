import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from app.exceptions import EmptyBody, InvalidCursor, MessageTooLong
from app.repositories.conversation_repository import ConversationRepository
from app.repositories.message_repository import MessageRepository
from app.services.conversation_resolver import ConversationResolver


logger = logging.getLogger(__name__)


class MessageLog:
    """Append-only, id-ordered message thread per conversation."""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        max_body_length: int = 4000,
        preview_length: int = 200,
        max_page_size: int = 200,
        default_page_size: int = 50,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._resolver = ConversationResolver(conversation_repo)
        self._max_body_length = max_body_length
        self._preview_length = preview_length
        self._max_page_size = max_page_size
        self._default_page_size = default_page_size

    async def append(
        self,
        conversation_id: str,
        sender_id: str,
        body: str,
        attachments: Optional[List[str]] = None,
        client_message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        conversation = await self._resolver.get_for_participant(conversation_id, sender_id)
        content = (body or "").strip()
        if not content:
            raise EmptyBody()
        if len(content) > self._max_body_length:
            raise MessageTooLong(len(content), self._max_body_length)

        if client_message_id:
            # retried request: hand back what the first attempt stored
            key = self._message_repo.dedupe_key(conversation["_id"], sender_id, client_message_id)
            existing = await self._message_repo.find_by_dedupe_key(key)
            if existing:
                logger.info("Replayed append %s as message %s", key, existing["id"])
                return existing

        message, created = await self._message_repo.append_message(
            conversation["_id"],
            sender_id,
            content,
            attachments=attachments,
            client_message_id=client_message_id,
        )
        if created:
            await self._conversation_repo.record_message(
                conversation["_id"], message, content[: self._preview_length]
            )
        return message

    async def list(
        self,
        conversation_id: str,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        await self._resolver.get(conversation_id)
        after = self._check_after(after)
        return await self._message_repo.get_messages_after(
            conversation_id, after=after, limit=self.page_limit(limit)
        )

    def page_limit(self, limit: Optional[int] = None) -> int:
        if limit is None:
            limit = self._default_page_size
        return max(1, min(limit, self._max_page_size))

    async def iterate(
        self,
        conversation_id: str,
        after: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Lazily walk the thread from ``after`` to the current end, one page at a time."""
        position = self._check_after(after)
        page_size = self.page_limit(page_size)
        while True:
            page = await self.list(conversation_id, after=position, limit=page_size)
            for message in page:
                yield message
            if len(page) < page_size:
                return
            position = page[-1]["id"]

    @staticmethod
    def _check_after(after: Optional[int]) -> int:
        if after is None:
            return 0
        if after < 0:
            raise InvalidCursor("'after' must be a non-negative message id", {"after": after})
        return after
