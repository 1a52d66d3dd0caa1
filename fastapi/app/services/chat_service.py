import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from fastapi.encoders import jsonable_encoder

from app.services.conversation_resolver import ConversationResolver, other_participant
from app.services.message_log import MessageLog
from app.services.thread_reader import ThreadReader
from app.utils.realtime_bus import get_bus, user_channel
from app.utils.websocket_manager import manager


logger = logging.getLogger(__name__)

Publisher = Callable[[str, str], Awaitable[None]]


async def publish_to_user(user_id: str, payload: str) -> None:
    bus = await get_bus()
    if bus.enabled:
        await bus.publish(user_channel(user_id), payload)
    else:
        await manager.send_personal_message(user_id, payload)


class ChatService:
    """The surface the HTTP and WebSocket layers talk to."""

    def __init__(
        self,
        resolver: ConversationResolver,
        message_log: MessageLog,
        thread_reader: ThreadReader,
        publish: Publisher = publish_to_user,
    ) -> None:
        self._resolver = resolver
        self._message_log = message_log
        self._thread_reader = thread_reader
        self._publish = publish

    async def start_conversation(self, user_id: str, other_id: str) -> Dict[str, Any]:
        conversation_id = await self._resolver.resolve(user_id, other_id)
        return await self.get_conversation(conversation_id, user_id)

    async def get_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        conversation = await self._resolver.get_for_participant(conversation_id, user_id)
        return {
            "id": conversation["_id"],
            "participants": conversation["participants"],
            "other_participant": other_participant(conversation, user_id),
            "created_at": conversation["created_at"],
        }

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        body: str,
        attachments: Optional[List[str]] = None,
        client_message_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        message = await self._message_log.append(
            conversation_id, sender_id, body, attachments=attachments, client_message_id=client_message_id
        )
        conversation = await self._resolver.get(conversation_id)
        await self._fanout(conversation["participants"], {"type": "message", "message": message})
        return message

    async def get_history(
        self, conversation_id: str, user_id: str, after: Optional[int] = None, limit: Optional[int] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        await self._resolver.get_for_participant(conversation_id, user_id)
        limit = self._message_log.page_limit(limit)
        items = await self._message_log.list(conversation_id, after=after, limit=limit)
        next_after = items[-1]["id"] if len(items) == limit else None
        return items, next_after

    async def unread_count(self, conversation_id: str, user_id: str) -> int:
        return await self._thread_reader.unread_count(conversation_id, user_id)

    async def mark_read(self, conversation_id: str, user_id: str, upto_message_id: int) -> Dict[str, Any]:
        last_read = await self._thread_reader.mark_read(conversation_id, user_id, upto_message_id)
        unread = await self._thread_reader.unread_count(conversation_id, user_id)
        conversation = await self._resolver.get(conversation_id)
        await self._fanout(
            [other_participant(conversation, user_id)],
            {
                "type": "read",
                "conversation_id": conversation_id,
                "reader_id": user_id,
                "last_read_message_id": last_read,
            },
        )
        return {"conversation_id": conversation_id, "last_read_message_id": last_read, "unread_count": unread}

    async def list_conversations(self, user_id: str, limit: int = 20, cursor: Optional[str] = None):
        return await self._thread_reader.list_for_participant(user_id, limit=limit, cursor=cursor)

    async def _fanout(self, user_ids: Iterable[str], event: Dict[str, Any]) -> None:
        # the write already committed; a failed notification must not undo it
        payload = json.dumps(jsonable_encoder(event))
        for user_id in user_ids:
            try:
                await self._publish(user_id, payload)
            except Exception:
                logger.exception("Failed to publish %s event to %s", event.get("type"), user_id)
