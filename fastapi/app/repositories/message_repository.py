import logging
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from app.exceptions import StorageUnavailable
from app.models.message import MessageDocument
from app.utils.storage import as_utc, from_ms, now_utc, storage_errors, to_ms


logger = logging.getLogger(__name__)

# each lost race means another message committed, so this bounds a burst not a stall
MAX_APPEND_ATTEMPTS = 32


class MessageRepository:
    """Append-only message storage; the insert itself claims the message id."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        with storage_errors("message index creation"):
            await self.collection.create_index(
                [("conversation_id", ASCENDING), ("seq", ASCENDING)], unique=True
            )
            await self.collection.create_index([("dedupe_key", ASCENDING)], unique=True, sparse=True)

    async def latest_id(self, conversation_id: str) -> int:
        tail = await self._tail(conversation_id)
        return int(tail["seq"]) if tail else 0

    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        body: str,
        attachments: Optional[List[str]] = None,
        client_message_id: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """Insert the next message of the thread; returns ``(message, created)``.

        The id is the tail's id plus one and is claimed by the insert on the
        unique ``(conversation_id, seq)`` index, so an id exists only once its
        message is stored and ids become visible in order. Losing that index to
        a concurrent append re-reads the tail and tries the next id. With a
        client token, losing on the sparse unique ``dedupe_key`` index returns
        the stored message instead.
        """
        dedupe_key = None
        if client_message_id:
            dedupe_key = self.dedupe_key(conversation_id, sender_id, client_message_id)
        for attempt in range(MAX_APPEND_ATTEMPTS):
            tail = await self._tail(conversation_id)
            seq = 1
            sent_ms = to_ms(now_utc())
            if tail:
                seq = int(tail["seq"]) + 1
                sent_ms = max(sent_ms, to_ms(tail["sent_at"]))
            doc: MessageDocument = {
                "conversation_id": conversation_id,
                "seq": seq,
                "sender_id": sender_id,
                "body": body,
                "attachments": list(attachments or []),
                "sent_at": from_ms(sent_ms),
            }
            if dedupe_key:
                doc["dedupe_key"] = dedupe_key
                doc["client_message_id"] = client_message_id
            try:
                await self._insert(doc)
            except DuplicateKeyError:
                if dedupe_key is not None:
                    existing = await self.find_by_dedupe_key(dedupe_key)
                    if existing is not None:
                        logger.info("Duplicate append %s collapsed onto message %s", dedupe_key, existing["id"])
                        return existing, False
                logger.debug("Message id %s in %s taken concurrently (attempt %d)", seq, conversation_id, attempt + 1)
                continue
            return self._to_message(doc), True
        raise StorageUnavailable("message append", {"conversation_id": conversation_id, "reason": "contention"})

    async def _tail(self, conversation_id: str) -> Optional[MessageDocument]:
        with storage_errors("message id lookup"):
            return await self.collection.find_one(
                {"conversation_id": conversation_id}, sort=[("seq", DESCENDING)]
            )

    async def _insert(self, doc: MessageDocument) -> None:
        with storage_errors("message insert"):
            await self.collection.insert_one(doc)

    async def find_by_dedupe_key(self, dedupe_key: str) -> Optional[Dict[str, Any]]:
        with storage_errors("message lookup"):
            doc = await self.collection.find_one({"dedupe_key": dedupe_key})
        return self._to_message(doc) if doc else None

    async def get_messages_after(
        self,
        conversation_id: str,
        after: int = 0,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        query = {"conversation_id": conversation_id, "seq": {"$gt": after}}
        with storage_errors("message listing"):
            cur = self.collection.find(query).sort("seq", ASCENDING).limit(limit)
            items = await cur.to_list(length=limit)
        return [self._to_message(it) for it in items]

    async def count_unread(self, conversation_id: str, participant_id: str, after: int) -> int:
        query = {
            "conversation_id": conversation_id,
            "seq": {"$gt": after},
            "sender_id": {"$ne": participant_id},
        }
        with storage_errors("unread count"):
            return await self.collection.count_documents(query)

    @staticmethod
    def dedupe_key(conversation_id: str, sender_id: str, client_message_id: str) -> str:
        return f"{conversation_id}:{sender_id}:{client_message_id}"

    @staticmethod
    def _to_message(doc: MessageDocument) -> Dict[str, Any]:
        return {
            "id": int(doc["seq"]),
            "conversation_id": doc["conversation_id"],
            "sender_id": doc["sender_id"],
            "body": doc["body"],
            "attachments": list(doc.get("attachments") or []),
            "sent_at": as_utc(doc["sent_at"]),
            "client_message_id": doc.get("client_message_id"),
        }
