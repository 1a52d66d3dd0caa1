import logging
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from app.exceptions import InvalidCursor, InvalidParticipants, StorageUnavailable
from app.models.conversation import ConversationDocument
from app.utils.pair_key import canonical_key, canonical_participants
from app.utils.storage import as_utc, now_utc, storage_errors, to_ms


logger = logging.getLogger(__name__)


class ConversationRepository:
    """Owns conversation records and the unique pair_key index."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        with storage_errors("conversation index creation"):
            await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
            await self.collection.create_index(
                [("participants", ASCENDING), ("last_activity_ms", DESCENDING), ("_id", DESCENDING)]
            )

    async def find_by_pair_key(self, key: str) -> Optional[ConversationDocument]:
        with storage_errors("conversation lookup"):
            doc = await self.collection.find_one({"pair_key": key})
        return self._normalize(doc)

    async def get_by_id(self, conversation_id: str) -> Optional[ConversationDocument]:
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return None
        with storage_errors("conversation lookup"):
            doc = await self.collection.find_one({"_id": oid})
        return self._normalize(doc)

    async def create_if_absent(self, key: str, user_a: str, user_b: str) -> ConversationDocument:
        """Insert the conversation for ``key`` or return the row that won a concurrent insert.

        The unique index on ``pair_key`` is the only coordination: a
        DuplicateKeyError means another request committed first, which is
        success for this caller.
        """
        participants = list(canonical_participants(user_a, user_b))
        if canonical_key(*participants) != key:
            raise InvalidParticipants("Pair key does not match participants", {"pair_key": key})

        now = now_utc()
        doc: ConversationDocument = {
            "pair_key": key,
            "participants": participants,
            "created_at": now,
            "last_message_id": 0,
            "last_message_at": None,
            "last_activity_ms": to_ms(now),
            "last_message_preview": None,
            "last_sender_id": None,
        }
        try:
            with storage_errors("conversation insert"):
                result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.info("Conversation for %s created concurrently, returning existing row", key)
            existing = await self.find_by_pair_key(key)
            if existing is None:
                raise StorageUnavailable("conversation re-read", {"pair_key": key})
            return existing
        doc["_id"] = str(result.inserted_id)
        logger.info("Created conversation %s for %s", doc["_id"], key)
        return doc

    async def record_message(self, conversation_id: str, message: Dict[str, Any], preview: str) -> bool:
        # only a newer message may replace the summary, so concurrent appends never regress it
        oid = self._to_object_id(conversation_id)
        if oid is None:
            return False
        with storage_errors("conversation summary update"):
            result = await self.collection.update_one(
                {"_id": oid, "last_message_id": {"$lt": message["id"]}},
                {
                    "$set": {
                        "last_message_id": message["id"],
                        "last_message_at": message["sent_at"],
                        "last_activity_ms": to_ms(message["sent_at"]),
                        "last_message_preview": preview,
                        "last_sender_id": message["sender_id"],
                    }
                },
            )
        return bool(result.modified_count)

    async def list_for_user(
        self, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[ConversationDocument], Optional[str]]:
        query: Dict[str, Any] = {"participants": user_id}
        sort = [("last_activity_ms", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # Cursor format: activity_ms:object_id_hex
            activity_ms, oid = self._parse_cursor(cursor)
            query["$or"] = [
                {"last_activity_ms": {"$lt": activity_ms}},
                {"last_activity_ms": activity_ms, "_id": {"$lt": oid}},
            ]

        with storage_errors("conversation listing"):
            cursor_db = self.collection.find(query).sort(sort).limit(limit)
            items = await cursor_db.to_list(length=limit)
        items = [self._normalize(it) for it in items]
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = f"{last['last_activity_ms']}:{last['_id']}"
        return items, next_cursor

    def _parse_cursor(self, cursor: str) -> Tuple[int, ObjectId]:
        try:
            ms_str, oid_hex = cursor.split(":", 1)
            return int(ms_str), ObjectId(oid_hex)
        except (ValueError, InvalidId) as exc:
            raise InvalidCursor(f"Malformed conversation cursor '{cursor}'") from exc

    def _normalize(self, doc: Optional[Dict[str, Any]]) -> Optional[ConversationDocument]:
        if not doc:
            return None
        doc["_id"] = str(doc.get("_id"))
        doc["created_at"] = as_utc(doc.get("created_at"))
        doc["last_message_at"] = as_utc(doc.get("last_message_at"))
        return doc

    def _to_object_id(self, conversation_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(conversation_id)
        except (InvalidId, TypeError):
            return None
