import logging
from typing import Dict, Iterable

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.exceptions import StorageUnavailable
from app.models.read_cursor import ReadCursorDocument
from app.utils.storage import now_utc, storage_errors


logger = logging.getLogger(__name__)


class ReadCursorRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["read_cursors"]

    async def ensure_indexes(self) -> None:
        with storage_errors("read cursor index creation"):
            await self.collection.create_index(
                [("conversation_id", ASCENDING), ("participant_id", ASCENDING)], unique=True
            )
            await self.collection.create_index([("participant_id", ASCENDING)])

    async def get(self, conversation_id: str, participant_id: str) -> int:
        with storage_errors("read cursor lookup"):
            doc = await self.collection.find_one(
                {"conversation_id": conversation_id, "participant_id": participant_id}
            )
        return int(doc["last_read_message_id"]) if doc else 0

    async def get_many(self, participant_id: str, conversation_ids: Iterable[str]) -> Dict[str, int]:
        query = {"participant_id": participant_id, "conversation_id": {"$in": list(conversation_ids)}}
        with storage_errors("read cursor lookup"):
            items = await self.collection.find(query).to_list(length=None)
        return {it["conversation_id"]: int(it["last_read_message_id"]) for it in items}

    async def advance(self, conversation_id: str, participant_id: str, upto_message_id: int) -> int:
        """Merge ``upto_message_id`` into the cursor with ``$max``; a stale device never regresses it."""
        for attempt in range(2):
            try:
                with storage_errors("read cursor update"):
                    doc: ReadCursorDocument = await self.collection.find_one_and_update(
                        {"conversation_id": conversation_id, "participant_id": participant_id},
                        {
                            "$max": {"last_read_message_id": upto_message_id},
                            "$set": {"updated_at": now_utc()},
                        },
                        upsert=True,
                        return_document=ReturnDocument.AFTER,
                    )
                return int(doc["last_read_message_id"])
            except DuplicateKeyError:
                logger.debug(
                    "Read cursor upsert race for %s/%s (attempt %d)",
                    conversation_id, participant_id, attempt + 1,
                )
        raise StorageUnavailable("read cursor update", {"conversation_id": conversation_id})
