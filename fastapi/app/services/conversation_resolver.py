import logging
from typing import Any, Dict

from app.exceptions import ConversationNotFound, NotAParticipant
from app.repositories.conversation_repository import ConversationRepository
from app.utils.pair_key import canonical_key


logger = logging.getLogger(__name__)


class ConversationResolver:

    def __init__(self, conversation_repo: ConversationRepository) -> None:
        self._conversation_repo = conversation_repo

    async def resolve(self, user_a: str, user_b: str) -> str:
        """Return the id of the one conversation between two distinct users, creating it if needed.

        Safe under any number of concurrent callers: the store's unique pair
        key decides the winner and every caller gets the same id.
        """
        key = canonical_key(user_a, user_b)
        existing = await self._conversation_repo.find_by_pair_key(key)
        if existing:
            logger.debug("Resolved %s to existing conversation %s", key, existing["_id"])
            return existing["_id"]
        created = await self._conversation_repo.create_if_absent(key, user_a, user_b)
        return created["_id"]

    async def get(self, conversation_id: str) -> Dict[str, Any]:
        conversation = await self._conversation_repo.get_by_id(conversation_id)
        if not conversation:
            raise ConversationNotFound(conversation_id)
        return conversation

    async def get_for_participant(self, conversation_id: str, participant_id: str) -> Dict[str, Any]:
        conversation = await self.get(conversation_id)
        if participant_id not in conversation["participants"]:
            raise NotAParticipant(conversation_id, participant_id)
        return conversation


def other_participant(conversation: Dict[str, Any], participant_id: str) -> str:
    a, b = conversation["participants"]
    return b if participant_id == a else a
