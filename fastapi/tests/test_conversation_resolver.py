import asyncio

import pytest
from bson import ObjectId

from app.exceptions import ConversationNotFound, InvalidParticipants, NotAParticipant
from app.services.conversation_resolver import ConversationResolver
from app.utils.pair_key import canonical_key


class BlindConversationRepository:
    """Never sees existing rows on the fast path, so every caller races on the insert."""

    def __init__(self, real):
        self._real = real

    async def find_by_pair_key(self, key):
        await asyncio.sleep(0)
        return None

    async def create_if_absent(self, key, user_a, user_b):
        await asyncio.sleep(0)
        return await self._real.create_if_absent(key, user_a, user_b)


@pytest.mark.asyncio
async def test_resolve_is_order_independent(resolver):
    first = await resolver.resolve("u1", "u2")
    second = await resolver.resolve("u2", "u1")
    assert first == second


@pytest.mark.asyncio
async def test_resolve_self_conversation_fails(resolver, db):
    with pytest.raises(InvalidParticipants):
        await resolver.resolve("u1", "u1")
    assert await db["conversations"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_concurrent_resolves_create_one_conversation(resolver, db):
    ids = await asyncio.gather(*[
        resolver.resolve("alice", "bob") if i % 2 else resolver.resolve("bob", "alice")
        for i in range(20)
    ])
    assert len(set(ids)) == 1
    assert await db["conversations"].count_documents({"pair_key": "alice:bob"}) == 1


@pytest.mark.asyncio
async def test_insert_race_returns_winning_row(conversation_repo, db):
    racing = ConversationResolver(BlindConversationRepository(conversation_repo))
    ids = await asyncio.gather(*[racing.resolve("u1", "u2") for _ in range(10)])

    assert len(set(ids)) == 1
    assert await db["conversations"].count_documents({}) == 1


@pytest.mark.asyncio
async def test_create_if_absent_is_idempotent(conversation_repo):
    key = canonical_key("u1", "u2")
    first = await conversation_repo.create_if_absent(key, "u1", "u2")
    second = await conversation_repo.create_if_absent(key, "u2", "u1")
    assert first["_id"] == second["_id"]
    assert second["participants"] == ["u1", "u2"]


@pytest.mark.asyncio
async def test_create_if_absent_rejects_mismatched_key(conversation_repo):
    with pytest.raises(InvalidParticipants):
        await conversation_repo.create_if_absent("u1:u3", "u1", "u2")


@pytest.mark.asyncio
async def test_distinct_pairs_get_distinct_conversations(resolver):
    a = await resolver.resolve("u1", "u2")
    b = await resolver.resolve("u1", "u3")
    assert a != b


@pytest.mark.asyncio
@pytest.mark.parametrize("conversation_id", ["not-an-object-id", str(ObjectId())])
async def test_get_unknown_conversation(resolver, conversation_id):
    with pytest.raises(ConversationNotFound):
        await resolver.get(conversation_id)


@pytest.mark.asyncio
async def test_get_for_participant_checks_membership(resolver):
    conversation_id = await resolver.resolve("u1", "u2")
    conversation = await resolver.get_for_participant(conversation_id, "u2")
    assert conversation["_id"] == conversation_id
    with pytest.raises(NotAParticipant):
        await resolver.get_for_participant(conversation_id, "u3")
