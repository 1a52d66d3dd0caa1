"""Pytest configuration and shared fixtures.

MongoDB is replaced by mongomock-motor, which honours the unique and sparse
indexes the race-safety guarantees rely on.
"""
from __future__ import annotations

import asyncio
import uuid

import pytest
import pytest_asyncio
from jose import jwt
from mongomock_motor import AsyncMongoMockClient

from app.config import get_settings
from app.database.connection import ensure_indexes
from app.repositories.conversation_repository import ConversationRepository
from app.repositories.message_repository import MessageRepository
from app.repositories.read_cursor_repository import ReadCursorRepository
from app.services.conversation_resolver import ConversationResolver
from app.services.message_log import MessageLog
from app.services.thread_reader import ThreadReader


@pytest_asyncio.fixture
async def db():
    database = AsyncMongoMockClient()[f"dm_chat_test_{uuid.uuid4().hex}"]
    await ensure_indexes(database)
    return database


@pytest.fixture
def conversation_repo(db) -> ConversationRepository:
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db) -> MessageRepository:
    return MessageRepository(db)


@pytest.fixture
def cursor_repo(db) -> ReadCursorRepository:
    return ReadCursorRepository(db)


@pytest.fixture
def resolver(conversation_repo) -> ConversationResolver:
    return ConversationResolver(conversation_repo)


@pytest.fixture
def message_log(message_repo, conversation_repo) -> MessageLog:
    return MessageLog(message_repo, conversation_repo, max_body_length=50, preview_length=10, max_page_size=100)


@pytest.fixture
def reader(conversation_repo, message_repo, cursor_repo) -> ThreadReader:
    return ThreadReader(conversation_repo, message_repo, cursor_repo)


@pytest.fixture
def sync_db():
    """Indexed mock database for TestClient-based tests (no running loop needed)."""
    database = AsyncMongoMockClient()[f"dm_chat_api_{uuid.uuid4().hex}"]
    asyncio.run(ensure_indexes(database))
    return database


@pytest.fixture
def make_token():
    """Mint a token the way the identity service would."""
    settings = get_settings()

    def _make(participant_id: str) -> str:
        return jwt.encode({"sub": participant_id}, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    return _make
