from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from app.config import get_settings
from app.database.connection import mongo_db_dependency
from app.repositories.conversation_repository import ConversationRepository
from app.repositories.message_repository import MessageRepository
from app.repositories.read_cursor_repository import ReadCursorRepository
from app.services.chat_service import ChatService
from app.services.conversation_resolver import ConversationResolver
from app.services.message_log import MessageLog
from app.services.thread_reader import ThreadReader
from app.utils.security import participant_from_token


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        participant_id = participant_from_token(credentials.credentials)
    except JWTError:
        raise credentials_exception
    return {"_id": participant_id}


def build_chat_service(db) -> ChatService:
    settings = get_settings()
    convo_repo = ConversationRepository(db)
    msg_repo = MessageRepository(db)
    cursor_repo = ReadCursorRepository(db)
    return ChatService(
        resolver=ConversationResolver(convo_repo),
        message_log=MessageLog(
            msg_repo,
            convo_repo,
            max_body_length=settings.max_body_length,
            preview_length=settings.preview_length,
            max_page_size=settings.max_page_size,
            default_page_size=settings.default_page_size,
        ),
        thread_reader=ThreadReader(convo_repo, msg_repo, cursor_repo),
    )


def get_chat_service(db = Depends(mongo_db_dependency)) -> ChatService:
    return build_chat_service(db)
