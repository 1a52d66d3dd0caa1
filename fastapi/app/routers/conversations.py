from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.schemas.conversation import ConversationCreate, ConversationPage, ConversationPublic
from app.schemas.message import MarkReadRequest, MessageCreate, MessagePage, MessagePublic, ReadState, UnreadCount
from app.services.chat_service import ChatService
from app.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("", response_model=ConversationPublic)
async def start_conversation(payload: ConversationCreate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.start_conversation(current_user["_id"], payload.participant_id)


@router.get("", response_model=ConversationPage)
async def list_conversations(limit: int = Query(20, ge=1, le=100), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items, next_cursor = await service.list_conversations(current_user["_id"], limit=limit, cursor=cursor)
    return {"items": items, "next_cursor": next_cursor}


@router.get("/{conversation_id}", response_model=ConversationPublic)
async def get_conversation(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.get_conversation(conversation_id, current_user["_id"])


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(conversation_id: str, after: Optional[int] = Query(None, ge=0), limit: Optional[int] = Query(None, ge=1, le=200), current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    messages, next_after = await service.get_history(conversation_id, current_user["_id"], after=after, limit=limit)
    return {"items": messages, "next_after": next_after}


@router.post("/{conversation_id}/messages", response_model=MessagePublic, status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, payload: MessageCreate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.send_message(
        conversation_id,
        current_user["_id"],
        payload.body,
        attachments=payload.attachments,
        client_message_id=payload.client_message_id,
    )


@router.get("/{conversation_id}/unread", response_model=UnreadCount)
async def unread_count(conversation_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    count = await service.unread_count(conversation_id, current_user["_id"])
    return {"conversation_id": conversation_id, "unread_count": count}


@router.post("/{conversation_id}/read", response_model=ReadState)
async def mark_read(conversation_id: str, payload: MarkReadRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.mark_read(conversation_id, current_user["_id"], payload.upto_message_id)
