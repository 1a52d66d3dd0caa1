import asyncio
import contextlib
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from jose import JWTError

from app.exceptions import ChatError
from app.services.chat_service import ChatService
from app.utils.dependencies import get_chat_service
from app.utils.realtime_bus import get_bus, user_channel
from app.utils.security import participant_from_token
from app.utils.websocket_manager import manager


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


def _error_frame(code: str, message: str, **extra: Any) -> Dict[str, Any]:
    return {"type": "error", "error": code, "message": message, **extra}


async def handle_frame(service: ChatService, user_id: str, msg: Dict[str, Any]) -> Dict[str, Any]:
    # {"type": "message", "conversation_id", "body", "client_message_id"?, "attachments"?}
    # {"type": "read", "conversation_id", "upto_message_id"}
    frame_type = msg.get("type", "message")
    if frame_type == "message":
        if not msg.get("conversation_id") or "body" not in msg:
            return _error_frame("INVALID_FRAME", "message frames need conversation_id and body")
        if not isinstance(msg.get("attachments", []), list):
            return _error_frame("INVALID_FRAME", "attachments must be a list")
        message = await service.send_message(
            msg["conversation_id"],
            user_id,
            msg["body"],
            attachments=msg.get("attachments"),
            client_message_id=msg.get("client_message_id"),
        )
        return {"type": "ack", "client_message_id": msg.get("client_message_id"), "message": message}

    if frame_type == "read":
        upto = msg.get("upto_message_id")
        if not msg.get("conversation_id") or not isinstance(upto, int):
            return _error_frame("INVALID_FRAME", "read frames need conversation_id and an integer upto_message_id")
        state = await service.mark_read(msg["conversation_id"], user_id, upto)
        return {"type": "read_ack", **state}

    return _error_frame("INVALID_FRAME", f"Unsupported frame type '{frame_type}'")


@router.websocket("/ws/chat/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str, service: ChatService = Depends(get_chat_service)):
    # token comes in the query string: ?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        sub = participant_from_token(token)
    except JWTError:
        await websocket.close(code=4401)
        return
    if sub != user_id:
        await websocket.close(code=4403)
        return

    await manager.connect(user_id, websocket)
    bus = await get_bus()
    subscriber = None
    sub_task = None
    if bus.enabled:
        subscriber = await bus.subscribe(user_channel(user_id), websocket.send_text)
        sub_task = asyncio.create_task(subscriber.run())

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps(_error_frame("INVALID_FRAME", "Frames must be JSON objects")))
                continue
            if not isinstance(msg, dict):
                await websocket.send_text(json.dumps(_error_frame("INVALID_FRAME", "Frames must be JSON objects")))
                continue
            try:
                reply = await handle_frame(service, user_id, msg)
            except ChatError as exc:
                reply = _error_frame(exc.error_code, exc.message, details=exc.details, retryable=exc.retryable)
            await websocket.send_text(json.dumps(jsonable_encoder(reply)))
    except WebSocketDisconnect:
        logger.debug("WebSocket for %s disconnected", user_id)
    finally:
        manager.disconnect(user_id, websocket)
        if sub_task is not None:
            sub_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sub_task
        if subscriber is not None:
            await subscriber.cancel()
