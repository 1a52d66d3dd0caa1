import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.database.connection import close_mongo_connection, connect_to_mongo, get_database
from app.exceptions import (
    ChatError,
    ConversationNotFound,
    NotAParticipant,
    StorageUnavailable,
)
from app.routers.chat import router as chat_router
from app.routers.conversations import router as conversations_router
from app.utils.realtime_bus import close_bus
from app.utils.storage import storage_errors


logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("app")

_STATUS_BY_ERROR = {
    NotAParticipant: status.HTTP_403_FORBIDDEN,
    ConversationNotFound: status.HTTP_404_NOT_FOUND,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Direct messaging API", lifespan=lifespan)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": "1"} if exc.retryable else None
    if exc.retryable:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.error_code, "message": exc.message, "details": exc.details},
        headers=headers,
    )


app.include_router(chat_router)
app.include_router(conversations_router)


@app.get("/health")
async def health():

    db = get_database()
    with storage_errors("health check"):
        await db.command("ping")
    return {"status": "ok"}
