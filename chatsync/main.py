import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatsync.config import get_settings
from chatsync.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chatsync.errors import AuthError, ChatSyncError, InvalidDocument, StoreError, StreamError, ValidationError
from chatsync.repositories.account_repository import AccountRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.recent_message_repository import RecentMessageRepository
from chatsync.repositories.token_repository import RevokedTokenRepository
from chatsync.routers.auth import router as auth_router
from chatsync.routers.chat import router as chat_router
from chatsync.routers.recent_messages import router as recent_messages_router
from chatsync.routers.users import router as users_router
from chatsync.utils.realtime_bus import close_bus, get_bus


logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    db = await connect_to_mongo()
    bus = await get_bus()
    await AccountRepository(db).ensure_indexes()
    await MessageRepository(db, bus).ensure_indexes()
    await RecentMessageRepository(db, bus).ensure_indexes()
    await RevokedTokenRepository(db).ensure_indexes()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="ChatSync", lifespan=lifespan)


def status_for(exc: ChatSyncError) -> int:
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, InvalidDocument):
        return 422
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, (StoreError, StreamError)) and exc.transient:
        return 503
    return 500


@app.exception_handler(ChatSyncError)
async def chatsync_error_handler(request: Request, exc: ChatSyncError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed (%s): %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code, "transient": exc.transient})


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(recent_messages_router)
app.include_router(chat_router)


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
