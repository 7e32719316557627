import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from chatsync.database.connection import get_database
from chatsync.errors import ChatSyncError
from chatsync.repositories.recent_message_repository import RecentMessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.routers.streaming import start_forwarding, stop_forwarding
from chatsync.services.chat_service import ChatService
from chatsync.services.sync_engine import SyncEngine
from chatsync.utils.dependencies import get_chat_service, get_current_user, user_id_from_token
from chatsync.utils.realtime_bus import get_bus


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recent_messages", tags=["chat"])


@router.get("")
async def list_recent_messages(current_user: str = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items = await service.list_recent_messages(current_user)
    return {"items": [item.model_dump(mode="json") for item in items]}


@router.websocket("/ws")
async def recent_messages_socket(websocket: WebSocket):
    # token comes in the query string: ?token=...
    db = get_database()
    try:
        user_id = await user_id_from_token(websocket.query_params.get("token"), db)
    except ChatSyncError:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    engine = SyncEngine(RecentMessageRepository(db, await get_bus()), UserRepository(db))
    forwarder = start_forwarding(websocket, engine.state)
    try:
        await engine.start(user_id)
        while True:
            # the client only listens; frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Recent messages socket of %s closed", user_id)
    except ChatSyncError as exc:
        logger.warning("Recent messages socket of %s failed: %s", user_id, exc)
        await websocket.close(code=1011)
    finally:
        await engine.stop()
        await stop_forwarding(forwarder)
