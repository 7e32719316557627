import json
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from chatsync.database.connection import get_database
from chatsync.errors import ChatSyncError, NotAuthenticated
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.recent_message_repository import RecentMessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.routers.streaming import start_forwarding, stop_forwarding
from chatsync.schemas.message import SendMessageRequest, SendMessageResponse
from chatsync.services.chat_service import ChatService
from chatsync.services.message_thread import MessageThreadEngine
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import get_chat_service, get_current_user, get_user_service, user_id_from_token
from chatsync.utils.realtime_bus import get_bus


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


@router.get("/{peer_id}")
async def get_history(peer_id: str, current_user: str = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    messages = await service.get_history(current_user, peer_id)
    return {"items": [m.model_dump(mode="json") for m in messages]}


@router.post("/{peer_id}", response_model=SendMessageResponse, status_code=201)
async def send_message(
    peer_id: str,
    body: SendMessageRequest,
    current_user: str = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
    users: UserService = Depends(get_user_service),
):
    sender = await users.get_user(current_user)
    if sender is None:
        raise NotAuthenticated("Could not find uid")
    recipient = await users.get_user(peer_id)
    if recipient is None:
        raise HTTPException(status_code=404, detail="User not found")
    message = await service.send_message(sender, recipient, body.text)
    return SendMessageResponse(message_id=message.id, timestamp=message.timestamp)


@router.websocket("/ws/{peer_id}")
async def chat_socket(websocket: WebSocket, peer_id: str):
    db = get_database()
    try:
        user_id = await user_id_from_token(websocket.query_params.get("token"), db)
    except ChatSyncError:
        await websocket.close(code=4401)
        return

    bus = await get_bus()
    users = UserRepository(db)
    owner = await users.get_user(user_id)
    peer = await users.get_user(peer_id)
    if owner is None or peer is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    message_repo = MessageRepository(db, bus)
    service = ChatService(message_repo, RecentMessageRepository(db, bus))
    engine = MessageThreadEngine(message_repo, service, owner, peer)
    forwarder = start_forwarding(websocket, engine.state)
    try:
        await engine.start()
        while True:
            data = await websocket.receive_text()
            # expect {"text": str}; {"draft": str} only updates the compose field
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"error": "Invalid message payload"}))
                continue
            if not isinstance(frame, dict):
                await websocket.send_text(json.dumps({"error": "Invalid message payload"}))
                continue
            if "draft" in frame:
                engine.set_draft(str(frame["draft"]))
                continue
            # no "text" sends the current draft
            text = frame.get("text")
            if text is not None and not isinstance(text, str):
                await websocket.send_text(json.dumps({"error": "Message text must be a string"}))
                continue
            try:
                await engine.send(text)
            except ChatSyncError:
                # already on the published view
                continue
    except WebSocketDisconnect:
        logger.debug("Chat socket %s -> %s closed", user_id, peer_id)
    except ChatSyncError as exc:
        logger.warning("Chat socket %s -> %s failed: %s", user_id, peer_id, exc)
        await websocket.close(code=1011)
    finally:
        await engine.stop()
        await stop_forwarding(forwarder)
