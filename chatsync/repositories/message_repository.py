import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from chatsync.errors import ReadFailed, WriteFailed, wrap
from chatsync.models.message import MessageDocument
from chatsync.schemas.message import ChatMessage
from chatsync.utils.change_stream import ChangeEvent, ChangeStream


logger = logging.getLogger(__name__)


class MessageRepository:
    """Per-conversation message log, stored once per side.

    A message between A and B lives in partition (A, B) and in partition
    (B, A). Each partition has its own change channel.
    """

    def __init__(self, db: AsyncIOMotorDatabase, bus) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db["messages"]

    @staticmethod
    def channel(owner_id: str, peer_id: str) -> str:
        return f"messages:{owner_id}:{peer_id}"

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("ownerId", ASCENDING), ("peerId", ASCENDING), ("timestamp", ASCENDING)])

    async def save_message(
        self,
        owner_id: str,
        peer_id: str,
        from_id: str,
        to_id: str,
        text: str,
        timestamp: datetime,
    ) -> ChatMessage:
        doc: MessageDocument = {
            "_id": str(ObjectId()),
            "ownerId": owner_id,
            "peerId": peer_id,
            "fromId": from_id,
            "toId": to_id,
            "text": text,
            "timestamp": timestamp,
        }
        # a document that would not decode is never written
        message = ChatMessage.from_document(doc)
        try:
            await self.collection.insert_one(doc)
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to save message") from exc
        await self._publish(message)
        return message

    async def send(
        self,
        sender_id: str,
        recipient_id: str,
        text: str,
        timestamp: Optional[datetime] = None,
    ) -> ChatMessage:
        """Write the sender's copy, then the recipient's copy.

        Both copies share one timestamp. The writes are independent: if the
        recipient's copy fails the sender's copy stays in place and the error
        is raised to the caller.
        """
        ts = timestamp or datetime.now(timezone.utc)
        sent = await self.save_message(sender_id, recipient_id, sender_id, recipient_id, text, ts)
        await self.save_message(recipient_id, sender_id, sender_id, recipient_id, text, ts)
        return sent

    async def list_messages(self, owner_id: str, peer_id: str) -> List[ChatMessage]:
        query = {"ownerId": owner_id, "peerId": peer_id}
        try:
            cur = self.collection.find(query, sort=[("timestamp", ASCENDING), ("_id", ASCENDING)])
            items = await cur.to_list(length=None)
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to load messages") from exc
        return [ChatMessage.from_document(it) for it in items]

    async def subscribe(self, owner_id: str, peer_id: str, on_batch, on_error=None) -> ChangeStream:
        async def replay() -> List[ChangeEvent]:
            messages = await self.list_messages(owner_id, peer_id)
            return [ChangeEvent(type="added", id=m.id, document=m.to_document()) for m in messages]

        stream = ChangeStream(self._bus, self.channel(owner_id, peer_id), replay, on_batch, on_error)
        return await stream.open()

    async def _publish(self, message: ChatMessage) -> None:
        event = ChangeEvent(type="added", id=message.id, document=message.to_document())
        try:
            await self._bus.publish(self.channel(message.owner_id, message.peer_id), event.encode())
        except Exception:
            # the write is durable; subscribers pick it up on their next replay
            logger.warning("Failed to publish message %s", message.id, exc_info=True)
