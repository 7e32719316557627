import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from chatsync.errors import ReadFailed, WriteFailed, wrap
from chatsync.models.recent_message import RecentMessageDocument
from chatsync.schemas.recent_message import RecentMessage, recent_message_key
from chatsync.utils.change_stream import ChangeEvent, ChangeStream


logger = logging.getLogger(__name__)

_PERSISTED_FIELDS = ("ownerId", "peerId", "fromId", "toId", "text", "timestamp", "email", "profileImageUrl")


class RecentMessageRepository:
    """One "latest message" record per (owner, peer) pair."""

    def __init__(self, db: AsyncIOMotorDatabase, bus) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db["recent_messages"]

    @staticmethod
    def channel(owner_id: str) -> str:
        return f"recent_messages:{owner_id}"

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("ownerId", ASCENDING), ("timestamp", ASCENDING)])

    async def upsert(self, summary: RecentMessage) -> RecentMessage:
        """Overwrite the record for (owner, peer); the unread counter is kept."""
        return await self._write(summary, {"$setOnInsert": {"unreadMessagesCount": 0}})

    async def upsert_received(self, summary: RecentMessage) -> RecentMessage:
        """Overwrite the receiver's record and count the message as unread."""
        return await self._write(summary, {"$inc": {"unreadMessagesCount": 1}})

    async def increment_unread(self, owner_id: str, peer_id: str, by: int = 1) -> RecentMessage:
        if by < 1:
            raise ValueError("Unread count can only be incremented")
        key = recent_message_key(owner_id, peer_id)
        try:
            result = await self.collection.update_one({"_id": key}, {"$inc": {"unreadMessagesCount": by}})
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to increment unread count") from exc
        if not result.matched_count:
            raise WriteFailed(f"No recent message for {key}")
        summary = await self._load(key)
        await self._publish("modified", summary)
        return summary

    async def get(self, owner_id: str, peer_id: str) -> Optional[RecentMessage]:
        try:
            doc = await self.collection.find_one({"_id": recent_message_key(owner_id, peer_id)})
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to load recent message") from exc
        return RecentMessage.from_document(doc) if doc else None

    async def list_for_owner(self, owner_id: str) -> List[RecentMessage]:
        """Records of one owner, oldest first."""
        try:
            cur = self.collection.find({"ownerId": owner_id}, sort=[("timestamp", ASCENDING), ("_id", ASCENDING)])
            items = await cur.to_list(length=None)
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to load recent messages") from exc
        return [RecentMessage.from_document(it) for it in items]

    async def delete(self, owner_id: str, peer_id: str) -> bool:
        key = recent_message_key(owner_id, peer_id)
        try:
            result = await self.collection.delete_one({"_id": key})
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to delete recent message") from exc
        if not result.deleted_count:
            return False
        event = ChangeEvent(type="removed", id=peer_id, document={"ownerId": owner_id, "peerId": peer_id})
        await self._send(owner_id, event)
        return True

    async def subscribe_all(self, owner_id: str, on_batch, on_error=None) -> ChangeStream:
        async def replay() -> List[ChangeEvent]:
            summaries = await self.list_for_owner(owner_id)
            return [ChangeEvent(type="added", id=s.peer_id, document=s.to_document()) for s in summaries]

        stream = ChangeStream(self._bus, self.channel(owner_id), replay, on_batch, on_error)
        return await stream.open()

    async def _write(self, summary: RecentMessage, extra: Dict[str, Any]) -> RecentMessage:
        doc: RecentMessageDocument = summary.to_document()
        update: Dict[str, Any] = {"$set": {field: doc[field] for field in _PERSISTED_FIELDS}}
        update.update(extra)
        try:
            result = await self.collection.update_one({"_id": summary.key}, update, upsert=True)
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to save recent message") from exc
        stored = await self._load(summary.key)
        await self._publish("added" if result.upserted_id is not None else "modified", stored)
        return stored

    async def _load(self, key: str) -> RecentMessage:
        try:
            doc = await self.collection.find_one({"_id": key})
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to load recent message") from exc
        if not doc:
            raise ReadFailed(f"Recent message {key} vanished after write")
        return RecentMessage.from_document(doc)

    async def _publish(self, change_type: str, summary: RecentMessage) -> None:
        event = ChangeEvent(type=change_type, id=summary.peer_id, document=summary.to_document())
        await self._send(summary.owner_id, event)

    async def _send(self, owner_id: str, event: ChangeEvent) -> None:
        try:
            await self._bus.publish(self.channel(owner_id), event.encode())
        except Exception:
            logger.warning("Failed to publish %s event for %s", event.type, owner_id, exc_info=True)
