from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from chatsync.errors import ReadFailed, WriteFailed, wrap
from chatsync.models.user import UserDocument
from chatsync.schemas.user import ChatUser


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def save_user(self, user: ChatUser) -> ChatUser:
        doc: UserDocument = user.to_document()
        doc["_id"] = user.uid
        try:
            await self._collection.replace_one({"_id": user.uid}, doc, upsert=True)
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to save user") from exc
        return user

    async def get_user(self, uid: str) -> Optional[ChatUser]:
        try:
            doc = await self._collection.find_one({"_id": uid})
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to fetch user") from exc
        return ChatUser.from_document(doc) if doc else None

    async def list_users(self, exclude_uid: Optional[str] = None) -> List[ChatUser]:
        query = {"_id": {"$ne": exclude_uid}} if exclude_uid else {}
        try:
            cur = self._collection.find(query, sort=[("email", ASCENDING)])
            items = await cur.to_list(length=None)
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to fetch users") from exc
        return [ChatUser.from_document(it) for it in items]
