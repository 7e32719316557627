from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from chatsync.errors import AccountExists, ReadFailed, WriteFailed, wrap
from chatsync.models.user import AccountDocument


class AccountRepository:
    """Credentials of the identity provider, kept apart from the public user directory."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("accounts")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("email", unique=True)

    async def create_account(self, email: str, hashed_password: str) -> str:
        uid = str(ObjectId())
        doc: AccountDocument = {"_id": uid, "email": email, "hashedPassword": hashed_password}
        try:
            await self._collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise AccountExists("Email already registered") from exc
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to create account") from exc
        return uid

    async def delete_account(self, uid: str) -> None:
        try:
            await self._collection.delete_one({"_id": uid})
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to delete account") from exc

    async def get_account_by_email(self, email: str) -> Optional[dict]:
        try:
            return await self._collection.find_one({"email": email})
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to fetch account") from exc
