from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorDatabase

from chatsync.errors import ReadFailed, WriteFailed, wrap


class RevokedTokenRepository:
    """Access tokens ended by sign-out; entries expire with the token."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("revoked_tokens")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("expiresAt", expireAfterSeconds=0)

    async def revoke(self, token_id: str, uid: str, expires_at: datetime) -> None:
        try:
            await self._collection.update_one(
                {"_id": token_id},
                {"$set": {"uid": uid, "expiresAt": expires_at}},
                upsert=True,
            )
        except Exception as exc:
            raise wrap(exc, WriteFailed, "Failed to revoke token") from exc

    async def is_revoked(self, token_id: str) -> bool:
        try:
            return await self._collection.find_one({"_id": token_id}) is not None
        except Exception as exc:
            raise wrap(exc, ReadFailed, "Failed to check token") from exc
