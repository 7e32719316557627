from typing import Optional

from fastapi import Depends, Header
from motor.motor_asyncio import AsyncIOMotorDatabase

from chatsync.database.connection import mongo_db_dependency
from chatsync.errors import NotAuthenticated
from chatsync.repositories.account_repository import AccountRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.recent_message_repository import RecentMessageRepository
from chatsync.repositories.token_repository import RevokedTokenRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import TokenPayload
from chatsync.services.chat_service import ChatService
from chatsync.services.storage import BlobStorage
from chatsync.services.user_service import UserService
from chatsync.utils.realtime_bus import get_bus
from chatsync.utils.security import decode_access_token


def get_revoked_tokens(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> RevokedTokenRepository:
    return RevokedTokenRepository(db)


async def authenticate_token(token: Optional[str], revoked_tokens: RevokedTokenRepository) -> TokenPayload:
    if not token:
        raise NotAuthenticated("Not authenticated")
    payload = decode_access_token(token)
    if await revoked_tokens.is_revoked(payload.jti):
        raise NotAuthenticated("Token has been revoked")
    return payload


async def get_token(
    authorization: Optional[str] = Header(None),
    revoked_tokens: RevokedTokenRepository = Depends(get_revoked_tokens),
) -> TokenPayload:
    if not authorization:
        raise NotAuthenticated("Not authenticated")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise NotAuthenticated("Invalid authentication credentials")
    return await authenticate_token(parts[1], revoked_tokens)


async def get_current_user(token: TokenPayload = Depends(get_token)) -> str:
    return token.sub


async def user_id_from_token(token: Optional[str], db: AsyncIOMotorDatabase) -> str:
    """WebSocket variant: the token comes from the query string."""
    payload = await authenticate_token(token, RevokedTokenRepository(db))
    return payload.sub


def get_storage(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> BlobStorage:
    return BlobStorage(db)


def get_user_service(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> UserService:
    return UserService(AccountRepository(db), UserRepository(db), BlobStorage(db), RevokedTokenRepository(db))


async def get_message_repository(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> MessageRepository:
    return MessageRepository(db, await get_bus())


async def get_recent_message_repository(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)) -> RecentMessageRepository:
    return RecentMessageRepository(db, await get_bus())


def get_chat_service(
    message_repo: MessageRepository = Depends(get_message_repository),
    recent_message_repo: RecentMessageRepository = Depends(get_recent_message_repository),
) -> ChatService:
    return ChatService(message_repo, recent_message_repo)
