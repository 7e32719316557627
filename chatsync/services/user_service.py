import logging
from datetime import datetime, timezone
from typing import List, Optional

from chatsync.errors import ChatSyncError, InvalidCredentials, MissingAvatar, ValidationError
from chatsync.repositories.account_repository import AccountRepository
from chatsync.repositories.token_repository import RevokedTokenRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import ChatUser, TokenPayload, normalize_email
from chatsync.services.storage import BlobStorage
from chatsync.utils.security import hash_password, verify_password


logger = logging.getLogger(__name__)


class UserService:
    """Identity provider and user directory."""

    def __init__(
        self,
        account_repository: AccountRepository,
        user_repository: UserRepository,
        storage: BlobStorage,
        revoked_tokens: RevokedTokenRepository,
    ):
        self.account_repository = account_repository
        self.user_repository = user_repository
        self.storage = storage
        self.revoked_tokens = revoked_tokens

    async def register_user(
        self,
        email: str,
        password: str,
        avatar: Optional[bytes],
        avatar_content_type: str = "image/jpeg",
    ) -> ChatUser:
        """
        Sign up a new user.
        - An avatar is mandatory and checked before anything is written
        - Create the account (hashed password)
        - Upload the avatar under the new uid
        - Store {uid, email, profileImageUrl} in the directory
        """
        if not avatar:
            raise MissingAvatar("You must select an avatar image")
        email = normalize_email(email)

        uid = await self.account_repository.create_account(email, hash_password(password))
        logger.info("Created account %s", uid)
        try:
            url = await self.storage.put(uid, avatar, avatar_content_type)
            user = await self.user_repository.save_user(
                ChatUser(uid=uid, email=email, profile_image_url=url)
            )
        except ChatSyncError:
            logger.error("Sign up of %s failed after account creation, removing account", uid)
            await self.account_repository.delete_account(uid)
            raise
        return user

    async def authenticate_user(self, email: str, password: str) -> str:
        try:
            email = normalize_email(email)
        except ValidationError as exc:
            raise InvalidCredentials("Failed to login user: invalid email or password") from exc
        account = await self.account_repository.get_account_by_email(email)
        if not account or not verify_password(password, account.get("hashedPassword", "")):
            raise InvalidCredentials("Failed to login user: invalid email or password")
        return str(account["_id"])

    async def sign_out(self, token: TokenPayload) -> None:
        """End the session carried by ``token``; it is rejected until it expires."""
        expires_at = datetime.fromtimestamp(token.exp, tz=timezone.utc)
        await self.revoked_tokens.revoke(token.jti, token.sub, expires_at)
        logger.info("Signed out %s", token.sub)

    async def get_user(self, uid: str) -> Optional[ChatUser]:
        return await self.user_repository.get_user(uid)

    async def list_users(self, exclude_uid: Optional[str] = None) -> List[ChatUser]:
        """Directory for the "new message" picker; the signed-in user is left out."""
        return await self.user_repository.list_users(exclude_uid=exclude_uid)
