import logging
from typing import Optional

from chatsync.errors import ChatSyncError, NotAuthenticated
from chatsync.schemas.user import ChatUser, TokenPayload
from chatsync.schemas.views import SessionView
from chatsync.services.state import StateStore
from chatsync.services.user_service import UserService


logger = logging.getLogger(__name__)


class Session:
    """The signed-in identity of one client, published as ``SessionView`` snapshots."""

    def __init__(self, user_service: UserService, uid: Optional[str] = None) -> None:
        self._users = user_service
        # a uid taken from an access token resumes an existing sign-in
        self._uid = uid
        self.state: StateStore[SessionView] = StateStore(SessionView(is_logged_out=uid is None))

    def current_user_id(self) -> Optional[str]:
        return self._uid

    def require_user_id(self) -> str:
        if not self._uid:
            raise NotAuthenticated("Could not find uid")
        return self._uid

    async def sign_in(self, email: str, password: str) -> str:
        try:
            uid = await self._users.authenticate_user(email, password)
        except ChatSyncError as exc:
            self._fail(exc)
            raise
        logger.info("Successfully logged in as user: %s", uid)
        self._uid = uid
        self.state.update(is_logged_out=False, error_message="")
        await self.fetch_current_user()
        return uid

    async def sign_up(self, email: str, password: str, avatar: Optional[bytes], content_type: str = "image/jpeg") -> str:
        try:
            user = await self._users.register_user(email, password, avatar, content_type)
        except ChatSyncError as exc:
            self._fail(exc)
            raise
        logger.info("Successfully created user: %s", user.uid)
        self._uid = user.uid
        self.state.replace(SessionView(user=user, is_logged_out=False))
        return user.uid

    async def sign_out(self, token: Optional[TokenPayload] = None) -> None:
        if token is not None:
            try:
                await self._users.sign_out(token)
            except ChatSyncError as exc:
                self._fail(exc)
                raise
        self._uid = None
        self.state.replace(SessionView(is_logged_out=True))

    async def fetch_current_user(self) -> Optional[ChatUser]:
        """Re-fetch the signed-in user; the snapshot's user is replaced wholesale."""
        if not self._uid:
            self.state.update(error_message="Could not find uid")
            return None
        try:
            user = await self._users.get_user(self._uid)
        except ChatSyncError as exc:
            self._fail(exc)
            return None
        if user is None:
            self.state.update(error_message=f"No user record for {self._uid}")
            return None
        self.state.update(user=user, error_message="")
        return user

    def _fail(self, exc: ChatSyncError) -> None:
        logger.warning("Session error (%s): %s", exc.code, exc)
        self.state.update(error_message=str(exc))
