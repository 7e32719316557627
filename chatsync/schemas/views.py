from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from chatsync.schemas.message import ChatMessage
from chatsync.schemas.recent_message import RecentMessage
from chatsync.schemas.user import ChatUser


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    SUBSCRIBED = "subscribed"
    UPDATING = "updating"
    UNSUBSCRIBED = "unsubscribed"


class SessionView(BaseModel):

    model_config = ConfigDict(frozen=True)

    user: Optional[ChatUser] = None
    is_logged_out: bool = True
    error_message: str = ""


class RecentMessagesView(BaseModel):

    model_config = ConfigDict(frozen=True)

    owner_id: Optional[str] = None
    state: SyncState = SyncState.UNINITIALIZED
    recent_messages: Tuple[RecentMessage, ...] = ()
    error_message: str = ""


class ChatLogView(BaseModel):

    model_config = ConfigDict(frozen=True)

    owner_id: Optional[str] = None
    peer_id: Optional[str] = None
    state: SyncState = SyncState.UNINITIALIZED
    messages: Tuple[ChatMessage, ...] = ()
    # revision counter: bumps on every processed batch and successful send
    count: int = 0
    draft: str = ""
    error_message: str = ""
