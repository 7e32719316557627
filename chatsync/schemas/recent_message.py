from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from chatsync.schemas.base import DocumentModel
from chatsync.schemas.user import ChatUser


def recent_message_key(owner_id: str, peer_id: str) -> str:
    return f"{owner_id}:{peer_id}"


class RecentMessage(DocumentModel):
    """Latest-message summary for one (owner, peer) conversation."""

    owner_id: str = Field(alias="ownerId", min_length=1)
    peer_id: str = Field(alias="peerId", min_length=1)
    from_id: str = Field(alias="fromId", min_length=1)
    to_id: str = Field(alias="toId", min_length=1)
    text: str
    timestamp: datetime
    email: str
    profile_image_url: Optional[str] = Field(default=None, alias="profileImageUrl")
    unread_messages_count: int = Field(default=0, ge=0, alias="unreadMessagesCount")
    # resolved lazily by the sync engine, never persisted
    chat_user: Optional[ChatUser] = Field(default=None, exclude=True)

    @property
    def id(self) -> str:
        return self.peer_id

    @property
    def key(self) -> str:
        return recent_message_key(self.owner_id, self.peer_id)

    @property
    def username(self) -> str:
        return self.email.split("@")[0]

    def increment_unread_count(self) -> "RecentMessage":
        return self.model_copy(update={"unread_messages_count": self.unread_messages_count + 1})

    def with_chat_user(self, user: Optional[ChatUser]) -> "RecentMessage":
        return self.model_copy(update={"chat_user": user})

    def to_document(self) -> dict[str, Any]:
        doc = super().to_document()
        doc["_id"] = self.key
        return doc
