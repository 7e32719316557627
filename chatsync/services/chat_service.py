import logging
from datetime import datetime, timezone
from typing import List

from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.recent_message_repository import RecentMessageRepository
from chatsync.schemas.message import ChatMessage
from chatsync.schemas.recent_message import RecentMessage
from chatsync.schemas.user import ChatUser


logger = logging.getLogger(__name__)


class ChatService:

    def __init__(self, message_repo: MessageRepository, recent_message_repo: RecentMessageRepository) -> None:
        self._message_repo = message_repo
        self._recent_message_repo = recent_message_repo

    async def send_message(self, sender: ChatUser, recipient: ChatUser, text: str) -> ChatMessage:
        """Persist one message and refresh both sides' recent-message records.

        Steps run in order and are not transactional. A failed message write
        aborts the rest; a failed summary write leaves the message in place.
        Empty text is accepted.
        """
        message = await self.store_message(sender, recipient, text)
        await self.persist_recent_message(sender, recipient, message)
        logger.debug("Message %s sent from %s to %s", message.id, sender.uid, recipient.uid)
        return message

    async def store_message(self, sender: ChatUser, recipient: ChatUser, text: str) -> ChatMessage:
        timestamp = datetime.now(timezone.utc)
        return await self._message_repo.send(sender.uid, recipient.uid, text, timestamp=timestamp)

    async def persist_recent_message(self, sender: ChatUser, recipient: ChatUser, message: ChatMessage) -> None:
        text = message.text
        timestamp = message.timestamp
        # sender's list shows the recipient
        await self._recent_message_repo.upsert(
            RecentMessage(
                owner_id=sender.uid,
                peer_id=recipient.uid,
                from_id=sender.uid,
                to_id=recipient.uid,
                text=text,
                timestamp=timestamp,
                email=recipient.email,
                profile_image_url=recipient.profile_image_url,
            )
        )
        # receiver's list shows the sender, with one more unread message
        await self._recent_message_repo.upsert_received(
            RecentMessage(
                owner_id=recipient.uid,
                peer_id=sender.uid,
                from_id=sender.uid,
                to_id=recipient.uid,
                text=text,
                timestamp=timestamp,
                email=sender.email,
                profile_image_url=sender.profile_image_url,
            )
        )

    async def get_history(self, owner_id: str, peer_id: str) -> List[ChatMessage]:
        return await self._message_repo.list_messages(owner_id, peer_id)

    async def list_recent_messages(self, owner_id: str) -> List[RecentMessage]:
        """Most recent first."""
        items = await self._recent_message_repo.list_for_owner(owner_id)
        return list(reversed(items))
