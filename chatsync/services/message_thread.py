import logging
from typing import List, Optional, Set

from chatsync.errors import ChatSyncError, NotAuthenticated, ValidationError
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.message import ChatMessage
from chatsync.schemas.user import ChatUser
from chatsync.schemas.views import ChatLogView, SyncState
from chatsync.services.chat_service import ChatService
from chatsync.services.state import StateStore
from chatsync.utils.change_stream import ChangeEvent, ChangeStream


logger = logging.getLogger(__name__)


class MessageThreadEngine:
    """Message log of one open conversation plus the compose/send action.

    ``count`` in the published view is a revision counter: it grows on
    every processed change batch and every successful send.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        chat_service: ChatService,
        owner: Optional[ChatUser],
        peer: Optional[ChatUser],
    ) -> None:
        self._repo = message_repo
        self._chat_service = chat_service
        self.owner = owner
        self.peer = peer
        self._stream: Optional[ChangeStream] = None
        self._seen: Set[str] = set()
        self.state: StateStore[ChatLogView] = StateStore(ChatLogView())

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self.state.snapshot.messages)

    @property
    def count(self) -> int:
        return self.state.snapshot.count

    @property
    def active(self) -> bool:
        return self.state.snapshot.state in (SyncState.SUBSCRIBED, SyncState.UPDATING)

    def _participants(self) -> tuple[ChatUser, ChatUser]:
        if self.owner is None:
            raise NotAuthenticated("Could not find uid")
        if self.peer is None:
            raise ValidationError("No conversation partner selected")
        return self.owner, self.peer

    async def start(self) -> None:
        if self.active:
            raise RuntimeError("Message thread is already subscribed")
        try:
            owner, peer = self._participants()
        except ChatSyncError as exc:
            self._record_error("Failed to listen for messages", exc)
            raise
        # a new subscription replays the whole partition
        self._seen = set()
        self.state.replace(
            ChatLogView(
                owner_id=owner.uid,
                peer_id=peer.uid,
                state=SyncState.SUBSCRIBED,
                count=self.state.snapshot.count,
                draft=self.state.snapshot.draft,
            )
        )
        try:
            self._stream = await self._repo.subscribe(owner.uid, peer.uid, self._on_batch, self._on_stream_error)
        except ChatSyncError as exc:
            self.state.update(state=SyncState.UNSUBSCRIBED)
            self._record_error("Failed to listen for messages", exc)
            raise

    async def stop(self) -> None:
        if not self.active:
            return
        self.state.update(state=SyncState.UNSUBSCRIBED)
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.cancel()

    def set_draft(self, text: str) -> None:
        self.state.update(draft=text)

    async def send(self, text: Optional[str] = None) -> ChatMessage:
        """Send ``text`` (or the current draft) to the peer.

        The message write must succeed for anything else to happen. When only
        the recent-message update fails, the message stays sent, the draft is
        still cleared and the error is recorded on the view.
        """
        body = self.state.snapshot.draft if text is None else text
        try:
            owner, peer = self._participants()
            message = await self._chat_service.store_message(owner, peer, body)
        except ChatSyncError as exc:
            self._record_error("Failed to save message", exc)
            raise
        error_message = ""
        try:
            await self._chat_service.persist_recent_message(owner, peer, message)
        except ChatSyncError as exc:
            self._record_error("Failed to save recent message", exc)
            error_message = self.state.snapshot.error_message
        self.state.update(draft="", count=self.state.snapshot.count + 1, error_message=error_message)
        return message

    async def _on_batch(self, events: List[ChangeEvent]) -> None:
        if not self.active:
            return
        added: List[ChatMessage] = []
        for event in events:
            # messages are immutable; only additions matter
            if event.type != "added" or event.id in self._seen:
                continue
            try:
                message = ChatMessage.from_document(event.document)
            except ChatSyncError as exc:
                self._record_error("Failed to listen for messages", exc)
                continue
            self._seen.add(message.id)
            added.append(message)
        snapshot = self.state.snapshot
        self.state.update(
            messages=snapshot.messages + tuple(added),
            count=snapshot.count + 1,
        )

    def _on_stream_error(self, error: ChatSyncError) -> None:
        self._record_error("Failed to listen for messages", error)

    def _record_error(self, prefix: str, error: ChatSyncError) -> None:
        if error.transient:
            logger.warning("%s (%s): %s", prefix, error.code, error)
        else:
            logger.error("%s (%s): %s", prefix, error.code, error)
        self.state.update(error_message=f"{prefix}: {error}")
