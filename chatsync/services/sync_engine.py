"""
Live, owner-scoped list of recent conversations.

Merge policy for a change on peer P:

- P not in the list: insert at the head.
- P already in the list: replace in place; the entry keeps its position.
- P removed: drop the entry.

Changes made by the owner (their own sends) are applied like any other.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from chatsync.errors import ChatSyncError, InvalidDocument, NotAuthenticated
from chatsync.repositories.recent_message_repository import RecentMessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.recent_message import RecentMessage
from chatsync.schemas.user import ChatUser
from chatsync.schemas.views import RecentMessagesView, SyncState
from chatsync.services.state import StateStore
from chatsync.utils.change_stream import ChangeEvent, ChangeStream


logger = logging.getLogger(__name__)


def merge_recent_messages(entries: Sequence[RecentMessage], events: Iterable[ChangeEvent]) -> List[RecentMessage]:
    merged = list(entries)
    for event in events:
        index = next((i for i, entry in enumerate(merged) if entry.peer_id == event.id), None)
        if event.type == "removed":
            if index is not None:
                del merged[index]
            continue
        summary = RecentMessage.from_document(event.document)
        if index is None:
            merged.insert(0, summary)
        else:
            merged[index] = summary.with_chat_user(merged[index].chat_user)
    return merged


class SyncEngine:

    def __init__(self, recent_message_repo: RecentMessageRepository, user_repo: Optional[UserRepository] = None) -> None:
        self._repo = recent_message_repo
        self._user_repo = user_repo
        self._stream: Optional[ChangeStream] = None
        self._users: Dict[str, ChatUser] = {}
        self.state: StateStore[RecentMessagesView] = StateStore(RecentMessagesView())

    @property
    def recent_messages(self) -> List[RecentMessage]:
        return list(self.state.snapshot.recent_messages)

    async def start(self, owner_id: Optional[str]) -> None:
        if self.state.snapshot.state in (SyncState.SUBSCRIBED, SyncState.UPDATING):
            raise RuntimeError("Sync engine is already subscribed")
        if not owner_id:
            error = NotAuthenticated("Could not find uid")
            self._record_error(error)
            raise error
        self.state.replace(RecentMessagesView(owner_id=owner_id, state=SyncState.SUBSCRIBED))
        try:
            self._stream = await self._repo.subscribe_all(owner_id, self._on_batch, self._record_error)
        except ChatSyncError as exc:
            self.state.update(state=SyncState.UNSUBSCRIBED)
            self._record_error(exc)
            raise
        logger.info("Listening for recent messages of %s", owner_id)

    async def stop(self) -> None:
        if self.state.snapshot.state is SyncState.UNSUBSCRIBED:
            return
        self.state.update(state=SyncState.UNSUBSCRIBED)
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.cancel()

    @property
    def active(self) -> bool:
        return self.state.snapshot.state in (SyncState.SUBSCRIBED, SyncState.UPDATING)

    async def _on_batch(self, events: List[ChangeEvent]) -> None:
        if not self.active:
            return
        valid = [event for event in events if self._is_decodable(event)]
        await self._resolve_users(valid)
        # the engine may have been stopped while users were resolving
        if not self.active:
            return
        self.state.update(state=SyncState.UPDATING)
        merged = merge_recent_messages(self.state.snapshot.recent_messages, valid)
        merged = [
            entry if entry.chat_user is not None else entry.with_chat_user(self._users.get(entry.peer_id))
            for entry in merged
        ]
        self.state.update(state=SyncState.SUBSCRIBED, recent_messages=tuple(merged))

    def _is_decodable(self, event: ChangeEvent) -> bool:
        if event.type == "removed":
            return True
        try:
            RecentMessage.from_document(event.document)
        except InvalidDocument as exc:
            self._record_error(exc)
            return False
        return True

    async def _resolve_users(self, events: List[ChangeEvent]) -> None:
        if self._user_repo is None:
            return
        for event in events:
            if event.type == "removed" or event.id in self._users:
                continue
            try:
                user = await self._user_repo.get_user(event.id)
            except ChatSyncError as exc:
                self._record_error(exc)
                continue
            if user is not None:
                self._users[event.id] = user

    def _record_error(self, error: ChatSyncError) -> None:
        logger.warning("Failed to listen for recent messages (%s): %s", error.code, error)
        self.state.update(error_message=f"Failed to listen for recent messages: {error}")
