"""
Push-based change notifications over the realtime bus.

A ``ChangeStream`` first subscribes to the bus channel, then replays the
stored partition as one batch, then forwards live events one batch at a time.
Subscribing before replaying means an event written during the replay shows
up twice at worst, never zero times; consumers de-duplicate by key.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

import pydantic

from chatsync.errors import ChatSyncError, ListenerFailed, wrap


logger = logging.getLogger(__name__)

ChangeType = Literal["added", "modified", "removed"]


class ChangeEvent(pydantic.BaseModel):

    model_config = pydantic.ConfigDict(frozen=True)

    type: ChangeType
    id: str
    document: Dict[str, Any] = {}

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, raw: str) -> "ChangeEvent":
        try:
            return cls.model_validate_json(raw)
        except pydantic.ValidationError as exc:
            raise ListenerFailed(f"Malformed change event: {exc}") from exc


BatchHandler = Callable[[List[ChangeEvent]], Awaitable[None]]
ErrorHandler = Callable[[ChatSyncError], None]
Replay = Callable[[], Awaitable[List[ChangeEvent]]]


class ChangeStream:

    def __init__(
        self,
        bus,
        channel: str,
        replay: Replay,
        on_batch: BatchHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self._bus = bus
        self.channel = channel
        self._replay = replay
        self._on_batch = on_batch
        self._on_error = on_error
        self._subscription = None
        self._task: Optional[asyncio.Task] = None
        self.cancelled = False

    async def open(self) -> "ChangeStream":
        try:
            self._subscription = await self._bus.subscribe(self.channel, self._handle_message)
        except Exception as exc:
            raise wrap(exc, ListenerFailed, f"Failed to subscribe to {self.channel}") from exc
        self._task = asyncio.create_task(self._run())
        return self

    async def _run(self) -> None:
        try:
            events = await self._replay()
        except Exception as exc:
            self._report(wrap(exc, ListenerFailed, f"Failed to replay {self.channel}"))
        else:
            await self._deliver(events)
        await self._subscription.run()

    async def _handle_message(self, raw: str) -> None:
        try:
            event = ChangeEvent.decode(raw)
        except ListenerFailed as exc:
            self._report(exc)
            return
        await self._deliver([event])

    async def _deliver(self, events: List[ChangeEvent]) -> None:
        if self.cancelled:
            return
        try:
            await self._on_batch(events)
        except Exception as exc:
            self._report(wrap(exc, ListenerFailed, f"Failed to apply changes from {self.channel}"))

    def _report(self, error: ChatSyncError) -> None:
        if error.transient:
            logger.warning("%s: %s", self.channel, error)
        else:
            logger.error("%s: %s", self.channel, error)
        if self._on_error is not None:
            self._on_error(error)

    async def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._subscription is not None:
            await self._subscription.cancel()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
