"""
Single-writer state container.

The owner of a ``StateStore`` is the only code that calls ``update``; every
update swaps in a new immutable snapshot and hands it to all listeners.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Generic, List, Set, TypeVar

from pydantic import BaseModel


logger = logging.getLogger(__name__)

SnapshotT = TypeVar("SnapshotT", bound=BaseModel)


class StateStore(Generic[SnapshotT]):

    def __init__(self, initial: SnapshotT) -> None:
        self._snapshot = initial
        self._callbacks: List[Callable[[SnapshotT], None]] = []
        self._queues: Set[asyncio.Queue] = set()

    @property
    def snapshot(self) -> SnapshotT:
        return self._snapshot

    def update(self, **changes) -> SnapshotT:
        self._snapshot = self._snapshot.model_copy(update=changes)
        self._broadcast()
        return self._snapshot

    def replace(self, snapshot: SnapshotT) -> SnapshotT:
        self._snapshot = snapshot
        self._broadcast()
        return self._snapshot

    def subscribe(self, callback: Callable[[SnapshotT], None]) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def listen(self) -> AsyncIterator[SnapshotT]:
        """Yield the current snapshot, then every later one.

        Slow listeners only see the latest snapshot; intermediate ones are
        dropped.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._queues.add(queue)
        try:
            yield self._snapshot
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    def _broadcast(self) -> None:
        snapshot = self._snapshot
        for callback in list(self._callbacks):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("State listener failed")
        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)
