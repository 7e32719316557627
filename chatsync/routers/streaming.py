import asyncio
import logging

from fastapi import WebSocket

from chatsync.services.state import StateStore


logger = logging.getLogger(__name__)


async def forward_snapshots(websocket: WebSocket, store: StateStore) -> None:
    """Send every published snapshot of ``store`` to the socket as JSON."""
    async for snapshot in store.listen():
        await websocket.send_text(snapshot.model_dump_json())


def start_forwarding(websocket: WebSocket, store: StateStore) -> asyncio.Task:
    return asyncio.create_task(forward_snapshots(websocket, store))


async def stop_forwarding(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.warning("Snapshot forwarding ended with an error", exc_info=True)
