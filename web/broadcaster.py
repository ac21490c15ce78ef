"""Realtime event fan-out to connected WebSocket clients."""

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Queues events and pumps them to every connected socket.

    ``emit`` never awaits: when the queue is full the event is dropped.
    """

    def __init__(self, max_queue_size: int = 1000):
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_queue_size)
        self.connections: list[WebSocket] = []
        self.dropped_events = 0
        self._pump_task: asyncio.Task[None] | None = None

    def emit(self, event: dict[str, Any]) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_events += 1
            logger.warning(f"Event queue full, dropping {event.get('type')} event")

    def start(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())
            logger.info("Event broadcaster started")

    async def stop(self) -> None:
        if self._pump_task is None:
            return
        self._pump_task.cancel()
        try:
            await self._pump_task
        except asyncio.CancelledError:
            pass
        self._pump_task = None
        logger.info("Event broadcaster stopped")

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.broadcast(event)
            except Exception as e:
                logger.error(f"Error broadcasting {event.get('type')} event: {e}")
            finally:
                self._queue.task_done()

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send to all connected clients, pruning the ones that fail."""
        dead_connections = []
        for websocket in list(self.connections):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                dead_connections.append(websocket)

        for conn in dead_connections:
            self.remove_connection(conn)

    def add_connection(self, websocket: WebSocket) -> None:
        self.connections.append(websocket)

    def remove_connection(self, websocket: WebSocket) -> None:
        if websocket in self.connections:
            self.connections.remove(websocket)

    @property
    def pending(self) -> int:
        return self._queue.qsize()
