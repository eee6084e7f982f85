"""WebSocket connection management for live batch progress."""

import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections grouped by batch id."""

    def __init__(self):
        self.connections: dict[str, list[WebSocket]] = {}

    async def connect(self, key: str, websocket: WebSocket) -> None:
        """Accept a WebSocket connection and add it to the connection pool.

        Args:
            key: Batch id
            websocket: The WebSocket connection to add
        """
        await websocket.accept()
        self.connections.setdefault(key, []).append(websocket)

    async def broadcast(self, key: str, message: dict) -> None:
        """Send a message to every socket watching key.

        Sockets that fail to receive are dropped.
        """
        disconnected = []
        for ws in list(self.connections.get(key, [])):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping websocket for {key}: {e}")
                disconnected.append(ws)

        for ws in disconnected:
            self.disconnect(key, ws)

    def disconnect(self, key: str, websocket: WebSocket) -> None:
        """Remove a WebSocket from the connection pool."""
        sockets = self.connections.get(key)
        if sockets and websocket in sockets:
            sockets.remove(websocket)
            if not sockets:
                self.connections.pop(key, None)

    def connection_count(self, key: str) -> int:
        return len(self.connections.get(key, []))
