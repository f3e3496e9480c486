"""Fan-out of ledger events to connected admin dashboards."""

from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger


class AdminEventHub:
    def __init__(self):
        self.connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)
        logger.info(f"Admin dashboard connected ({len(self.connections)} open)")

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)
        logger.info(f"Admin dashboard disconnected ({len(self.connections)} open)")

    async def broadcast(self, event_type: str, **payload: Any) -> None:
        message = {"type": event_type, **payload}
        for websocket in list(self.connections):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.warning(f"Dropping dashboard connection after send failure: {e}")
                self.disconnect(websocket)
