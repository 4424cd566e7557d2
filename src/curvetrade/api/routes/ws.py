"""WebSocket hub pushing the merged candle series to chart clients."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from curvetrade.api.routes.chart import series_payload

log = structlog.get_logger(__name__)

router = APIRouter()


class SeriesHub:
    """Manages WebSocket connections and broadcasts series updates to all clients."""

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []
        self._pending: set[asyncio.Task] = set()

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.connections.append(ws)
        log.info("series_ws_connected", total=len(self.connections))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("series_ws_disconnected", total=len(self.connections))

    async def broadcast(self, payload: dict) -> None:
        """Send a payload to all connected clients, removing broken connections."""
        for ws in self.connections.copy():
            try:
                await ws.send_json(payload)
            except (WebSocketDisconnect, RuntimeError, OSError):
                if ws in self.connections:
                    self.connections.remove(ws)
                log.warning("series_ws_broadcast_error", remaining=len(self.connections))

    def publish(self, payload: dict) -> None:
        """Schedule a broadcast from synchronous code (controller listeners)."""
        if not self.connections:
            return
        task = asyncio.get_running_loop().create_task(self.broadcast(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Send the current series on connect, then every update."""
    hub: SeriesHub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        controller = getattr(websocket.app.state, "controller", None)
        if controller is not None:
            await websocket.send_json(series_payload(controller))
        while True:
            # Consume messages to keep connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)
