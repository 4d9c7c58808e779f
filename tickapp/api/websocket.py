"""WebSocket endpoint for real-time updates."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import orjson
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from tickcore.models import ExecutionResult, Signal

logger = logging.getLogger(__name__)

KEEPALIVE_TIMEOUT = 60.0


def _orjson_dumps(obj: Any) -> str:
    """Serialize object to JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WebSocketMessage(BaseModel):
    """WebSocket message format."""

    type: str  # "signal", "execution", "status"
    data: dict[str, Any]
    timestamp: datetime

    def to_json(self) -> str:
        return _orjson_dumps(self.model_dump(mode="json"))


class ConnectionManager:
    """Manage WebSocket connections and broadcasts."""

    def __init__(self):
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self._connections)}")

    async def broadcast(self, message: WebSocketMessage) -> None:
        """Broadcast message to all connected clients."""
        if not self._connections:
            return

        message_text = message.to_json()
        disconnected = []

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception as e:
                    logger.warning(f"Failed to send message: {e}")
                    disconnected.append(websocket)

            for ws in disconnected:
                self._connections.remove(ws)

    async def send_signals(self, signals: list[Signal]) -> None:
        """Broadcast each new signal. Signal bus subscriber."""
        for signal in signals:
            await self.broadcast(
                WebSocketMessage(type="signal", data=signal.model_dump(mode="json"), timestamp=_now())
            )

    async def send_execution(self, result: ExecutionResult) -> None:
        """Broadcast a placement, settlement or halt. Execution subscriber."""
        await self.broadcast(
            WebSocketMessage(type="execution", data=result.model_dump(mode="json"), timestamp=_now())
        )

    async def send_status(self, status_data: dict) -> None:
        await self.broadcast(WebSocketMessage(type="status", data=status_data, timestamp=_now()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Messages sent to clients:
    - signal: New analyzer signal
    - execution: Trade placed, settled, failed or auto-trading halted
    - status: Connection pool status

    Message format:
    {
        "type": "signal",
        "data": {...},
        "timestamp": "2024-01-01T00:00:00+00:00"
    }
    """
    manager: ConnectionManager = websocket.app.state.ws_manager
    await manager.connect(websocket)

    try:
        await websocket.send_text(_orjson_dumps({
            "type": "connected",
            "data": {"message": "Connected to tick signal stream"},
            "timestamp": _now().isoformat(),
        }))

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=KEEPALIVE_TIMEOUT,
                )

                try:
                    message = orjson.loads(data)
                    await handle_client_message(websocket, message)
                except orjson.JSONDecodeError:
                    await websocket.send_text(_orjson_dumps({
                        "type": "error",
                        "data": {"message": "Invalid JSON"},
                        "timestamp": _now().isoformat(),
                    }))

            except asyncio.TimeoutError:
                # Keep idle connections alive
                await websocket.send_text(_orjson_dumps({
                    "type": "ping",
                    "data": {},
                    "timestamp": _now().isoformat(),
                }))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await manager.disconnect(websocket)


async def handle_client_message(websocket: WebSocket, message: dict) -> None:
    """Handle incoming message from client."""
    msg_type = message.get("type", "") if isinstance(message, dict) else ""

    if msg_type == "ping":
        await websocket.send_text(_orjson_dumps({
            "type": "pong",
            "data": {},
            "timestamp": _now().isoformat(),
        }))
    elif msg_type == "status":
        pool = websocket.app.state.pool
        await websocket.send_text(_orjson_dumps({
            "type": "status",
            "data": {"pool": pool.get_overall_status().value},
            "timestamp": _now().isoformat(),
        }))
    else:
        await websocket.send_text(_orjson_dumps({
            "type": "error",
            "data": {"message": f"Unknown message type: {msg_type}"},
            "timestamp": _now().isoformat(),
        }))
