"""Single upstream WebSocket connection using picows.

Each DerivConnection owns one socket to the upstream API, keeps it alive
with an application-level ping, tracks its quality and reconnects with
exponential backoff until the attempts run out.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

import orjson
from picows import WSCloseCode, WSFrame, WSListener, WSMsgType, WSTransport, ws_connect

from tickcore.models import ConnectionQuality, ConnectionStatus
from tickcore.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

OpenCallback = Callable[["DerivConnection"], None]
CloseCallback = Callable[["DerivConnection"], None]
MessageCallback = Callable[["DerivConnection", dict[str, Any]], None]


class ConnectionState(str, Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    DORMANT = "DORMANT"  # Reconnect attempts exhausted; manual restart only


class DerivListener(WSListener):
    """picows listener forwarding socket events to its DerivConnection."""

    def __init__(self, connection: "DerivConnection"):
        self._connection = connection

    def on_ws_connected(self, transport: WSTransport):
        self._connection.handle_open(transport)

    def on_ws_disconnected(self, transport: WSTransport):
        self._connection.handle_close()

    def on_ws_frame(self, transport: WSTransport, frame: WSFrame):
        if frame.msg_type == WSMsgType.TEXT:
            self._connection.handle_text(frame.get_payload_as_utf8_text())
        elif frame.msg_type == WSMsgType.PING:
            transport.send_pong(frame.get_payload_as_bytes())
        elif frame.msg_type == WSMsgType.CLOSE:
            transport.send_close(WSCloseCode.OK)
            transport.disconnect()


class DerivConnection:
    """One pooled upstream connection and its lifecycle."""

    def __init__(
        self,
        app_id: str,
        url: str,
        scheduler: Scheduler,
        on_open: OpenCallback | None = None,
        on_close: CloseCallback | None = None,
        on_message: MessageCallback | None = None,
        ping_interval: float = 30.0,
        reconnect_base_delay: float = 1.0,
        max_reconnect_attempts: int = 5,
        api_token: str = "",
    ):
        self.app_id = app_id
        self.url = f"{url}?app_id={app_id}"
        self._scheduler = scheduler
        self._on_open = on_open
        self._on_close = on_close
        self._on_message = on_message
        self._ping_interval = ping_interval
        self._reconnect_base_delay = reconnect_base_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._api_token = api_token

        self._transport: Any = None
        self._state = ConnectionState.CLOSED
        self._quality = ConnectionQuality.DISCONNECTED
        self._tick_count = 0
        self._last_ping: float | None = None
        self._awaiting_pong = False
        self._reconnect_attempts = 0
        self._ping_timer: TimerHandle | None = None
        self._reconnect_timer: TimerHandle | None = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def quality(self) -> ConnectionQuality:
        return self._quality

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def get_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            app_id=self.app_id,
            is_connected=self.is_open,
            quality=self._quality,
            tick_count=self._tick_count,
            last_ping=self._last_ping,
            reconnect_attempts=self._reconnect_attempts,
            dormant=self._state == ConnectionState.DORMANT,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket. Failures are routed into the reconnect path."""
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return
        self._stopped = False
        self._reconnect_timer = None
        self._state = ConnectionState.CONNECTING
        logger.info(f"Connecting upstream app {self.app_id}")
        try:
            await self._open_transport()
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Upstream app {self.app_id} connect failed: {e}")
            self.handle_close()
        except Exception as e:
            logger.error(f"Upstream app {self.app_id} connect error: {e}")
            self.handle_close()

    async def _open_transport(self) -> None:
        """Establish the picows socket; the listener reports open/close."""
        await ws_connect(lambda: DerivListener(self), self.url)

    async def restart(self) -> None:
        """Manual restart, also out of the dormant state."""
        self._reconnect_attempts = 0
        if self._state == ConnectionState.DORMANT:
            self._state = ConnectionState.CLOSED
        await self.connect()

    async def close(self) -> None:
        """Close for good: no reconnect afterwards."""
        self._stopped = True
        self._cancel_timers()
        if self._transport is not None:
            self._transport.send_close(WSCloseCode.OK)
            self._transport.disconnect()
        self._transport = None
        self._state = ConnectionState.CLOSED
        self._quality = ConnectionQuality.DISCONNECTED

    def _cancel_timers(self) -> None:
        if self._ping_timer:
            self._ping_timer.cancel()
            self._ping_timer = None
        if self._reconnect_timer:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    # ------------------------------------------------------------------
    # Socket events
    # ------------------------------------------------------------------

    def handle_open(self, transport: Any) -> None:
        self._transport = transport
        self._state = ConnectionState.OPEN
        self._quality = ConnectionQuality.EXCELLENT
        self._reconnect_attempts = 0
        self._awaiting_pong = False
        logger.info(f"Upstream app {self.app_id} connected")

        if self._ping_timer:
            self._ping_timer.cancel()
        self._ping_timer = self._scheduler.every(self._ping_interval, self._ping)

        if self._api_token:
            self.send({"authorize": self._api_token})

        if self._on_open:
            self._on_open(self)

    def handle_close(self) -> None:
        was_open = self._state == ConnectionState.OPEN
        self._transport = None
        self._quality = ConnectionQuality.DISCONNECTED
        if self._ping_timer:
            self._ping_timer.cancel()
            self._ping_timer = None
        if self._state != ConnectionState.DORMANT:
            self._state = ConnectionState.CLOSED

        if was_open:
            logger.warning(f"Upstream app {self.app_id} disconnected")
            if self._on_close:
                self._on_close(self)

        if not self._stopped:
            self._schedule_reconnect()

    def handle_text(self, text: str) -> None:
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError as e:
            logger.error(f"Failed to parse upstream message: {e}")
            self.mark_error()
            return

        msg_type = data.get("msg_type")
        if msg_type in ("ping", "pong"):
            self._awaiting_pong = False
            self._quality = ConnectionQuality.EXCELLENT
            self._last_ping = self._scheduler.now()
        elif msg_type == "tick":
            self._tick_count += 1

        if self._on_message:
            try:
                self._on_message(self, data)
            except Exception as e:
                logger.error(f"Upstream message handler error: {e}", exc_info=True)

    def mark_error(self) -> None:
        """Transport-level error: degrade quality, keep the socket."""
        if self.is_open:
            self._quality = ConnectionQuality.POOR

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, payload: dict[str, Any]) -> bool:
        """Send a JSON payload. Returns False when the socket is not open."""
        if not self.is_open or self._transport is None:
            return False
        try:
            self._transport.send(WSMsgType.TEXT, orjson.dumps(payload))
        except Exception as e:
            logger.warning(f"Upstream app {self.app_id} send failed: {e}")
            self.mark_error()
            return False
        return True

    def _ping(self) -> None:
        if not self.is_open:
            return
        if self._awaiting_pong and self._quality == ConnectionQuality.EXCELLENT:
            self._quality = ConnectionQuality.GOOD
        self._awaiting_pong = True
        self.send({"ping": 1})

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            return
        if self._reconnect_attempts >= self._max_reconnect_attempts:
            self._state = ConnectionState.DORMANT
            logger.error(
                f"Upstream app {self.app_id} gave up after "
                f"{self._reconnect_attempts} reconnect attempts"
            )
            return
        delay = self._reconnect_base_delay * 2 ** self._reconnect_attempts
        self._reconnect_attempts += 1
        logger.info(
            f"Reconnecting upstream app {self.app_id} in {delay}s "
            f"(attempt {self._reconnect_attempts}/{self._max_reconnect_attempts})"
        )
        self._reconnect_timer = self._scheduler.call_later(delay, self.connect)
