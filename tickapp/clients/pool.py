"""Pool of redundant upstream connections.

Multiplexes tick subscriptions (one upstream subscription per market shared
by every local callback), routes requests through the healthiest open
connection and correlates responses by a monotonic request id.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from tickapp.clients.deriv_ws import DerivConnection
from tickapp.clients.errors import NoConnectionError, RequestTimeoutError, UpstreamError
from tickcore.models import ConnectionStatus, PoolStatus, Tick
from tickcore.models.connection import QUALITY_RANK
from tickcore.scheduler import Scheduler

logger = logging.getLogger(__name__)

TickCallback = Callable[[Tick], None]
ConnectionFactory = Callable[..., DerivConnection]


@dataclass
class MarketSubscription:
    """Local bookkeeping for one market's upstream tick stream."""

    market: str
    callbacks: dict[int, TickCallback] = field(default_factory=dict)
    connection: DerivConnection | None = None
    subscription_id: str | None = None


class ConnectionPool:
    """K redundant upstream connections behind one subscribe/request API."""

    def __init__(
        self,
        scheduler: Scheduler,
        app_ids: list[str],
        url: str = "",
        connection_factory: ConnectionFactory | None = None,
        request_timeout: float = 10.0,
        ping_interval: float = 30.0,
        reconnect_base_delay: float = 1.0,
        max_reconnect_attempts: int = 5,
        api_token: str = "",
    ):
        self._scheduler = scheduler
        self._request_timeout = request_timeout
        factory = connection_factory or DerivConnection
        self._connections: list[DerivConnection] = [
            factory(
                app_id=app_id,
                url=url,
                scheduler=scheduler,
                on_open=self._on_connection_open,
                on_close=self._on_connection_close,
                on_message=self._on_connection_message,
                ping_interval=ping_interval,
                reconnect_base_delay=reconnect_base_delay,
                max_reconnect_attempts=max_reconnect_attempts,
                api_token=api_token,
            )
            for app_id in app_ids
        ]
        self._subscriptions: dict[str, MarketSubscription] = {}
        # Markets unsubscribed before their upstream subscription id was known
        self._orphans: dict[str, DerivConnection] = {}
        self._pending: dict[int, asyncio.Future] = {}
        self._req_ids = itertools.count(1)
        self._tokens = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def connections(self) -> list[DerivConnection]:
        return list(self._connections)

    async def start(self) -> None:
        await asyncio.gather(*(conn.connect() for conn in self._connections))
        logger.info(
            f"Connection pool started: {self.get_overall_status().value} "
            f"({sum(c.is_open for c in self._connections)}/{len(self._connections)} open)"
        )

    async def stop(self) -> None:
        for conn in self._connections:
            await conn.close()
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
        logger.info("Connection pool stopped")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_best_connection(self) -> DerivConnection | None:
        """Open connection with the best quality (EXCELLENT > GOOD > POOR)."""
        open_connections = [c for c in self._connections if c.is_open]
        if not open_connections:
            return None
        return min(open_connections, key=lambda c: QUALITY_RANK[c.quality])

    def get_overall_status(self) -> PoolStatus:
        open_count = sum(1 for c in self._connections if c.is_open)
        if self._connections and open_count == len(self._connections):
            return PoolStatus.CONNECTED
        if open_count > 0:
            return PoolStatus.DEGRADED
        return PoolStatus.DISCONNECTED

    def get_connection_statuses(self) -> list[ConnectionStatus]:
        return [c.get_status() for c in self._connections]

    async def restart_connection(self, app_id: str) -> bool:
        """Restart one connection by app id, including a DORMANT one."""
        for conn in self._connections:
            if conn.app_id == app_id:
                logger.info(f"Manual restart of upstream app {app_id}")
                await conn.restart()
                return True
        return False

    def subscribed_markets(self) -> list[str]:
        return list(self._subscriptions)

    # ------------------------------------------------------------------
    # Tick subscriptions
    # ------------------------------------------------------------------

    def subscribe_to_ticks(self, market: str, on_tick: TickCallback) -> Callable[[], None]:
        """Register a tick callback for a market.

        The first callback for a market opens the upstream subscription;
        later ones share it. The returned function unsubscribes this
        callback and is safe to call more than once.
        """
        sub = self._subscriptions.get(market)
        if sub is None:
            sub = self._subscriptions[market] = MarketSubscription(market)
            self._orphans.pop(market, None)
            self._send_subscribe(sub)

        token = next(self._tokens)
        sub.callbacks[token] = on_tick

        def unsubscribe() -> None:
            current = self._subscriptions.get(market)
            if current is None or current.callbacks.pop(token, None) is None:
                return
            if not current.callbacks:
                del self._subscriptions[market]
                self._forget(current)

        return unsubscribe

    def _send_subscribe(self, sub: MarketSubscription) -> None:
        conn = self.get_best_connection()
        if conn is None:
            logger.info(f"No open connection; subscription to {sub.market} deferred")
            return
        if conn.send({"ticks": sub.market, "subscribe": 1}):
            sub.connection = conn
            sub.subscription_id = None
            logger.info(f"Subscribed to {sub.market} ticks via app {conn.app_id}")

    def _forget(self, sub: MarketSubscription) -> None:
        """Send exactly one unsubscribe control message for the market."""
        conn = sub.connection
        if conn is None or not conn.is_open:
            return
        if sub.subscription_id:
            conn.send({"forget": sub.subscription_id})
        elif not any(s.connection is conn for s in self._subscriptions.values()):
            conn.send({"forget_all": "ticks"})
            # forget_all also covers streams still waiting for their id
            for market, orphan_conn in list(self._orphans.items()):
                if orphan_conn is conn:
                    del self._orphans[market]
        else:
            # Other markets share the stream; forget by id once it arrives
            self._orphans[sub.market] = conn
            return
        logger.info(f"Unsubscribed from {sub.market} ticks")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send_request(self, payload: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        """Send a request and await its correlated response.

        Raises:
            NoConnectionError: No open connection.
            RequestTimeoutError: No response within the timeout.
            UpstreamError: The response carried an error payload.
        """
        conn = self.get_best_connection()
        if conn is None:
            raise NoConnectionError("No open upstream connection")

        req_id = next(self._req_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future
        timeout = timeout if timeout is not None else self._request_timeout

        try:
            if not conn.send({**payload, "req_id": req_id}):
                raise NoConnectionError(f"Upstream app {conn.app_id} is not open")
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(req_id, timeout) from None
        finally:
            self._pending.pop(req_id, None)

    # ------------------------------------------------------------------
    # Connection events
    # ------------------------------------------------------------------

    def _on_connection_open(self, conn: DerivConnection) -> None:
        for sub in self._subscriptions.values():
            if sub.connection is None or not sub.connection.is_open:
                self._send_subscribe(sub)

    def _on_connection_close(self, conn: DerivConnection) -> None:
        for market, orphan_conn in list(self._orphans.items()):
            if orphan_conn is conn:
                del self._orphans[market]
        for sub in self._subscriptions.values():
            if sub.connection is conn:
                sub.connection = None
                sub.subscription_id = None
                self._send_subscribe(sub)

    def _on_connection_message(self, conn: DerivConnection, data: dict[str, Any]) -> None:
        req_id = data.get("req_id")
        if req_id is not None:
            self._resolve_request(req_id, data)
            return

        msg_type = data.get("msg_type")
        if msg_type == "tick":
            self._dispatch_tick(conn, data)
        elif "error" in data:
            conn.mark_error()
            logger.warning(f"Upstream error on app {conn.app_id}: {data['error'].get('message')}")

    def _resolve_request(self, req_id: Any, data: dict[str, Any]) -> None:
        future = self._pending.pop(req_id, None)
        if future is None or future.done():
            logger.debug(f"Ignoring response for unknown request {req_id}")
            return
        error = data.get("error")
        if error:
            future.set_exception(UpstreamError(error.get("message", "Unknown error"), error.get("code")))
        else:
            future.set_result(data)

    def _dispatch_tick(self, conn: DerivConnection, data: dict[str, Any]) -> None:
        tick_data = data.get("tick") or {}
        market = tick_data.get("symbol") or (data.get("echo_req") or {}).get("ticks")
        subscription_id = (data.get("subscription") or {}).get("id") or tick_data.get("id")

        orphan_conn = self._orphans.get(market)
        if orphan_conn is conn and subscription_id:
            del self._orphans[market]
            conn.send({"forget": subscription_id})
            logger.info(f"Unsubscribed from {market} ticks")
            return

        sub = self._subscriptions.get(market)
        if sub is None or sub.connection is not conn:
            return
        if subscription_id:
            sub.subscription_id = subscription_id

        try:
            tick = Tick.from_message(data, market)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed tick for {market}: {e}")
            return

        for callback in list(sub.callbacks.values()):
            try:
                callback(tick)
            except Exception as e:
                logger.error(f"Tick callback error for {market}: {e}", exc_info=True)
