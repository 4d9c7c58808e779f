"""Tests for a single upstream connection: lifecycle, ping and backoff."""

from unittest.mock import MagicMock

import orjson
import pytest

from tickapp.clients import ConnectionState, DerivConnection
from tickcore.models import ConnectionQuality
from tickcore.scheduler import ManualScheduler


class ScriptedConnection(DerivConnection):
    """Opens a mock transport instead of a socket, or fails on demand."""

    def __init__(self, *args, fail=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail = fail
        self.open_calls = 0
        self.transport = MagicMock()

    async def _open_transport(self):
        self.open_calls += 1
        if self.fail:
            raise OSError("connection refused")
        self.handle_open(self.transport)

    def sent(self):
        return [orjson.loads(call.args[1]) for call in self.transport.send.call_args_list]


@pytest.fixture
def scheduler():
    return ManualScheduler(start=0.0)


def make_connection(scheduler, **kwargs):
    kwargs.setdefault("ping_interval", 30)
    kwargs.setdefault("reconnect_base_delay", 1)
    kwargs.setdefault("max_reconnect_attempts", 3)
    return ScriptedConnection(app_id="1089", url="wss://example.test/websockets/v3", scheduler=scheduler, **kwargs)


class TestLifecycle:
    def test_url_carries_app_id(self, scheduler):
        conn = make_connection(scheduler)
        assert conn.url == "wss://example.test/websockets/v3?app_id=1089"

    @pytest.mark.asyncio
    async def test_open_sets_state_and_notifies(self, scheduler):
        on_open = MagicMock()
        conn = make_connection(scheduler, on_open=on_open)

        await conn.connect()

        assert conn.state == ConnectionState.OPEN
        assert conn.quality == ConnectionQuality.EXCELLENT
        on_open.assert_called_once_with(conn)
        assert conn.get_status().is_connected

    @pytest.mark.asyncio
    async def test_authorizes_when_token_set(self, scheduler):
        conn = make_connection(scheduler, api_token="secret")
        await conn.connect()
        assert conn.sent() == [{"authorize": "secret"}]

    @pytest.mark.asyncio
    async def test_send_when_closed_returns_false(self, scheduler):
        conn = make_connection(scheduler)
        assert conn.send({"ping": 1}) is False

    @pytest.mark.asyncio
    async def test_close_stops_reconnects(self, scheduler):
        on_close = MagicMock()
        conn = make_connection(scheduler, on_close=on_close)
        await conn.connect()
        transport = conn.transport

        await conn.close()
        await scheduler.advance(100)

        transport.send_close.assert_called_once()
        transport.disconnect.assert_called_once()
        assert conn.state == ConnectionState.CLOSED
        assert conn.open_calls == 1
        assert scheduler.pending_timers == 0


class TestPing:
    @pytest.mark.asyncio
    async def test_ping_sent_each_interval(self, scheduler):
        conn = make_connection(scheduler)
        await conn.connect()

        await scheduler.advance(60)

        assert conn.sent() == [{"ping": 1}, {"ping": 1}]

    @pytest.mark.asyncio
    async def test_missed_pong_degrades_to_good(self, scheduler):
        conn = make_connection(scheduler)
        await conn.connect()

        await scheduler.advance(30)
        assert conn.quality == ConnectionQuality.EXCELLENT
        await scheduler.advance(30)
        assert conn.quality == ConnectionQuality.GOOD

    @pytest.mark.asyncio
    async def test_pong_restores_excellent(self, scheduler):
        conn = make_connection(scheduler)
        await conn.connect()
        await scheduler.advance(60)

        conn.handle_text('{"msg_type": "ping", "ping": "pong"}')

        assert conn.quality == ConnectionQuality.EXCELLENT
        assert conn.get_status().last_ping == 60

    @pytest.mark.asyncio
    async def test_invalid_json_degrades_to_poor(self, scheduler):
        on_message = MagicMock()
        conn = make_connection(scheduler, on_message=on_message)
        await conn.connect()

        conn.handle_text("{not json")

        assert conn.quality == ConnectionQuality.POOR
        on_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_messages_forwarded_and_ticks_counted(self, scheduler):
        on_message = MagicMock()
        conn = make_connection(scheduler, on_message=on_message)
        await conn.connect()

        conn.handle_text('{"msg_type": "tick", "tick": {"symbol": "R_10", "quote": 1.23}}')

        on_message.assert_called_once()
        assert on_message.call_args.args[1]["tick"]["symbol"] == "R_10"
        assert conn.get_status().tick_count == 1


class TestReconnect:
    @pytest.mark.asyncio
    async def test_drop_notifies_and_reconnects(self, scheduler):
        on_close = MagicMock()
        conn = make_connection(scheduler, on_close=on_close)
        await conn.connect()

        conn.handle_close()
        assert conn.quality == ConnectionQuality.DISCONNECTED
        on_close.assert_called_once_with(conn)

        await scheduler.advance(1)
        assert conn.is_open
        assert conn.open_calls == 2
        assert conn.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_exponential_backoff_then_dormant(self, scheduler):
        on_close = MagicMock()
        conn = make_connection(scheduler, fail=True, on_close=on_close)

        await conn.connect()
        assert conn.open_calls == 1

        await scheduler.advance(1)
        assert conn.open_calls == 2
        await scheduler.advance(1.5)
        assert conn.open_calls == 2
        await scheduler.advance(0.5)
        assert conn.open_calls == 3
        await scheduler.advance(4)
        assert conn.open_calls == 4

        assert conn.state == ConnectionState.DORMANT
        assert conn.get_status().dormant
        await scheduler.advance(1000)
        assert conn.open_calls == 4
        on_close.assert_not_called()

    @pytest.mark.asyncio
    async def test_restart_from_dormant(self, scheduler):
        conn = make_connection(scheduler, fail=True, max_reconnect_attempts=1)
        await conn.connect()
        await scheduler.advance(1)
        assert conn.state == ConnectionState.DORMANT

        conn.fail = False
        await conn.restart()

        assert conn.is_open
        assert conn.reconnect_attempts == 0
