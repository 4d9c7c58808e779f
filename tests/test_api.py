"""Tests for the REST routes and the WebSocket endpoint."""

import asyncio
from unittest.mock import AsyncMock

import orjson
import pytest
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from fastapi.testclient import TestClient

from tickapp.api import ConnectionManager, router, websocket_endpoint
from tickapp.clients import NoConnectionError
from tickapp.main import make_performance_feedback, sync_balance
from tickapp.services import ExecutionService, TickIngestionService
from tickapp.storage import MemoryKeyValueStore
from tickcore.analyzers import HeuristicAnalyzer, TrendAnalyzer
from tickcore.bus import SignalBus
from tickcore.models import (
    Confidence,
    ConnectionQuality,
    ConnectionStatus,
    ExecutionResult,
    PoolStatus,
    Signal,
    SignalType,
    TradeRecord,
    TradeStatus,
)
from tickcore.scheduler import ManualScheduler
from tickcore.staking import StakeManager


class StubPool:
    def __init__(self):
        self.send_request = AsyncMock(return_value={"buy": {"contract_id": 555}})
        self.restarted = []

    def get_overall_status(self):
        return PoolStatus.DEGRADED

    def get_connection_statuses(self):
        return [ConnectionStatus(app_id="1089", is_connected=True, quality=ConnectionQuality.GOOD)]

    def subscribe_to_ticks(self, market, callback):
        return lambda: None

    async def restart_connection(self, app_id):
        self.restarted.append(app_id)
        return app_id == "1089"


def make_signal(market="R_10", created_at=1000.0):
    return Signal(
        created_at=created_at,
        market=market,
        type=SignalType.ODD,
        entry_value=3,
        confidence=Confidence.HIGH,
        score=0.85,
        strategy_source="Trend Analysis",
        strategy="Parity Trend",
        expires_at=created_at + 35,
    )


@pytest.fixture
def signal():
    return make_signal()


@pytest.fixture
def app(signal):
    scheduler = ManualScheduler(start=1000.0)
    pool = StubPool()
    analyzers = [TrendAnalyzer(scheduler, markets=["R_10"])]
    bus = SignalBus()
    stake_manager = StakeManager(store=MemoryKeyValueStore(), clock=scheduler.now)
    execution = ExecutionService(pool, stake_manager, scheduler)

    asyncio.run(bus.publish([signal, make_signal(created_at=900.0)]))

    app = FastAPI(version="9.9.9", default_response_class=ORJSONResponse)
    app.include_router(router, prefix="/api")
    app.websocket("/ws")(websocket_endpoint)
    app.state.scheduler = scheduler
    app.state.pool = pool
    app.state.analyzers = analyzers
    app.state.bus = bus
    app.state.stake_manager = stake_manager
    app.state.execution = execution
    app.state.ingestion = TickIngestionService(pool, analyzers)
    app.state.ws_manager = ConnectionManager()
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestStatusAndSignals:
    def test_status(self, client):
        response = client.get("/api/status")
        assert response.status_code == 200
        data = response.json()
        assert data["version"] == "9.9.9"
        assert data["pool"] == "DEGRADED"
        assert data["connections"][0]["quality"] == "GOOD"
        assert data["markets"] == ["R_10"]
        assert data["analyzers"] == ["trend"]
        assert data["active_signals"] == 1
        assert data["auto_trading"] is False
        assert data["cache"] == {"status": "disconnected"}

    def test_active_signals_only(self, client, signal):
        data = client.get("/api/signals").json()
        assert [s["id"] for s in data] == [signal.id]

    def test_all_signals_newest_first(self, client, signal):
        data = client.get("/api/signals", params={"active_only": False}).json()
        assert len(data) == 2
        assert data[0]["id"] != signal.id
        assert data[1]["status"] == "ACTIVE"

    def test_market_filter(self, client):
        assert client.get("/api/signals", params={"market": "R_25"}).json() == []

    def test_get_signal(self, client, signal):
        response = client.get(f"/api/signals/{signal.id}")
        assert response.status_code == 200
        assert response.json()["type"] == "ODD"

    def test_unknown_signal(self, client):
        assert client.get("/api/signals/missing").status_code == 404
        assert client.post("/api/signals/missing/execute").status_code == 404

    def test_restart_connection(self, app, client):
        response = client.post("/api/connections/1089/restart")
        assert response.status_code == 200
        assert response.json()[0]["app_id"] == "1089"
        assert client.post("/api/connections/42/restart").status_code == 404
        assert app.state.pool.restarted == ["1089", "42"]

    def test_analyzers(self, client):
        data = client.get("/api/analyzers").json()
        assert data[0]["name"] == "trend"
        assert data[0]["markets"] == {"R_10": 0}


class TestTrades:
    def test_manual_execution(self, client, signal):
        response = client.post(f"/api/signals/{signal.id}/execute")
        assert response.status_code == 200
        result = response.json()
        assert result["success"] is True
        assert result["contract_id"] == "555"
        assert result["stake"] == 1.0

        open_trades = client.get("/api/trades/open").json()
        assert [t["contract_id"] for t in open_trades] == ["555"]

        assert client.post("/api/trades/stop").json() == {"success": True}
        assert client.get("/api/trades/open").json() == []

    def test_execution_failure_reported(self, app, client, signal):
        app.state.pool.send_request.side_effect = NoConnectionError("No open upstream connection")
        result = client.post(f"/api/signals/{signal.id}/execute").json()
        assert result["success"] is False
        assert "No open upstream connection" in result["error"]

    def test_clear_history(self, app, client, signal):
        settled = TradeRecord(
            contract_id="7",
            market="R_10",
            type=SignalType.ODD,
            stake=1.0,
            profit=-1.0,
            status=TradeStatus.LOST,
            timestamp=990.0,
        )
        asyncio.run(app.state.stake_manager.record_trade(settled))
        client.post(f"/api/signals/{signal.id}/execute")
        assert [t["contract_id"] for t in client.get("/api/trades").json()] == ["7"]

        assert client.delete("/api/trades/history").json() == {"success": True}

        assert client.get("/api/trades").json() == []
        assert [t["contract_id"] for t in client.get("/api/trades/open").json()] == ["555"]
        assert client.get("/api/stats").json()["session"]["total_trades"] == 1

    def test_export_import_round_trip(self, client):
        client.patch("/api/settings/stake", json={"base_stake": 3.0})
        exported = client.get("/api/trades/export")
        assert exported.headers["content-type"].startswith("application/json")
        assert orjson.loads(exported.text)["settings"]["base_stake"] == 3.0

        client.patch("/api/settings/stake", json={"base_stake": 1.0})
        response = client.post(
            "/api/trades/import", content=exported.text, headers={"content-type": "text/plain"}
        )

        assert response.status_code == 200
        assert client.get("/api/settings/stake").json()["base_stake"] == 3.0

    def test_import_rejects_garbage(self, client):
        response = client.post(
            "/api/trades/import", content="not json", headers={"content-type": "text/plain"}
        )
        assert response.status_code == 400


class TestSettingsAndSession:
    def test_stats_reflect_balance(self, client):
        data = client.get("/api/stats").json()
        assert data["next_stake"] == 1.0
        assert data["should_stop"] is True
        assert "balance" in data["stop_reason"].lower()

        assert client.put("/api/session/balance", json={"balance": 250.0}).json() == {
            "current_balance": 250.0
        }
        data = client.get("/api/stats").json()
        assert data["should_stop"] is False
        assert data["current_balance"] == 250.0
        assert data["session"]["session_start_balance"] == 250.0

    def test_patch_stake_settings(self, client):
        response = client.patch("/api/settings/stake", json={"base_stake": 2.0, "max_martingale_steps": 3})
        assert response.status_code == 200
        assert response.json()["base_stake"] == 2.0
        assert response.json()["martingale_multiplier"] == 2.0
        assert client.get("/api/stats").json()["next_stake"] == 2.0

    def test_invalid_stake_settings(self, client):
        response = client.patch("/api/settings/stake", json={"base_stake": -1})
        assert response.status_code == 422
        assert client.get("/api/settings/stake").json()["base_stake"] == 1.0

    def test_patch_auto_trader(self, client):
        response = client.patch(
            "/api/settings/auto-trader", json={"enabled": True, "risk_mode": "LESS_RISKY"}
        )
        assert response.status_code == 200
        data = client.get("/api/settings/auto-trader").json()
        assert data["enabled"] is True
        assert data["risk_mode"] == "LESS_RISKY"

    def test_invalid_auto_trader_settings(self, client):
        response = client.patch("/api/settings/auto-trader", json={"max_concurrent_trades": 0})
        assert response.status_code == 422

    def test_reset_session(self, client):
        client.put("/api/session/balance", json={"balance": 80.0})
        data = client.post("/api/session/reset").json()
        assert data["total_trades"] == 0
        assert data["session_start_balance"] == 80.0

    def test_metrics(self, client):
        data = client.get("/api/metrics").json()
        assert set(data) == {"performance", "recent", "ingestion", "heuristic_accuracy"}
        assert data["recent"] == {"win_rate": 0.5, "total_trades": 0}
        assert data["heuristic_accuracy"] == {}


class TestWebSocket:
    def test_connect_and_messages(self, app, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "connected"
            assert app.state.ws_manager.connection_count == 1

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            ws.send_json({"type": "status"})
            assert ws.receive_json()["data"] == {"pool": "DEGRADED"}

            ws.send_json({"type": "subscribe"})
            assert ws.receive_json()["type"] == "error"

            ws.send_text("{bad")
            assert ws.receive_json()["data"]["message"] == "Invalid JSON"


class TestWiring:
    @pytest.mark.asyncio
    async def test_sync_balance(self):
        pool = StubPool()
        pool.send_request.return_value = {"balance": {"balance": "123.45", "currency": "USD"}}
        stake_manager = StakeManager(store=MemoryKeyValueStore(), clock=lambda: 0.0)

        await sync_balance(pool, stake_manager)

        pool.send_request.assert_awaited_once_with({"balance": 1})
        assert stake_manager.get_current_balance() == 123.45

    @pytest.mark.asyncio
    async def test_sync_balance_failure_keeps_balance(self):
        pool = StubPool()
        pool.send_request.side_effect = NoConnectionError("down")
        stake_manager = StakeManager(store=MemoryKeyValueStore(), clock=lambda: 0.0)
        await stake_manager.set_current_balance(10.0)

        await sync_balance(pool, stake_manager)

        assert stake_manager.get_current_balance() == 10.0

    def test_performance_feedback_for_heuristic_trades(self):
        scheduler = ManualScheduler()
        heuristic = HeuristicAnalyzer(scheduler, markets=["R_10"])
        feedback = make_performance_feedback([TrendAnalyzer(scheduler), heuristic])
        signal = make_signal().model_copy(update={"strategy_source": heuristic.source})
        trade = TradeRecord(
            contract_id="1",
            market="R_10",
            type=SignalType.ODD,
            stake=1.0,
            profit=0.9,
            status=TradeStatus.WON,
            timestamp=0.0,
        )

        feedback(ExecutionResult(success=True, signal=signal, trade=trade))
        feedback(ExecutionResult(success=True, signal=make_signal(), trade=trade))
        feedback(ExecutionResult(success=True, signal=signal, trade=trade.model_copy(update={"status": TradeStatus.ACTIVE})))

        perf = heuristic.get_performance_stats()["R_10"]
        assert perf.trades == 1
        assert perf.accuracy == 1.0
