"""Tests for the martingale stake manager."""

import orjson
import pytest
from pydantic import ValidationError

from tickapp.storage import MemoryKeyValueStore
from tickcore.models import Confidence, SignalType, StakeSettings, TradeRecord, TradeStatus
from tickcore.staking import (
    KEY_CURRENT_BALANCE,
    KEY_SESSION_STATS,
    KEY_SETTINGS,
    KEY_TRADE_HISTORY,
    MIN_STAKE,
    StakeManager,
)


def make_trade(profit, contract_id="c1", stake=1.0):
    return TradeRecord(
        contract_id=contract_id,
        market="R_10",
        type=SignalType.EVEN,
        stake=stake,
        profit=profit,
        status=TradeStatus.WON if profit > 0 else TradeStatus.LOST,
        timestamp=1000.0,
    )


class TestStakeCalculation:
    @pytest.fixture
    def store(self):
        return MemoryKeyValueStore()

    @pytest.fixture
    def manager(self, store):
        return StakeManager(store=store, clock=lambda: 1000.0)

    @pytest.mark.asyncio
    async def test_martingale_after_three_losses_then_reset(self, manager):
        await manager.set_current_balance(1000.0)
        assert manager.calculate_next_stake() == 1.0

        for i in range(3):
            await manager.record_trade(make_trade(-1.0, contract_id=f"l{i}"))
        assert manager.calculate_next_stake() == 8.0

        await manager.record_trade(make_trade(0.95, contract_id="w"))
        assert manager.calculate_next_stake() == 1.0
        assert manager.get_current_martingale_step() == 0

    @pytest.mark.asyncio
    async def test_step_capped_at_max(self, manager):
        await manager.update_stake_settings(max_martingale_steps=2)
        for i in range(4):
            await manager.record_trade(make_trade(-1.0, contract_id=f"l{i}"))
        assert manager.get_current_martingale_step() == 2
        # At the cap the progression restarts from the base stake
        assert manager.calculate_next_stake() == 1.0

    def test_stake_never_below_floor(self):
        manager = StakeManager(settings=StakeSettings(base_stake=0.1))
        assert manager.calculate_next_stake() == MIN_STAKE

    @pytest.mark.asyncio
    async def test_auto_adjustment_scales_by_balance(self, manager):
        await manager.update_stake_settings(auto_stake_adjustment=True, base_stake=2.0)
        await manager.set_current_balance(50.0)
        # 50 / max(50, 100) = 0.5
        assert manager.calculate_next_stake() == 1.0

    def test_recommended_stake_by_confidence(self, manager):
        assert manager.get_recommended_stake_for_signal(Confidence.HIGH) == 1.5
        assert manager.get_recommended_stake_for_signal("LOW") == 0.7
        assert manager.get_recommended_stake_for_signal("UNKNOWN") == 1.0


class TestStopConditions:
    @pytest.fixture
    def manager(self):
        return StakeManager(store=MemoryKeyValueStore(), clock=lambda: 1000.0)

    @pytest.mark.asyncio
    async def test_healthy_session_does_not_stop(self, manager):
        await manager.set_current_balance(1000.0)
        await manager.record_trade(make_trade(5.0))
        decision = manager.should_stop_trading()
        assert decision.should_stop is False
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_stop_loss(self, manager):
        await manager.set_current_balance(1000.0)
        await manager.record_trade(make_trade(-30.0, contract_id="a"))
        await manager.record_trade(make_trade(-30.0, contract_id="b"))
        decision = manager.should_stop_trading()
        assert decision.should_stop is True
        assert "Stop loss" in decision.reason

    @pytest.mark.asyncio
    async def test_take_profit(self, manager):
        await manager.set_current_balance(1000.0)
        await manager.record_trade(make_trade(100.0))
        decision = manager.should_stop_trading()
        assert decision.should_stop is True
        assert "Take profit" in decision.reason

    @pytest.mark.asyncio
    async def test_consecutive_losses(self, manager):
        await manager.set_current_balance(1000.0)
        for i in range(6):
            await manager.record_trade(make_trade(-1.0, contract_id=f"l{i}"))
        assert manager.should_stop_trading().should_stop is False

        await manager.record_trade(make_trade(-1.0, contract_id="l6"))
        decision = manager.should_stop_trading()
        assert decision.should_stop is True
        assert "consecutive losses" in decision.reason

    def test_insufficient_balance(self, manager):
        decision = manager.should_stop_trading()
        assert decision.should_stop is True
        assert "Insufficient balance" in decision.reason

    @pytest.mark.asyncio
    async def test_stop_loss_reported_before_balance(self, manager):
        await manager.record_trade(make_trade(-50.0))
        assert "Stop loss" in manager.should_stop_trading().reason


class TestSessionStats:
    @pytest.mark.asyncio
    async def test_stats_and_drawdown(self):
        manager = StakeManager(store=MemoryKeyValueStore(), clock=lambda: 1000.0)
        await manager.set_current_balance(100.0)
        await manager.record_trade(make_trade(5.0, contract_id="a"))
        await manager.record_trade(make_trade(-10.0, contract_id="b"))
        await manager.record_trade(make_trade(-3.0, contract_id="c"))

        stats = manager.get_session_stats()
        assert stats.total_trades == 3
        assert stats.total_profit == -8.0
        assert stats.win_rate == 33.33
        assert stats.consecutive_losses == 2
        assert stats.best_win_streak == 1
        assert stats.worst_loss_streak == 2
        assert stats.max_drawdown == 13.0
        assert manager.get_current_balance() == 92.0

    @pytest.mark.asyncio
    async def test_history_retention(self):
        manager = StakeManager(history_limit=3)
        for i in range(5):
            await manager.record_trade(make_trade(1.0, contract_id=str(i)))
        assert [t.contract_id for t in manager.get_trade_history()] == ["2", "3", "4"]

    @pytest.mark.asyncio
    async def test_reset_session(self):
        manager = StakeManager(clock=lambda: 2000.0)
        await manager.set_current_balance(500.0)
        await manager.record_trade(make_trade(-1.0))
        await manager.reset_session()

        stats = manager.get_session_stats()
        assert stats.total_trades == 0
        assert stats.session_start_balance == 499.0
        assert stats.session_start_time == 2000.0
        assert manager.get_trade_history() == []
        assert manager.get_current_martingale_step() == 0

    @pytest.mark.asyncio
    async def test_clear_trade_history_keeps_stats(self):
        store = MemoryKeyValueStore()
        manager = StakeManager(store=store, clock=lambda: 1000.0)
        await manager.set_current_balance(100.0)
        await manager.record_trade(make_trade(-1.0))

        await manager.clear_trade_history()

        assert manager.get_trade_history() == []
        assert manager.get_session_stats().total_trades == 1
        assert manager.get_current_balance() == 99.0
        restored = StakeManager(store=store)
        await restored.load()
        assert restored.get_trade_history() == []

    @pytest.mark.asyncio
    async def test_invalid_settings_update_rejected(self):
        manager = StakeManager()
        with pytest.raises(ValidationError):
            await manager.update_stake_settings(stop_loss_limit=10.0)
        assert manager.get_stake_settings().stop_loss_limit == -50.0

    @pytest.mark.asyncio
    async def test_performance_metrics(self):
        manager = StakeManager()
        await manager.record_trade(make_trade(2.0, contract_id="a"))
        await manager.record_trade(make_trade(-1.0, contract_id="b"))
        metrics = manager.get_performance_metrics()
        assert metrics["profit_factor"] == 2.0
        assert metrics["average_win"] == 2.0
        assert metrics["average_loss"] == 1.0
        assert metrics["win_loss_ratio"] == 2.0


class TestPersistence:
    @pytest.mark.asyncio
    async def test_state_survives_reload(self):
        store = MemoryKeyValueStore()
        manager = StakeManager(store=store, clock=lambda: 1000.0)
        await manager.set_current_balance(200.0)
        await manager.update_stake_settings(base_stake=2.0)
        await manager.record_trade(make_trade(-2.0))

        restored = StakeManager(store=store, clock=lambda: 5000.0)
        await restored.load()

        assert restored.get_stake_settings().base_stake == 2.0
        assert restored.get_current_balance() == 198.0
        assert restored.get_current_martingale_step() == 1
        assert restored.get_session_stats() == manager.get_session_stats()
        assert restored.calculate_next_stake() == 4.0

    @pytest.mark.asyncio
    async def test_corrupt_records_fall_back_to_defaults(self):
        store = MemoryKeyValueStore({
            KEY_SETTINGS: "{not json",
            KEY_SESSION_STATS: orjson.dumps({"total_trades": "many"}).decode(),
            KEY_TRADE_HISTORY: orjson.dumps([{"contract_id": "x"}]).decode(),
            KEY_CURRENT_BALANCE: "\"lots\"",
        })
        manager = StakeManager(store=store)

        await manager.load()

        assert manager.get_stake_settings() == StakeSettings()
        assert manager.get_session_stats().total_trades == 0
        assert manager.get_trade_history() == []
        assert manager.get_current_balance() == 0.0


class TestExportImport:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        source = StakeManager(clock=lambda: 1000.0)
        await source.set_current_balance(100.0)
        await source.record_trade(make_trade(0.95, contract_id="a"))
        await source.record_trade(make_trade(-1.0, contract_id="b"))

        target = StakeManager(clock=lambda: 3000.0)
        assert await target.import_trade_history(source.export_trade_history()) is True

        assert target.get_session_stats() == source.get_session_stats()
        assert target.get_trade_history() == source.get_trade_history()
        assert target.get_current_balance() == source.get_current_balance()
        assert target.get_current_martingale_step() == source.get_current_martingale_step()

    @pytest.mark.asyncio
    async def test_invalid_import_changes_nothing(self):
        manager = StakeManager()
        await manager.record_trade(make_trade(1.0))
        before = manager.get_trade_history()

        assert await manager.import_trade_history("not json") is False
        assert await manager.import_trade_history('{"history": [{"bad": 1}]}') is False
        assert await manager.import_trade_history("[1, 2]") is False
        assert manager.get_trade_history() == before
