"""Signal execution service.

Places trades for signals, either one at a time on explicit request or
through a FIFO queue drained on a timer, and follows every open contract to
settlement.

Trade lifecycle:
    QUEUED -> PLACING -> OPEN -> SETTLED (WON | LOST)
A queued signal that expires or stops being ACTIVE before its turn is
dropped without being placed.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Protocol

from pydantic import ValidationError

from tickapp.clients.errors import PoolError
from tickcore.bus import Publisher, Subscriber, Unsubscribe
from tickcore.models import (
    AutoTraderSettings,
    ExecutionResult,
    Signal,
    SignalStatus,
    TradeRecord,
    TradeStatus,
)
from tickcore.risk import apply_risk_mode, build_contract_parameters
from tickcore.scheduler import Scheduler, TimerHandle
from tickcore.staking import StakeManager

logger = logging.getLogger(__name__)

RECENT_PERFORMANCE_WINDOW = 20


class RequestSender(Protocol):
    async def send_request(self, payload: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        ...


class ExecutionService:
    """Risk-aware trade placement and settlement tracking."""

    def __init__(
        self,
        pool: RequestSender,
        stake_manager: StakeManager,
        scheduler: Scheduler,
        settings: AutoTraderSettings | None = None,
        queue_interval: float = 1.0,
        monitor_interval: float = 5.0,
        currency: str = "USD",
        history_limit: int = 1000,
    ):
        self._pool = pool
        self._stake_manager = stake_manager
        self._scheduler = scheduler
        self._settings = settings or AutoTraderSettings()
        self._queue_interval = queue_interval
        self._monitor_interval = monitor_interval
        self._currency = currency
        self._history_limit = history_limit

        self._queue: deque[Signal] = deque()
        self._open_trades: dict[str, TradeRecord] = {}
        self._trade_signals: dict[str, Signal] = {}
        # Contract ids exactly as the buy response returned them, for polling
        self._upstream_ids: dict[str, Any] = {}
        self._trade_history: list[TradeRecord] = []
        self._results: Publisher[ExecutionResult] = Publisher("execution results")

        # Re-entrancy guards for the two timer-driven cycles
        self._processing_queue = False
        self._monitoring = False
        self._placing = 0
        self._loop_placements = 0

        self._placed_count = 0
        self._failed_count = 0
        self._dropped_count = 0

        self._queue_timer: TimerHandle | None = None
        self._monitor_timer: TimerHandle | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._queue_timer is None:
            self._queue_timer = self._scheduler.every(self._queue_interval, self.process_queue)
        if self._monitor_timer is None:
            self._monitor_timer = self._scheduler.every(self._monitor_interval, self.monitor_open_trades)
        logger.info(
            f"Execution service started (queue every {self._queue_interval}s, "
            f"settlement poll every {self._monitor_interval}s)"
        )

    def stop(self) -> None:
        if self._queue_timer:
            self._queue_timer.cancel()
            self._queue_timer = None
        if self._monitor_timer:
            self._monitor_timer.cancel()
            self._monitor_timer = None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_to_execution_results(self, callback: Subscriber) -> Unsubscribe:
        return self._results.subscribe(callback)

    async def _notify(self, result: ExecutionResult) -> None:
        await self._results.publish(result)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def queue_signal_for_execution(self, signal: Signal) -> bool:
        """Append a signal to the execution queue.

        Returns False (and logs why) when auto-trading is off or the signal
        is no longer actionable.
        """
        if not self._settings.enabled:
            logger.info(f"Auto trader disabled; signal {signal.id} not queued")
            return False
        if not signal.is_valid(self._scheduler.now()):
            logger.info(f"Signal {signal.id} is expired or not active; not queued")
            return False
        self._queue.append(signal)
        logger.info(f"Signal queued for execution: {signal.id} ({signal.type.value} on {signal.market})")
        return True

    async def queue_signals(self, signals: list[Signal]) -> None:
        """Signal bus consumer: queue each signal while auto-trading is on."""
        if not self._settings.enabled:
            return
        for signal in signals:
            self.queue_signal_for_execution(signal)

    def _has_capacity(self) -> bool:
        return len(self._open_trades) + self._placing < self._settings.max_concurrent_trades

    def _drop_stale_signals(self) -> None:
        """Remove queued signals that expired or stopped being ACTIVE."""
        now = self._scheduler.now()
        valid = [s for s in self._queue if s.is_valid(now)]
        dropped = len(self._queue) - len(valid)
        if dropped:
            self._queue = deque(valid)
            self._dropped_count += dropped
            logger.info(f"Dropped {dropped} expired or inactive queued signals")

    async def process_queue(self) -> None:
        """Drain the queue in FIFO order up to the concurrency cap."""
        if self._processing_queue:
            return
        self._drop_stale_signals()
        if not self._queue:
            return
        self._processing_queue = True
        try:
            placed = 0
            while self._queue and self._settings.enabled and self._has_capacity():
                decision = self._stake_manager.should_stop_trading()
                if decision.should_stop:
                    await self._halt(decision.reason)
                    break

                signal = self._queue.popleft()
                if placed and self._settings.delay_between_trades > 0:
                    await self._scheduler.sleep(self._settings.delay_between_trades)
                    # State may have changed while sleeping
                    if not self._settings.enabled or not self._has_capacity():
                        self._queue.appendleft(signal)
                        break

                if not signal.is_valid(self._scheduler.now()):
                    self._dropped_count += 1
                    logger.info(f"Dropping signal {signal.id}: expired or no longer active")
                    continue

                await self._execute(signal)
                placed += 1

                if self._settings.auto_loop:
                    self._loop_placements += 1
                    if self._loop_placements >= self._settings.loop_count:
                        logger.info(f"Auto loop finished after {self._loop_placements} trades")
                        self._settings = self._settings.model_copy(update={"enabled": False})
                        self._loop_placements = 0
        finally:
            self._processing_queue = False

    async def _halt(self, reason: str | None) -> None:
        """Stop auto-trading on a session limit."""
        logger.warning(f"Auto trading halted: {reason}")
        self._settings = self._settings.model_copy(update={"enabled": False})
        self._queue.clear()
        self._loop_placements = 0
        await self._notify(ExecutionResult(success=False, error=reason, halted=True))

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    async def execute_signal_manually(self, signal: Signal) -> ExecutionResult:
        """Place a trade for a signal immediately, bypassing queue and cap."""
        return await self._execute(signal)

    async def _execute(self, signal: Signal) -> ExecutionResult:
        placed_signal = apply_risk_mode(signal, self._settings.risk_mode)
        stake = self._stake_manager.calculate_next_stake()
        parameters = build_contract_parameters(placed_signal, stake, self._currency)
        logger.info(
            f"Executing signal {signal.id}: {placed_signal.type.value} on "
            f"{signal.market} stake {stake:.2f}"
        )

        self._placing += 1
        try:
            response = await self._pool.send_request({"buy": 1, "parameters": parameters, "price": stake})
            upstream_id = response["buy"]["contract_id"]
            contract_id = str(upstream_id)
        except (PoolError, KeyError, TypeError) as e:
            self._failed_count += 1
            error = str(e) if isinstance(e, PoolError) else f"Malformed buy response: {e}"
            logger.warning(f"Placement failed for signal {signal.id}: {error}")
            result = ExecutionResult(success=False, error=error, signal=placed_signal, stake=stake)
            await self._notify(result)
            return result
        finally:
            self._placing -= 1

        trade = TradeRecord(
            contract_id=contract_id,
            signal_id=signal.id,
            market=signal.market,
            type=placed_signal.type,
            stake=stake,
            timestamp=self._scheduler.now(),
        )
        self._open_trades[contract_id] = trade
        self._trade_signals[contract_id] = signal
        self._upstream_ids[contract_id] = upstream_id
        self._trade_history.append(trade)
        if len(self._trade_history) > self._history_limit:
            self._trade_history = self._trade_history[-self._history_limit :]
        self._placed_count += 1

        logger.info(f"Trade placed: contract {contract_id} for signal {signal.id}")
        result = ExecutionResult(
            success=True,
            contract_id=contract_id,
            signal=placed_signal,
            stake=stake,
            trade=trade.model_copy(),
        )
        await self._notify(result)
        return result

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def monitor_open_trades(self) -> None:
        """Poll every open contract once and settle the finished ones."""
        if self._monitoring or not self._open_trades:
            return
        self._monitoring = True
        try:
            for contract_id in list(self._open_trades):
                try:
                    response = await self._pool.send_request(
                        {
                            "proposal_open_contract": 1,
                            "contract_id": self._upstream_ids.get(contract_id, contract_id),
                        }
                    )
                except PoolError as e:
                    logger.warning(f"Error polling contract {contract_id}: {e}")
                    continue

                contract = response.get("proposal_open_contract") or {}
                if contract.get("is_settleable") or contract.get("is_sold"):
                    await self._settle(contract_id, contract)
        finally:
            self._monitoring = False

    async def _settle(self, contract_id: str, contract: dict[str, Any]) -> None:
        # The trade may have been dropped while the poll was in flight
        trade = self._open_trades.pop(contract_id, None)
        if trade is None:
            return
        signal = self._trade_signals.pop(contract_id, None)
        self._upstream_ids.pop(contract_id, None)

        try:
            profit = float(contract.get("profit") or 0)
        except (TypeError, ValueError):
            profit = 0.0
        won = profit > 0

        trade.profit = profit
        trade.status = TradeStatus.WON if won else TradeStatus.LOST
        trade.settled_at = self._scheduler.now()
        if signal is not None and signal.status == SignalStatus.ACTIVE:
            signal.status = SignalStatus.WON if won else SignalStatus.LOST

        await self._stake_manager.record_trade(trade.model_copy())
        logger.info(f"Trade settled: contract {contract_id} {trade.status.value} profit {profit:.2f}")

        await self._notify(
            ExecutionResult(
                success=True,
                contract_id=contract_id,
                signal=signal,
                stake=trade.stake,
                trade=trade.model_copy(),
            )
        )

    # ------------------------------------------------------------------
    # Settings and queries
    # ------------------------------------------------------------------

    def update_auto_trader_settings(self, **changes: Any) -> AutoTraderSettings:
        """Merge partial settings. Raises pydantic ValidationError when invalid."""
        was_enabled = self._settings.enabled
        try:
            self._settings = AutoTraderSettings.model_validate(
                {**self._settings.model_dump(), **changes}
            )
        except ValidationError:
            logger.warning(f"Rejected auto trader settings update: {changes}")
            raise
        if self._settings.enabled and not was_enabled:
            self._loop_placements = 0
        if not self._settings.enabled:
            self._queue.clear()
        logger.info(f"Auto trader settings updated: {self._settings.model_dump(mode='json')}")
        return self._settings.model_copy()

    def get_auto_trader_settings(self) -> AutoTraderSettings:
        return self._settings.model_copy()

    def get_open_trades(self) -> list[TradeRecord]:
        return [t.model_copy() for t in self._open_trades.values()]

    def get_trade_history(self) -> list[TradeRecord]:
        return [t.model_copy() for t in self._trade_history]

    def get_queued_signals(self) -> list[Signal]:
        return list(self._queue)

    def get_recent_performance(self) -> dict[str, float]:
        recent = self._trade_history[-RECENT_PERFORMANCE_WINDOW:]
        completed = [t for t in recent if t.is_settled]
        wins = sum(1 for t in completed if t.status == TradeStatus.WON)
        return {
            "win_rate": wins / len(completed) if completed else 0.5,
            "total_trades": len(completed),
        }

    def get_execution_stats(self) -> dict[str, Any]:
        completed = [t for t in self._trade_history if t.is_settled]
        wins = sum(1 for t in completed if t.status == TradeStatus.WON)
        return {
            "total_trades": len(self._trade_history),
            "active_trades": len(self._open_trades),
            "queued_signals": len(self._queue),
            "win_rate": wins / len(completed) if completed else 0.0,
            "total_profit": round(sum(t.profit for t in completed), 2),
            "placed": self._placed_count,
            "failed": self._failed_count,
            "dropped": self._dropped_count,
        }

    def stop_all_trades(self) -> None:
        """Stop tracking open trades and empty the queue.

        Contracts already placed upstream run to expiry; they are no longer
        polled or recorded.
        """
        logger.warning(
            f"Stopping all trades: {len(self._open_trades)} open, {len(self._queue)} queued"
        )
        self._open_trades.clear()
        self._trade_signals.clear()
        self._upstream_ids.clear()
        self._queue.clear()

    def clear_trade_history(self) -> None:
        self._trade_history = [t for t in self._trade_history if t.contract_id in self._open_trades]
        logger.info("Trade history cleared")
