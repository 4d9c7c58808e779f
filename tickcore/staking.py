"""Martingale stake manager.

Computes the next stake from the loss streak, tracks session statistics,
evaluates stop-trading conditions and persists its state through a small
key/value store interface.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Protocol, runtime_checkable

import orjson
from pydantic import ValidationError

from tickcore.models.signal import Confidence
from tickcore.models.trade import SessionStats, StakeSettings, TradeRecord, TradeStatus

logger = logging.getLogger(__name__)

# Persistence keys
KEY_SETTINGS = "stake:settings"
KEY_SESSION_STATS = "stake:session_stats"
KEY_TRADE_HISTORY = "stake:trade_history"
KEY_CURRENT_BALANCE = "stake:current_balance"

MIN_STAKE = 0.35
AUTO_ADJUST_MIN_BASIS = 100.0
AUTO_ADJUST_RANGE = (0.1, 2.0)
BALANCE_BUFFER = 2  # Balance must cover this many next stakes
EXTRA_LOSSES_BEFORE_STOP = 2  # Beyond max_martingale_steps

CONFIDENCE_MULTIPLIERS = {
    Confidence.HIGH: 1.5,
    Confidence.MEDIUM: 1.0,
    Confidence.LOW: 0.7,
    Confidence.CONSERVATIVE: 0.5,
    Confidence.AGGRESSIVE: 2.0,
}


def round_cents(value: float) -> float:
    """Round half-up to two decimals."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@runtime_checkable
class KeyValueStore(Protocol):
    """Persistence collaborator: string values under stable keys."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> bool:
        ...

    async def remove(self, key: str) -> bool:
        ...


@dataclass(frozen=True)
class StopDecision:
    should_stop: bool
    reason: str | None = None


class StakeManager:
    """Session-scoped martingale staking.

    Mutating operations are coroutines because they persist state; reads and
    stake calculations are synchronous.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
        history_limit: int = 1000,
        settings: StakeSettings | None = None,
    ):
        self._store = store
        self._clock = clock
        self._history_limit = history_limit
        self._settings = settings or StakeSettings()
        self._stats = SessionStats(session_start_time=clock())
        self._history: list[TradeRecord] = []
        self._martingale_step = 0
        self._current_balance = 0.0

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load_json(self, key: str) -> Any | None:
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(f"Corrupt stake record '{key}', using defaults: {e}")
            return None

    async def load(self) -> None:
        """Restore persisted state. Corrupt records fall back to defaults."""
        if self._store is None:
            return

        data = await self._load_json(KEY_SETTINGS)
        if isinstance(data, dict):
            try:
                self._settings = StakeSettings.model_validate(
                    {**self._settings.model_dump(), **data}
                )
            except ValidationError as e:
                logger.warning(f"Invalid stored stake settings, using defaults: {e}")

        data = await self._load_json(KEY_SESSION_STATS)
        if isinstance(data, dict):
            try:
                self._stats = SessionStats.model_validate({**self._stats.model_dump(), **data})
                self._martingale_step = int(data.get("martingale_step", 0))
            except (ValidationError, TypeError, ValueError) as e:
                logger.warning(f"Invalid stored session stats, using defaults: {e}")

        data = await self._load_json(KEY_TRADE_HISTORY)
        if isinstance(data, list):
            try:
                self._history = [TradeRecord.model_validate(t) for t in data]
            except ValidationError as e:
                logger.warning(f"Invalid stored trade history, starting empty: {e}")
                self._history = []

        data = await self._load_json(KEY_CURRENT_BALANCE)
        if isinstance(data, (int, float)) and math.isfinite(data):
            self._current_balance = float(data)
            if self._stats.session_start_balance == 0:
                self._stats.session_start_balance = self._current_balance

        self._martingale_step = max(0, min(self._martingale_step, self._settings.max_martingale_steps))
        logger.info(
            f"Stake manager loaded: {len(self._history)} trades, "
            f"balance {self._current_balance:.2f}"
        )

    async def save(self) -> None:
        if self._store is None:
            return
        stats = self._stats.model_dump()
        stats["martingale_step"] = self._martingale_step
        await self._store.set(KEY_SETTINGS, orjson.dumps(self._settings.model_dump(mode="json")).decode())
        await self._store.set(KEY_SESSION_STATS, orjson.dumps(stats).decode())
        await self._store.set(
            KEY_TRADE_HISTORY,
            orjson.dumps([t.model_dump(mode="json") for t in self._history]).decode(),
        )
        await self._store.set(KEY_CURRENT_BALANCE, orjson.dumps(self._current_balance).decode())

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    def calculate_next_stake(self) -> float:
        """Next stake from the martingale step, balance scaling and floor.

        base * multiplier^step while on a loss streak within max steps;
        optionally scaled by balance / max(session start, 100) clamped to
        [0.1, 2.0]; never below 0.35; rounded to cents.
        """
        settings = self._settings
        stake = settings.base_stake
        if (
            self._stats.consecutive_losses > 0
            and self._martingale_step < settings.max_martingale_steps
        ):
            stake = settings.base_stake * settings.martingale_multiplier ** self._martingale_step

        if settings.auto_stake_adjustment and self._current_balance > 0:
            ratio = self._current_balance / max(
                self._stats.session_start_balance, AUTO_ADJUST_MIN_BASIS
            )
            low, high = AUTO_ADJUST_RANGE
            stake *= max(low, min(high, ratio))

        return round_cents(max(MIN_STAKE, stake))

    def get_recommended_stake_for_signal(self, confidence: Confidence | str) -> float:
        stake = self.calculate_next_stake()
        try:
            multiplier = CONFIDENCE_MULTIPLIERS[Confidence(confidence)]
        except ValueError:
            return stake
        return round_cents(stake * multiplier)

    async def record_trade(self, trade: TradeRecord) -> None:
        """Fold a settled trade into balance, statistics and martingale step."""
        self._history.append(trade)
        self._current_balance = round_cents(self._current_balance + trade.profit)
        self._update_stats(trade)

        if trade.status == TradeStatus.WON:
            self._martingale_step = 0
        elif trade.status == TradeStatus.LOST:
            self._martingale_step = min(
                self._martingale_step + 1, self._settings.max_martingale_steps
            )

        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit :]

        await self.save()

    def _update_stats(self, trade: TradeRecord) -> None:
        stats = self._stats
        stats.total_trades += 1
        stats.total_profit = round_cents(stats.total_profit + trade.profit)

        if trade.status == TradeStatus.WON:
            stats.consecutive_wins += 1
            stats.consecutive_losses = 0
            stats.best_win_streak = max(stats.best_win_streak, stats.consecutive_wins)
        elif trade.status == TradeStatus.LOST:
            stats.consecutive_losses += 1
            stats.consecutive_wins = 0
            stats.worst_loss_streak = max(stats.worst_loss_streak, stats.consecutive_losses)

        wins = sum(1 for t in self._history if t.status == TradeStatus.WON)
        stats.win_rate = round_cents(wins / stats.total_trades * 100) if stats.total_trades else 0.0

        peak = running = stats.session_start_balance
        max_drawdown = 0.0
        for t in self._history:
            running += t.profit
            peak = max(peak, running)
            max_drawdown = max(max_drawdown, peak - running)
        stats.max_drawdown = round_cents(max_drawdown)

    def should_stop_trading(self) -> StopDecision:
        """First applicable stop reason: stop loss, take profit, loss streak, balance."""
        settings = self._settings
        stats = self._stats

        if stats.total_profit <= settings.stop_loss_limit:
            return StopDecision(True, f"Stop loss limit reached: ${settings.stop_loss_limit}")
        if stats.total_profit >= settings.take_profit_limit:
            return StopDecision(True, f"Take profit limit reached: ${settings.take_profit_limit}")
        if stats.consecutive_losses >= settings.max_martingale_steps + EXTRA_LOSSES_BEFORE_STOP:
            return StopDecision(True, f"Too many consecutive losses: {stats.consecutive_losses}")

        next_stake = self.calculate_next_stake()
        if self._current_balance < next_stake * BALANCE_BUFFER:
            return StopDecision(
                True, f"Insufficient balance for next trade: ${self._current_balance:.2f}"
            )
        return StopDecision(False)

    # ------------------------------------------------------------------
    # Session and settings
    # ------------------------------------------------------------------

    async def reset_session(self) -> None:
        self._stats = SessionStats(
            session_start_balance=self._current_balance,
            session_start_time=self._clock(),
        )
        self._martingale_step = 0
        self._history = []
        await self.save()
        logger.info(f"Session reset at balance {self._current_balance:.2f}")

    async def clear_trade_history(self) -> None:
        """Drop stored trades; session statistics and balance are kept."""
        self._history = []
        await self.save()
        logger.info("Stake manager trade history cleared")

    async def update_stake_settings(self, **changes: Any) -> StakeSettings:
        """Merge partial settings. Raises pydantic ValidationError when invalid."""
        self._settings = StakeSettings.model_validate({**self._settings.model_dump(), **changes})
        self._martingale_step = min(self._martingale_step, self._settings.max_martingale_steps)
        await self.save()
        return self._settings.model_copy()

    async def set_current_balance(self, balance: float) -> None:
        if self._stats.session_start_balance == 0:
            self._stats.session_start_balance = balance
        self._current_balance = balance
        await self.save()

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_trade_history(self) -> str:
        data = {
            "settings": self._settings.model_dump(mode="json"),
            "stats": {**self._stats.model_dump(), "martingale_step": self._martingale_step},
            "history": [t.model_dump(mode="json") for t in self._history],
            "export_date": datetime.now(timezone.utc).isoformat(),
            "current_balance": self._current_balance,
        }
        return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()

    async def import_trade_history(self, data: str) -> bool:
        """Replace state from an export. Nothing changes unless all parts parse."""
        try:
            payload = orjson.loads(data)
            if not isinstance(payload, dict):
                raise ValueError("export must be a JSON object")

            settings = self._settings
            if payload.get("settings"):
                settings = StakeSettings.model_validate(
                    {**self._settings.model_dump(), **payload["settings"]}
                )
            stats = self._stats
            step = self._martingale_step
            if payload.get("stats"):
                stats = SessionStats.model_validate({**self._stats.model_dump(), **payload["stats"]})
                step = int(payload["stats"].get("martingale_step", 0))
            history = self._history
            if isinstance(payload.get("history"), list):
                history = [TradeRecord.model_validate(t) for t in payload["history"]]
            balance = self._current_balance
            if payload.get("current_balance") is not None:
                balance = float(payload["current_balance"])
        except (orjson.JSONDecodeError, ValidationError, ValueError, TypeError) as e:
            logger.error(f"Error importing trade history: {e}")
            return False

        self._settings = settings
        self._stats = stats
        self._martingale_step = max(0, min(step, settings.max_martingale_steps))
        self._history = history[-self._history_limit :]
        self._current_balance = balance
        await self.save()
        return True

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    def get_stake_settings(self) -> StakeSettings:
        return self._settings.model_copy()

    def get_session_stats(self) -> SessionStats:
        return self._stats.model_copy()

    def get_trade_history(self) -> list[TradeRecord]:
        return list(self._history)

    def get_current_balance(self) -> float:
        return self._current_balance

    def get_current_martingale_step(self) -> int:
        return self._martingale_step

    def get_performance_metrics(self) -> dict[str, float]:
        wins = [t.profit for t in self._history if t.status == TradeStatus.WON]
        losses = [t.profit for t in self._history if t.status == TradeStatus.LOST]
        total_win = sum(wins)
        total_loss = abs(sum(losses))
        average_win = total_win / len(wins) if wins else 0.0
        average_loss = total_loss / len(losses) if losses else 0.0

        returns = [t.profit for t in self._history]
        sharpe = 0.0
        if returns:
            mean = sum(returns) / len(returns)
            std = math.sqrt(sum((r - mean) ** 2 for r in returns) / len(returns))
            sharpe = mean / std if std > 0 else 0.0

        return {
            "profit_factor": round_cents(total_win / total_loss if total_loss > 0 else 0.0),
            "sharpe_ratio": round_cents(sharpe),
            "max_consecutive_losses": self._stats.worst_loss_streak,
            "average_win": round_cents(average_win),
            "average_loss": round_cents(average_loss),
            "win_loss_ratio": round_cents(average_win / average_loss if average_loss > 0 else 0.0),
        }
