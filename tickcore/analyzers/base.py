"""Common machinery for digit analyzers."""

from __future__ import annotations

import logging
from typing import Any

from tickcore.analyzers.protocol import SignalCallback, Unsubscribe
from tickcore.bus import Publisher
from tickcore.models.signal import Confidence, Signal, SignalType, confidence_band
from tickcore.models.tick import DigitHistory
from tickcore.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

VOLATILITY_MARKETS = ["R_10", "R_25", "R_50", "R_75", "R_100"]

MARKET_DISPLAY_NAMES = {
    "R_10": "Volatility 10 Index",
    "R_25": "Volatility 25 Index",
    "R_50": "Volatility 50 Index",
    "R_75": "Volatility 75 Index",
    "R_100": "Volatility 100 Index",
    "R_150": "Volatility 150 Index",
    "R_250": "Volatility 250 Index",
    "1HZ10V": "Volatility 10 (1s) Index",
    "1HZ25V": "Volatility 25 (1s) Index",
    "1HZ50V": "Volatility 50 (1s) Index",
    "1HZ75V": "Volatility 75 (1s) Index",
    "1HZ100V": "Volatility 100 (1s) Index",
    "JD10": "Jump 10 Index",
    "JD25": "Jump 25 Index",
    "JD50": "Jump 50 Index",
    "JD75": "Jump 75 Index",
    "JD100": "Jump 100 Index",
    "CRASH300N": "Crash 300 Index",
    "CRASH500N": "Crash 500 Index",
    "CRASH1000N": "Crash 1000 Index",
    "BOOM300N": "Boom 300 Index",
    "BOOM500N": "Boom 500 Index",
    "BOOM1000N": "Boom 1000 Index",
}


def market_display_name(market: str) -> str:
    return MARKET_DISPLAY_NAMES.get(market, market)


class BaseAnalyzer:
    """Per-market digit histories, timers and signal publication.

    Subclasses set the class-level defaults and implement
    ``analyze_market``. Constructor keyword arguments override the defaults,
    which is how trading.yaml tunes individual analyzers.
    """

    name: str = ""  # Set by @register_analyzer
    source: str = ""  # Human-readable strategy source on emitted signals

    DEFAULT_MARKETS: list[str] = VOLATILITY_MARKETS
    HISTORY_SIZE = 1000
    EMIT_INTERVAL = 5.0
    REFRESH_INTERVAL: float | None = None
    VALIDITY = 35.0
    CONFIDENCE_FLOOR = 0.6
    MIN_TICKS = 50

    def __init__(
        self,
        scheduler: Scheduler,
        markets: list[str] | None = None,
        history_size: int | None = None,
        emit_interval: float | None = None,
        refresh_interval: float | None = None,
        validity: float | None = None,
        confidence_floor: float | None = None,
        min_ticks: int | None = None,
        seed: int = 0,
        jitter: bool = False,
    ):
        self._scheduler = scheduler
        self._markets = list(markets if markets is not None else self.DEFAULT_MARKETS)
        self.history_size = history_size or self.HISTORY_SIZE
        self.emit_interval = emit_interval or self.EMIT_INTERVAL
        self.refresh_interval = refresh_interval or self.REFRESH_INTERVAL
        self.validity = validity or self.VALIDITY
        self.confidence_floor = (
            confidence_floor if confidence_floor is not None else self.CONFIDENCE_FLOOR
        )
        self.min_ticks = min_ticks if min_ticks is not None else self.MIN_TICKS
        self.seed = seed
        self.jitter = jitter

        self._histories: dict[str, DigitHistory] = {
            market: DigitHistory(market=market, max_size=self.history_size)
            for market in self._markets
        }
        self._publisher: Publisher[list[Signal]] = Publisher(f"{self.name or 'analyzer'} signals")
        self._timers: list[TimerHandle] = []

    # ------------------------------------------------------------------
    # Tick intake
    # ------------------------------------------------------------------

    @property
    def markets(self) -> list[str]:
        return list(self._markets)

    def process_tick(self, market: str, digit: int) -> None:
        history = self._histories.get(market)
        if history is None:
            return
        history.add(digit)

    def feed(self, market: str, digits: list[int]) -> None:
        """Append several digits in order."""
        for digit in digits:
            self.process_tick(market, digit)

    def get_digit_history(self, market: str) -> list[int]:
        history = self._histories.get(market)
        return list(history.digits) if history else []

    def clear_history(self, market: str | None = None) -> None:
        targets = [market] if market else self._markets
        for m in targets:
            if m in self._histories:
                self._histories[m].clear()

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Recompute derived tables. No-op unless a subclass needs one."""

    def analyze_market(self, market: str, digits: list[int], now: float) -> list[Signal]:
        raise NotImplementedError

    def analyze(self) -> list[Signal]:
        now = self._scheduler.now()
        signals: list[Signal] = []
        for market in self._markets:
            digits = self._histories[market].digits
            if len(digits) < self.min_ticks:
                continue
            signals.extend(self.analyze_market(market, digits, now))
        return signals

    async def run_cycle(self) -> list[Signal]:
        signals = self.analyze()
        if signals:
            logger.info(f"{self.name}: emitting {len(signals)} signal(s)")
            await self._publisher.publish(signals)
        return signals

    def subscribe_to_signals(self, callback: SignalCallback) -> Unsubscribe:
        return self._publisher.subscribe(callback)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._timers:
            return
        self._timers.append(self._scheduler.every(self.emit_interval, self.run_cycle))
        if self.refresh_interval:
            self._timers.append(self._scheduler.every(self.refresh_interval, self.refresh))
        logger.info(
            f"{self.name} started: {len(self._markets)} markets, "
            f"emit every {self.emit_interval}s"
        )

    def stop(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _make_signal(
        self,
        market: str,
        signal_type: SignalType,
        score: float,
        now: float,
        strategy: str,
        entry_value: int | None = None,
        confidence: Confidence | None = None,
        validity: float | None = None,
        reasoning: str = "",
        supporting: dict[str, Any] | None = None,
    ) -> Signal:
        analysis = {"market_display": market_display_name(market)}
        if supporting:
            analysis.update(supporting)
        return Signal(
            created_at=now,
            market=market,
            type=signal_type,
            entry_value=entry_value,
            confidence=confidence or confidence_band(score),
            score=round(score, 6),
            strategy_source=self.source,
            strategy=strategy,
            expires_at=now + (validity or self.validity),
            reasoning=reasoning,
            supporting_analysis=analysis,
        )
