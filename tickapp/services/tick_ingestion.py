"""Tick ingestion service.

Subscribes every analyzer to the pool for its own markets and feeds each
tick's digit into that analyzer's private history. Ticks for a market reach
each analyzer in upstream arrival order.
"""

import logging
from typing import Callable

from tickcore.analyzers import BaseAnalyzer
from tickcore.models import Tick

logger = logging.getLogger(__name__)


class TickIngestionService:
    """Connects analyzers to the connection pool's tick streams.

    Every (analyzer, market) pair holds its own pool subscription, so an
    analyzer can be detached without touching the others; the pool still
    shares one upstream subscription per market.
    """

    def __init__(self, pool, analyzers: list[BaseAnalyzer]):
        self._pool = pool
        self._analyzers = list(analyzers)
        self._unsubscribes: list[Callable[[], None]] = []
        self._tick_count = 0
        self._rejected_count = 0

    @property
    def analyzers(self) -> list[BaseAnalyzer]:
        return list(self._analyzers)

    @property
    def markets(self) -> list[str]:
        """Union of analyzer markets, in first-seen order."""
        seen: dict[str, None] = {}
        for analyzer in self._analyzers:
            for market in analyzer.markets:
                seen.setdefault(market, None)
        return list(seen)

    def start(self) -> None:
        """Subscribe analyzers to their markets and start their timers."""
        if self._unsubscribes:
            return
        for analyzer in self._analyzers:
            for market in analyzer.markets:
                self._unsubscribes.append(
                    self._pool.subscribe_to_ticks(market, self._make_handler(analyzer))
                )
            analyzer.start()
        logger.info(
            f"Tick ingestion started: {len(self._analyzers)} analyzers, "
            f"{len(self.markets)} markets"
        )

    def stop(self) -> None:
        for analyzer in self._analyzers:
            analyzer.stop()
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()
        logger.info("Tick ingestion stopped")

    def _make_handler(self, analyzer: BaseAnalyzer) -> Callable[[Tick], None]:
        def on_tick(tick: Tick) -> None:
            try:
                digit = tick.digit
            except ValueError as e:
                self._rejected_count += 1
                logger.warning(f"Skipping tick for {tick.market}: {e}")
                return
            self._tick_count += 1
            analyzer.process_tick(tick.market, digit)

        return on_tick

    def get_stats(self) -> dict[str, int]:
        return {
            "ticks_processed": self._tick_count,
            "ticks_rejected": self._rejected_count,
            "subscriptions": len(self._unsubscribes),
        }
