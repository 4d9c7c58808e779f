"""Analyzer protocol shared by all signal generators.

Every analyzer owns bounded per-market digit histories, is fed digits by
the ingestion layer, and on its emission timer produces zero or more
Signals which it publishes to its subscribers.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, runtime_checkable

from tickcore.models.signal import Signal

# Subscribers receive each emitted batch; sync or async callables are fine
SignalCallback = Callable[[list[Signal]], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class Analyzer(Protocol):
    """Protocol that all digit analyzers implement."""

    @property
    def markets(self) -> list[str]:
        """Markets whose ticks this analyzer consumes."""
        ...

    def process_tick(self, market: str, digit: int) -> None:
        """Append one digit to the market's history."""
        ...

    def refresh(self) -> None:
        """Recompute derived tables (zones, pattern database, ...)."""
        ...

    def analyze(self) -> list[Signal]:
        """Evaluate every market now and return candidate signals."""
        ...

    async def run_cycle(self) -> list[Signal]:
        """Analyze and publish a non-empty batch."""
        ...

    def subscribe_to_signals(self, callback: SignalCallback) -> Unsubscribe:
        ...

    def start(self) -> None:
        """Arm the emission (and refresh) timers."""
        ...

    def stop(self) -> None:
        ...
