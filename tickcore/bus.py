"""Publish/subscribe primitives and the signal bus."""

from __future__ import annotations

import inspect
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Generic, TypeVar

from tickcore.models.signal import Signal, SignalStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


class Publisher(Generic[T]):
    """Ordered fan-out to subscribers with idempotent unsubscribe.

    A failing subscriber is logged and never prevents delivery to the
    others.
    """

    def __init__(self, name: str = "publisher"):
        self._name = name
        # dict as an insertion-ordered set; keys are unique tokens
        self._subscribers: dict[int, Subscriber] = {}
        self._next_token = 0

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, item: T) -> None:
        for callback in list(self._subscribers.values()):
            await self._safe_callback(callback, item)

    async def _safe_callback(self, callback: Subscriber, item: T) -> None:
        try:
            result = callback(item)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"{self._name} subscriber error: {e}", exc_info=True)

    def clear(self) -> None:
        self._subscribers.clear()


class SignalBus:
    """Aggregates analyzer output and fans it out to consumers.

    Keeps the most recent signals by id so a control surface can look one up
    and execute it manually.
    """

    def __init__(self, max_recent: int = 500):
        self._publisher: Publisher[list[Signal]] = Publisher("signal bus")
        self._recent: OrderedDict[str, Signal] = OrderedDict()
        self._max_recent = max_recent
        self._sources: list[Unsubscribe] = []

    def subscribe_to_signals(self, callback: Subscriber) -> Unsubscribe:
        """Register a consumer for batches of new signals."""
        return self._publisher.subscribe(callback)

    def attach(self, analyzer) -> None:
        """Relay everything an analyzer emits through this bus."""
        self._sources.append(analyzer.subscribe_to_signals(self.publish))

    def detach_all(self) -> None:
        for unsubscribe in self._sources:
            unsubscribe()
        self._sources.clear()

    async def publish(self, signals: list[Signal]) -> None:
        if not signals:
            return
        for signal in signals:
            self._recent[signal.id] = signal
            self._recent.move_to_end(signal.id)
        while len(self._recent) > self._max_recent:
            self._recent.popitem(last=False)
        await self._publisher.publish(signals)

    def get_signal(self, signal_id: str) -> Signal | None:
        return self._recent.get(signal_id)

    def get_recent_signals(self, now: float | None = None, active_only: bool = False) -> list[Signal]:
        """Return remembered signals, newest first.

        With ``active_only`` set, signals past expiry are marked EXPIRED and
        excluded.
        """
        signals = list(reversed(self._recent.values()))
        if not active_only:
            return signals
        active = []
        for signal in signals:
            if now is not None and signal.status == SignalStatus.ACTIVE and signal.is_expired(now):
                signal.status = SignalStatus.EXPIRED
            if signal.status == SignalStatus.ACTIVE:
                active.append(signal)
        return active

    def update_status(self, signal_id: str, status: SignalStatus) -> bool:
        """Record a terminal status for a remembered signal."""
        signal = self._recent.get(signal_id)
        if signal is None or signal.status != SignalStatus.ACTIVE:
            return False
        signal.status = status
        return True
