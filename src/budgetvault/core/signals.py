"""Observable values: current value plus change notification.

Subscribers receive the current value immediately and then every change.
Values may be published from any thread (APScheduler runs jobs in worker
threads); ``stream()`` hands them to the consuming event loop safely.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from typing import Generic, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by ``ObservableValue.subscribe``."""

    def __init__(self, owner: ObservableValue, callback: Callable) -> None:
        self._owner = owner
        self._callback = callback
        self.active = True

    def cancel(self) -> None:
        """Stop receiving updates. Safe to call more than once."""
        if self.active:
            self.active = False
            self._owner._remove(self)


class ObservableValue(Generic[T]):
    """A value holder that notifies subscribers when the value changes."""

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscriptions: list[Subscription] = []
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        """Publish a new value. Subscribers are only notified on change."""
        with self._lock:
            if value == self._value:
                return
            self._value = value
            subscribers = list(self._subscriptions)

        for sub in subscribers:
            if sub.active:
                self._notify(sub, value)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        """Register callback; it is called with the current value right away."""
        sub = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(sub)
            current = self._value
        self._notify(sub, current)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def _notify(self, sub: Subscription, value: T) -> None:
        try:
            sub._callback(value)
        except Exception:
            log.warning("Subscriber raised while handling update", exc_info=True)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    async def stream(self) -> AsyncIterator[T]:
        """Yield the current value, then every change. Never ends on its own.

        Closing the iterator (break, cancellation, aclose) cancels the
        underlying subscription.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_value(value: T) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, value)

        sub = self.subscribe(on_value)
        try:
            while True:
                yield await queue.get()
        finally:
            sub.cancel()
