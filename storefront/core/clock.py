# storefront/core/clock.py
"""
Time capabilities injected into the OTP countdown.

Deadlines are absolute wall-clock timestamps taken from a Clock; the
Scheduler only delivers periodic ticks so expiry can be noticed without a
user action. ManualClock implements both and is advanced explicitly.
"""
import asyncio
import time
import logging
from typing import Callable, List, Optional, Protocol

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]


class Clock(Protocol):
    def now(self) -> float: ...


class Subscription(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def every(self, interval: float, callback: TickCallback) -> Subscription: ...


class SystemClock:
    def now(self) -> float:
        return time.time()


class _LoopSubscription:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, callback: TickCallback):
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._timer: Optional[asyncio.TimerHandle] = None
        self.cancelled = False

    def start(self) -> None:
        self._timer = self._loop.call_later(self._interval, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        try:
            self._callback()
        except Exception as e:
            logger.error(f"Tick callback failed: {e}")
        if not self.cancelled:
            self._timer = self._loop.call_later(self._interval, self._fire)

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class AsyncioTickScheduler:
    """Repeats a callback on the running event loop until the subscription is cancelled."""

    def every(self, interval: float, callback: TickCallback) -> _LoopSubscription:
        subscription = _LoopSubscription(asyncio.get_running_loop(), interval, callback)
        subscription.start()
        return subscription


class _ManualSubscription:
    def __init__(self, owner: "ManualClock", interval: float, callback: TickCallback, next_due: float):
        self._owner = owner
        self.interval = interval
        self.callback = callback
        self.next_due = next_due
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._owner._forget(self)


class ManualClock:
    """Virtual time source and scheduler; nothing happens until advance() is called."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._subscriptions: List[_ManualSubscription] = []

    def now(self) -> float:
        return self._now

    def every(self, interval: float, callback: TickCallback) -> _ManualSubscription:
        subscription = _ManualSubscription(self, interval, callback, self._now + interval)
        self._subscriptions.append(subscription)
        return subscription

    def _forget(self, subscription: _ManualSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [s for s in self._subscriptions if s.next_due <= target]
            if not due:
                break
            subscription = min(due, key=lambda s: s.next_due)
            self._now = subscription.next_due
            subscription.next_due += subscription.interval
            subscription.callback()
        self._now = target
