"""Fixed-interval polling scheduler with explicit cancellation.

Each subscription is keyed by a hashable target (a channel's dialog list,
the open thread) and moves through Idle -> Polling -> (Paused | Idle).
Time comes from an injectable clock so tests can advance it by hand and call
run_due() instead of sleeping.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass

from inbox_sync.logging import get_logger

logger = get_logger("scheduler")

IDLE = "idle"
POLLING = "polling"
PAUSED = "paused"

DEFAULT_INTERVAL_SECONDS = 10.0

# Upper bound on one sleep in run(), so stop requests are noticed promptly
MAX_SLEEP_SECONDS = 1.0

RefreshFn = Callable[[], Awaitable[None]]


@dataclass
class Subscription:
    """Polling state for one target."""

    key: Hashable
    refresh: RefreshFn
    interval: float = DEFAULT_INTERVAL_SECONDS
    state: str = IDLE
    next_due: float | None = None
    in_flight: "asyncio.Task[None] | None" = None
    immediate_pending: bool = False
    refresh_count: int = 0


class PollingScheduler:
    """Runs refreshes for subscribed targets, at most one in flight per target.

    A tick that comes due while the target's previous refresh is still
    running is skipped (the timer is re-armed from now). An immediate request
    made while a refresh is in flight is queued and starts as soon as that
    refresh finishes. Pausing or cancelling disarms the timer; a refresh
    already in flight is left to finish and callers discard its result.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._subscriptions: dict[Hashable, Subscription] = {}

    def subscribe(
        self,
        key: Hashable,
        refresh: RefreshFn,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> Subscription:
        """Start polling a target; the first refresh is due immediately.

        Re-subscribing an existing key replaces its refresh function and
        interval and re-arms it. When a refresh for the key is still in
        flight, the fresh refresh is queued to start as soon as it ends.
        """
        sub = self._subscriptions.get(key)
        if sub is None:
            sub = Subscription(key=key, refresh=refresh, interval=interval)
            self._subscriptions[key] = sub
        else:
            sub.refresh = refresh
            sub.interval = interval

        sub.state = POLLING
        sub.next_due = self._clock()
        sub.immediate_pending = sub.in_flight is not None
        logger.debug("Subscribed: key=%s interval=%.1fs", key, interval)
        return sub

    def pause(self, key: Hashable) -> None:
        """Stop the timer for a target, keeping its registration."""
        sub = self._subscriptions.get(key)
        if sub is None or sub.state != POLLING:
            return
        sub.state = PAUSED
        sub.next_due = None
        sub.immediate_pending = False
        logger.debug("Paused: key=%s", key)

    def resume(self, key: Hashable) -> None:
        """Re-arm a paused target; the next refresh is due immediately.

        As with subscribe(), a refresh still in flight gets a fresh one queued
        behind it.
        """
        sub = self._subscriptions.get(key)
        if sub is None or sub.state != PAUSED:
            return
        sub.state = POLLING
        sub.next_due = self._clock()
        sub.immediate_pending = sub.in_flight is not None
        logger.debug("Resumed: key=%s", key)

    def cancel(self, key: Hashable) -> None:
        """Stop polling a target entirely."""
        sub = self._subscriptions.get(key)
        if sub is None or sub.state == IDLE:
            return
        sub.state = IDLE
        sub.next_due = None
        sub.immediate_pending = False
        logger.debug("Cancelled: key=%s", key)

    def cancel_all(self) -> None:
        """Cancel every subscription."""
        for key in list(self._subscriptions):
            self.cancel(key)

    def state_of(self, key: Hashable) -> str:
        """Current state of a target (Idle when never subscribed)."""
        sub = self._subscriptions.get(key)
        return sub.state if sub is not None else IDLE

    def get(self, key: Hashable) -> Subscription | None:
        return self._subscriptions.get(key)

    def active_keys(self) -> list[Hashable]:
        """Keys currently in the Polling state."""
        return [key for key, sub in self._subscriptions.items() if sub.state == POLLING]

    def request_immediate(self, key: Hashable) -> "asyncio.Task[None] | None":
        """Run one out-of-band refresh for a polling target.

        Does not move the regular timer. When a refresh is already running the
        request is queued behind it and None is returned.
        """
        sub = self._subscriptions.get(key)
        if sub is None or sub.state != POLLING:
            return None
        if sub.in_flight is not None:
            sub.immediate_pending = True
            return None
        logger.debug("Immediate refresh: key=%s", key)
        return self._start(sub)

    def run_due(self) -> "list[asyncio.Task[None]]":
        """Start every refresh whose timer has expired.

        Must be called from a running event loop. Returns the started tasks.
        """
        now = self._clock()
        started = []
        for sub in list(self._subscriptions.values()):
            if sub.state != POLLING or sub.next_due is None or sub.next_due > now:
                continue
            sub.next_due = now + sub.interval
            if sub.in_flight is not None:
                logger.debug("Tick skipped, refresh still in flight: key=%s", sub.key)
                continue
            started.append(self._start(sub))
        return started

    def next_wakeup(self) -> float | None:
        """Clock value of the earliest armed timer, or None."""
        due = [sub.next_due for sub in self._subscriptions.values() if sub.state == POLLING and sub.next_due is not None]
        return min(due) if due else None

    async def drain(self) -> None:
        """Wait for every in-flight refresh, including queued immediate ones."""
        while True:
            pending = [sub.in_flight for sub in self._subscriptions.values() if sub.in_flight is not None]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def run(self, should_stop: Callable[[], bool]) -> None:
        """Poll until `should_stop()` returns True, then wait for in-flight refreshes."""
        while not should_stop():
            self.run_due()

            wakeup = self.next_wakeup()
            delay = MAX_SLEEP_SECONDS if wakeup is None else wakeup - self._clock()
            await self._sleep(min(max(delay, 0.0), MAX_SLEEP_SECONDS))

        self.cancel_all()
        await self.drain()

    def _start(self, sub: Subscription) -> "asyncio.Task[None]":
        task = asyncio.create_task(self._run_refresh(sub))
        sub.in_flight = task
        return task

    async def _run_refresh(self, sub: Subscription) -> None:
        try:
            sub.refresh_count += 1
            await sub.refresh()
        except Exception:
            logger.exception("Refresh failed: key=%s", sub.key)
        finally:
            sub.in_flight = None
            if sub.immediate_pending and sub.state == POLLING:
                sub.immediate_pending = False
                self._start(sub)
