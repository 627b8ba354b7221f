"""Tests for the polling scheduler."""

import asyncio

import pytest

from inbox_sync.sync.scheduler import IDLE, PAUSED, POLLING, PollingScheduler


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Target:
    """Refresh function counting calls, optionally blocking on a gate."""

    def __init__(self) -> None:
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def __call__(self) -> None:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock."""
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> PollingScheduler:
    """Provide a scheduler on the fake clock."""
    return PollingScheduler(clock=clock)


async def settle(tasks: list) -> None:
    await asyncio.gather(*tasks)


class TestTicking:
    """Tests for interval ticks."""

    async def test_first_refresh_is_immediate(self, scheduler: PollingScheduler, clock: FakeClock) -> None:
        """Subscribing makes the first refresh due right away, then every interval."""
        target = Target()
        scheduler.subscribe("dialogs", target, interval=10)

        await settle(scheduler.run_due())
        assert target.calls == 1

        assert scheduler.run_due() == []
        clock.advance(9.9)
        assert scheduler.run_due() == []
        clock.advance(0.1)
        await settle(scheduler.run_due())
        assert target.calls == 2

    async def test_tick_skipped_while_in_flight(self, scheduler: PollingScheduler, clock: FakeClock) -> None:
        """At most one refresh per target is in flight."""
        target = Target()
        target.gate = asyncio.Event()
        scheduler.subscribe("dialogs", target, interval=10)

        started = scheduler.run_due()
        await asyncio.sleep(0)
        clock.advance(10)
        assert scheduler.run_due() == []

        target.gate.set()
        await settle(started)
        assert target.calls == 1

    async def test_failing_refresh_keeps_polling(self, scheduler: PollingScheduler, clock: FakeClock) -> None:
        """A refresh that raises is logged and the target keeps polling."""

        async def broken() -> None:
            raise RuntimeError("boom")

        scheduler.subscribe("dialogs", broken, interval=10)
        await settle(scheduler.run_due())

        assert scheduler.state_of("dialogs") == POLLING
        assert scheduler.get("dialogs").in_flight is None


class TestStates:
    """Tests for Idle/Polling/Paused transitions."""

    async def test_pause_and_resume(self, scheduler: PollingScheduler, clock: FakeClock) -> None:
        """Paused targets do not tick; resuming makes a refresh due immediately."""
        target = Target()
        scheduler.subscribe("dialogs", target, interval=10)
        scheduler.pause("dialogs")

        clock.advance(60)
        assert scheduler.run_due() == []
        assert scheduler.state_of("dialogs") == PAUSED
        assert scheduler.request_immediate("dialogs") is None

        scheduler.resume("dialogs")
        await settle(scheduler.run_due())
        assert target.calls == 1

    async def test_cancel(self, scheduler: PollingScheduler, clock: FakeClock) -> None:
        """Cancelled targets are idle and leave no armed timer."""
        scheduler.subscribe("a", Target(), interval=10)
        scheduler.subscribe("b", Target(), interval=5)

        scheduler.cancel("a")
        assert scheduler.state_of("a") == IDLE
        assert scheduler.active_keys() == ["b"]

        scheduler.cancel_all()
        assert scheduler.active_keys() == []
        assert scheduler.next_wakeup() is None

    def test_unknown_key_is_idle(self, scheduler: PollingScheduler) -> None:
        """Never-subscribed keys report Idle."""
        assert scheduler.state_of("nothing") == IDLE


class TestImmediateRefresh:
    """Tests for out-of-band refreshes."""

    async def test_immediate_does_not_move_timer(self, scheduler: PollingScheduler, clock: FakeClock) -> None:
        """An immediate refresh leaves the regular tick schedule alone."""
        target = Target()
        scheduler.subscribe("dialogs", target, interval=10)
        await settle(scheduler.run_due())
        due = scheduler.get("dialogs").next_due

        clock.advance(3)
        task = scheduler.request_immediate("dialogs")
        await task

        assert target.calls == 2
        assert scheduler.get("dialogs").next_due == due

    async def test_immediate_queued_behind_in_flight(self, scheduler: PollingScheduler) -> None:
        """A request made while refreshing runs once the current refresh ends."""
        target = Target()
        target.gate = asyncio.Event()
        scheduler.subscribe("dialogs", target, interval=10)
        scheduler.run_due()
        await asyncio.sleep(0)

        assert scheduler.request_immediate("dialogs") is None
        assert scheduler.request_immediate("dialogs") is None

        target.gate.set()
        await scheduler.drain()

        assert target.calls == 2

    async def test_queued_immediate_dropped_on_cancel(self, scheduler: PollingScheduler) -> None:
        """Cancelling drops a queued immediate refresh."""
        target = Target()
        target.gate = asyncio.Event()
        scheduler.subscribe("dialogs", target, interval=10)
        scheduler.run_due()
        await asyncio.sleep(0)
        scheduler.request_immediate("dialogs")

        scheduler.cancel("dialogs")
        target.gate.set()
        await scheduler.drain()

        assert target.calls == 1

    async def test_resubscribe_during_refresh_queues_fresh_one(self, scheduler: PollingScheduler) -> None:
        """Re-subscribing while a refresh runs starts the new refresh right after it."""
        old = Target()
        old.gate = asyncio.Event()
        new = Target()
        scheduler.subscribe("thread", old, interval=10)
        scheduler.run_due()
        await asyncio.sleep(0)

        scheduler.subscribe("thread", new, interval=10)
        assert scheduler.run_due() == []
        old.gate.set()
        await scheduler.drain()

        assert old.calls == 1
        assert new.calls == 1


class TestRun:
    """Tests for the run loop."""

    async def test_run_until_stopped(self, scheduler: PollingScheduler, clock: FakeClock) -> None:
        """run() ticks until asked to stop, then cancels everything."""
        target = Target()
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            clock.advance(1.0)
            await asyncio.sleep(0)

        scheduler = PollingScheduler(clock=clock, sleep=fake_sleep)
        scheduler.subscribe("dialogs", target, interval=2)

        await scheduler.run(lambda: len(sleeps) >= 5)

        assert target.calls == 3
        assert all(0.0 <= s <= 1.0 for s in sleeps)
        assert scheduler.state_of("dialogs") == IDLE
