"""Tests for the periodic task runner."""

import asyncio

from mediawatch.scraper.core.exceptions import QueueUnavailableError
from mediawatch.scraper.worker.ticker import PeriodicTask


class Counter:
    def __init__(self, fail_on=()):
        self.calls = 0
        self.fail_on = set(fail_on)

    async def __call__(self):
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError(f"tick {self.calls} broke")
        return self.calls


async def wait_for_calls(counter, calls, timeout=2.0):
    async def poll():
        while counter.calls < calls:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


async def test_tick_runs_once_and_records_stats():
    counter = Counter()
    task = PeriodicTask("sweep", 60, counter)

    assert await task.tick() == 1

    stats = task.get_stats()
    assert stats["runs"] == 1
    assert stats["last_run_at"] is not None
    assert stats["alive"] is False


async def test_runs_repeatedly_until_stopped():
    counter = Counter()
    task = PeriodicTask("sweep", 0.01, counter)

    task.start()
    await wait_for_calls(counter, 3)
    assert task.is_alive

    await task.stop()

    calls = counter.calls
    await asyncio.sleep(0.05)
    assert counter.calls == calls
    assert not task.is_alive


async def test_errors_are_logged_and_loop_continues():
    counter = Counter(fail_on={1})
    task = PeriodicTask("sweep", 0.01, counter)

    task.start()
    await wait_for_calls(counter, 3)
    await task.stop()

    assert task.stats["errors"] == 1
    assert task.stats["last_error"] == "tick 1 broke"
    assert task.fatal_error is None


async def test_fatal_exception_ends_loop():
    error = QueueUnavailableError("enqueue", 3, ConnectionError("refused"))

    async def broken():
        raise error

    task = PeriodicTask("scheduler", 0.01, broken, fatal_exceptions=(QueueUnavailableError,))
    task.start()
    await asyncio.sleep(0.05)

    assert not task.is_alive
    assert task.fatal_error is error
    await task.stop()


async def test_delayed_first_run():
    counter = Counter()
    task = PeriodicTask("sweep", 10, counter, run_immediately=False)

    task.start()
    await asyncio.sleep(0.05)
    await task.stop()

    assert counter.calls == 0
