"""Shared fixtures for the scraper tests."""

import pytest

from mediawatch.scraper.config.settings import ScraperSettings, reset_settings_cache
from mediawatch.scraper.queue.job_queue import JobQueue
from mediawatch.scraper.queue.local_broker import LocalQueueBroker
from mediawatch.scraper.sources.registry import SourceRegistry

from .fakes import FAST_RETRY, FakeBrowser, FakeClock, FakeProbe


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    for name in ("MEDIAWATCH_ENVIRONMENT", "MEDIAWATCH_QUEUE_BACKEND", "MEDIAWATCH_REDIS_URL"):
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def registry(probe, clock):
    return SourceRegistry(probe, clock=clock)


@pytest.fixture
def broker():
    return LocalQueueBroker()


@pytest.fixture
def queue(broker, clock):
    return JobQueue(broker, clock=clock, retry_config=FAST_RETRY)


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def settings():
    return ScraperSettings(
        environment="test",
        request_delay_ms=0,
        poll_interval_seconds=0.01,
        scheduling_interval_seconds=0.05,
        validation_sweep_interval_seconds=0.05,
        max_concurrent_scrapes=2,
        health_check_enabled=False,
        json_logs=False,
    )
