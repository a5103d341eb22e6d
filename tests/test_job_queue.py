"""Tests for the retryable job queue state machine."""

from datetime import timedelta

import pytest

from mediawatch.schema import ContentType, CrawlRequest, ExtractedContent, ImageDescriptor, JobOptions, JobState, Lane
from mediawatch.scraper.core.exceptions import NavigationError, QueueError, QueueUnavailableError
from mediawatch.scraper.queue.job_queue import JobQueue, compute_backoff_ms
from mediawatch.scraper.queue.local_broker import LocalQueueBroker

from .fakes import FAST_RETRY

REQUEST = CrawlRequest(source_id="S1", content_type=ContentType.TEXT, url="https://example.com/s1")


class FlakyBroker(LocalQueueBroker):
    """Local broker whose put/claim fail a configurable number of times."""

    def __init__(self, put_failures=0, claim_failures=0):
        super().__init__()
        self.put_failures = put_failures
        self.claim_failures = claim_failures

    async def put(self, job):
        if self.put_failures > 0:
            self.put_failures -= 1
            raise QueueError("Redis put failed: connection reset")
        await super().put(job)

    async def claim(self, lane, now):
        if self.claim_failures > 0:
            self.claim_failures -= 1
            raise QueueError("Redis claim failed: connection reset")
        return await super().claim(lane, now)


def navigation_error():
    return NavigationError(REQUEST.url, "net::ERR_CONNECTION_REFUSED")


async def test_enqueue_creates_waiting_job(queue, clock):
    job = await queue.enqueue(Lane.CRAWL, REQUEST)

    assert job.state == JobState.WAITING
    assert job.attempt == 1
    assert job.max_attempts == 3
    assert job.initial_backoff_ms == 5000
    assert job.available_at == clock()
    assert job.crawl_request() == REQUEST
    assert await queue.counts(Lane.CRAWL) == {"waiting": 1, "active": 0, "failed": 0}


async def test_enqueue_honours_options(queue):
    job = await queue.enqueue(Lane.CRAWL, REQUEST, JobOptions(max_attempts=5, initial_backoff_ms=100))

    assert job.max_attempts == 5
    assert job.initial_backoff_ms == 100


async def test_dequeue_claims_and_activates(queue):
    job = await queue.enqueue(Lane.CRAWL, REQUEST)

    claimed = await queue.dequeue(Lane.CRAWL)

    assert claimed.id == job.id
    assert claimed.state == JobState.ACTIVE
    assert await queue.dequeue(Lane.CRAWL) is None
    assert await queue.counts(Lane.CRAWL) == {"waiting": 0, "active": 1, "failed": 0}


async def test_lanes_are_independent(queue):
    content = ExtractedContent(
        source_id="S1",
        content_type=ContentType.IMAGE,
        url=REQUEST.url,
        payload=[ImageDescriptor(src="https://example.com/a.png")],
    )
    await queue.enqueue(Lane.PROCESSING, content)

    assert await queue.dequeue(Lane.CRAWL) is None

    claimed = await queue.dequeue(Lane.PROCESSING)
    assert claimed.lane == Lane.PROCESSING
    assert claimed.extracted_content().payload[0].src == "https://example.com/a.png"


async def test_dequeue_prefers_earliest_available(queue, clock):
    first = await queue.enqueue(Lane.CRAWL, REQUEST)
    clock.advance(seconds=1)
    second = await queue.enqueue(Lane.CRAWL, REQUEST.model_copy(update={"source_id": "S2"}))

    assert (await queue.dequeue(Lane.CRAWL)).id == first.id
    assert (await queue.dequeue(Lane.CRAWL)).id == second.id


async def test_complete_is_idempotent(queue):
    await queue.enqueue(Lane.CRAWL, REQUEST)
    claimed = await queue.dequeue(Lane.CRAWL)

    assert await queue.complete(claimed) is True
    assert claimed.state == JobState.COMPLETED
    assert await queue.complete(claimed) is False
    assert await queue.fail(claimed, "late failure") is None
    assert await queue.counts(Lane.CRAWL) == {"waiting": 0, "active": 0, "failed": 0}


async def test_complete_waiting_job_is_noop(queue):
    job = await queue.enqueue(Lane.CRAWL, REQUEST)

    assert await queue.complete(job) is False
    assert (await queue.dequeue(Lane.CRAWL)).id == job.id


async def test_fail_schedules_retry_with_backoff(queue, clock):
    await queue.enqueue(Lane.CRAWL, REQUEST)
    claimed = await queue.dequeue(Lane.CRAWL)

    outcome = await queue.fail(claimed, navigation_error())

    assert outcome.retried is True
    assert outcome.exhausted is False
    assert outcome.delay_ms == 20000
    assert outcome.job.attempt == 2
    assert outcome.job.state == JobState.WAITING
    assert outcome.job.available_at == clock() + timedelta(seconds=20)
    assert "ERR_CONNECTION_REFUSED" in outcome.job.last_error


async def test_job_never_dequeued_before_backoff_elapses(queue, clock):
    await queue.enqueue(Lane.CRAWL, REQUEST)
    await queue.fail(await queue.dequeue(Lane.CRAWL), navigation_error())

    assert await queue.dequeue(Lane.CRAWL) is None
    clock.advance(milliseconds=19999)
    assert await queue.dequeue(Lane.CRAWL) is None
    clock.advance(milliseconds=1)

    retried = await queue.dequeue(Lane.CRAWL)
    assert retried is not None
    assert retried.attempt == 2


async def test_backoff_strictly_increases(queue, clock):
    await queue.enqueue(Lane.CRAWL, REQUEST, JobOptions(max_attempts=5, initial_backoff_ms=5000))

    delays = []
    while True:
        clock.advance(days=1)
        claimed = await queue.dequeue(Lane.CRAWL)
        if claimed is None:
            break
        outcome = await queue.fail(claimed, navigation_error())
        if outcome.retried:
            delays.append(outcome.delay_ms)

    assert delays == [20000, 40000, 80000, 160000]
    assert all(later > earlier for earlier, later in zip(delays, delays[1:]))


async def test_job_fails_after_max_attempts_and_is_never_dequeued_again(queue, clock):
    """A crawl job whose navigation always errors is dequeued exactly three times, then failed."""
    job = await queue.enqueue(Lane.CRAWL, REQUEST)

    dequeues = 0
    outcome = None
    for _ in range(5):
        claimed = await queue.dequeue(Lane.CRAWL)
        if claimed is None:
            break
        dequeues += 1
        assert claimed.attempt <= claimed.max_attempts
        outcome = await queue.fail(claimed, navigation_error())
        clock.advance(hours=1)

    assert dequeues == 3
    assert outcome.exhausted is True
    assert outcome.job.state == JobState.FAILED
    assert outcome.job.attempt == 3

    clock.advance(days=30)
    assert await queue.dequeue(Lane.CRAWL) is None

    dead = await queue.dead_letters(Lane.CRAWL)
    assert [j.id for j in dead] == [job.id]
    assert await queue.counts(Lane.CRAWL) == {"waiting": 0, "active": 0, "failed": 1}


async def test_single_attempt_job_fails_immediately(queue):
    await queue.enqueue(Lane.CRAWL, REQUEST, JobOptions(max_attempts=1))

    outcome = await queue.fail(await queue.dequeue(Lane.CRAWL), "boom")

    assert outcome.exhausted
    assert outcome.job.last_error == "boom"


async def test_recover_stale_returns_active_jobs_to_waiting(broker, clock):
    first_run = JobQueue(broker, clock=clock, retry_config=FAST_RETRY)
    job = await first_run.enqueue(Lane.CRAWL, REQUEST)
    await first_run.fail(await first_run.dequeue(Lane.CRAWL), navigation_error())
    clock.advance(minutes=1)
    await first_run.dequeue(Lane.CRAWL)

    second_run = JobQueue(broker, clock=clock, retry_config=FAST_RETRY)
    assert await second_run.recover_stale() == 1

    recovered = await second_run.dequeue(Lane.CRAWL)
    assert recovered.id == job.id
    assert recovered.attempt == 2


async def test_in_flight_sources(queue):
    await queue.enqueue(Lane.CRAWL, REQUEST)
    await queue.enqueue(Lane.CRAWL, REQUEST.model_copy(update={"source_id": "S2"}))
    await queue.dequeue(Lane.CRAWL)

    assert await queue.in_flight_sources(Lane.CRAWL) == {"S1", "S2"}
    assert await queue.in_flight_sources(Lane.PROCESSING) == set()


async def test_transient_broker_errors_are_retried(clock):
    broker = FlakyBroker(put_failures=2, claim_failures=1)
    queue = JobQueue(broker, clock=clock, retry_config=FAST_RETRY)

    job = await queue.enqueue(Lane.CRAWL, REQUEST)

    assert (await queue.dequeue(Lane.CRAWL)).id == job.id


async def test_persistent_broker_errors_escalate(clock):
    broker = FlakyBroker(put_failures=100)
    queue = JobQueue(broker, clock=clock, retry_config=FAST_RETRY)

    with pytest.raises(QueueUnavailableError) as exc_info:
        await queue.enqueue(Lane.CRAWL, REQUEST)

    assert exc_info.value.operation == "enqueue"
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value, QueueError)


def test_compute_backoff_ms():
    assert compute_backoff_ms(5000, 2) == 20000
    assert compute_backoff_ms(5000, 3) == 40000
    assert compute_backoff_ms(0, 3) == 0
