"""
Retryable, lane-separated job queue.

Implements the job state machine on top of a ``QueueBroker``:

    waiting -> active -> completed
                      -> waiting   (recoverable failure, attempt + 1, backoff)
                      -> failed    (attempt == max_attempts)

Delivery is at-least-once. Transient broker errors are retried with backoff;
if the broker stays unreachable the queue raises ``QueueUnavailableError``.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Set, TypeVar, Union
from uuid import uuid4

from pydantic import BaseModel

from ...schema.content import ExtractedContent
from ...schema.job import CrawlRequest, Job, JobOptions, JobState, Lane
from ..core.exceptions import QueueError, QueueUnavailableError
from ..utils.retry import BROKER_RETRY_CONFIG, RetryConfig, RetryError, retry_with_config
from .broker import QueueBroker

logger = logging.getLogger(__name__)

R = TypeVar("R")
Clock = Callable[[], datetime]
JobPayload = Union[CrawlRequest, ExtractedContent]


class FailureOutcome(BaseModel):
    """Result of ``JobQueue.fail``"""

    job: Job
    retried: bool
    delay_ms: int = 0

    @property
    def exhausted(self) -> bool:
        return not self.retried


def compute_backoff_ms(initial_backoff_ms: int, attempt: int) -> int:
    """Backoff before ``attempt`` becomes eligible: initial x 2^attempt"""
    return initial_backoff_ms * (2**attempt)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """
    Work-item channel with a crawl lane and a processing lane.

    ``dequeue``, ``fail`` and ``complete`` are serialized so a job is never
    claimed twice by workers of this process; the broker guarantees the same
    across processes.
    """

    def __init__(
        self,
        broker: QueueBroker,
        default_options: Optional[JobOptions] = None,
        clock: Optional[Clock] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.broker = broker
        self.default_options = default_options or JobOptions()
        self._clock = clock or _utcnow
        self._retry_config = retry_config or BROKER_RETRY_CONFIG
        self._lock = asyncio.Lock()

        self.stats: Dict[str, int] = {
            "enqueued": 0,
            "dequeued": 0,
            "completed": 0,
            "retried": 0,
            "failed": 0,
            "recovered": 0,
        }

    async def _call(self, operation: str, func: Callable[[], Awaitable[R]]) -> R:
        """Run a broker operation, retrying transient ``QueueError``s"""
        try:
            return await retry_with_config(func, self._retry_config, exceptions=(QueueError,))
        except RetryError as e:
            logger.critical(
                f"Queue broker unavailable during {operation}",
                extra={"operation": operation, "attempts": e.attempts, "error": str(e.last_exception)},
            )
            raise QueueUnavailableError(operation, e.attempts, e.last_exception) from e.last_exception

    async def initialize(self) -> None:
        """
        Check the broker is reachable.

        Raises:
            QueueError: If the broker cannot be reached; the service cannot start without it
        """
        await self.broker.ping()
        logger.info("Job queue initialized")

    async def enqueue(self, lane: Lane, payload: JobPayload, options: Optional[JobOptions] = None) -> Job:
        """
        Add a new ``waiting`` job to ``lane``.

        Args:
            lane: Target lane
            payload: Crawl request or extracted content
            options: Retry options; queue defaults if None

        Returns:
            The stored job
        """
        opts = options or self.default_options
        now = self._clock()
        job = Job(
            id=str(uuid4()),
            lane=lane,
            source_id=payload.source_id,
            content_type=payload.content_type.value,
            url=payload.url,
            payload=payload.model_dump(mode="json"),
            attempt=1,
            max_attempts=opts.max_attempts,
            initial_backoff_ms=opts.initial_backoff_ms,
            state=JobState.WAITING,
            available_at=now,
            created_at=now,
        )

        await self._call("enqueue", lambda: self.broker.put(job))
        self.stats["enqueued"] += 1

        logger.debug(
            f"Enqueued {lane.value} job {job.id}",
            extra={"job_id": job.id, "lane": lane.value, "source_id": job.source_id},
        )
        return job

    async def dequeue(self, lane: Lane) -> Optional[Job]:
        """
        Claim one eligible waiting job and mark it active.

        Never blocks waiting for work; returns None when nothing is eligible.
        """
        async with self._lock:
            now = self._clock()
            job = await self._call("dequeue", lambda: self.broker.claim(lane, now))

        if job is not None:
            self.stats["dequeued"] += 1
        return job

    async def complete(self, job: Job) -> bool:
        """
        Transition an active job to completed.

        Returns:
            False if the job was already terminal or unknown (no-op)
        """
        async with self._lock:
            current = await self._call("complete", lambda: self.broker.get(job.id))
            if current is None or current.state != JobState.ACTIVE:
                return False

            done = current.model_copy(update={"state": JobState.COMPLETED})
            await self._call("complete", lambda: self.broker.finish(done))

        job.state = JobState.COMPLETED
        self.stats["completed"] += 1
        return True

    async def fail(self, job: Job, error: Union[BaseException, str]) -> Optional[FailureOutcome]:
        """
        Record a failed attempt.

        Below ``max_attempts`` the job returns to waiting with an exponential
        backoff; at ``max_attempts`` it becomes permanently failed.

        Returns:
            FailureOutcome, or None if the job was already terminal or unknown
        """
        message = str(error) or type(error).__name__

        async with self._lock:
            current = await self._call("fail", lambda: self.broker.get(job.id))
            if current is None or current.state != JobState.ACTIVE:
                return None

            if current.attempt < current.max_attempts:
                attempt = current.attempt + 1
                delay_ms = compute_backoff_ms(current.initial_backoff_ms, attempt)
                retried = current.model_copy(
                    update={
                        "attempt": attempt,
                        "backoff_delay_ms": delay_ms,
                        "available_at": self._clock() + timedelta(milliseconds=delay_ms),
                        "state": JobState.WAITING,
                        "last_error": message,
                    }
                )
                await self._call("fail", lambda: self.broker.requeue(retried))
                self.stats["retried"] += 1
                outcome = FailureOutcome(job=retried, retried=True, delay_ms=delay_ms)
            else:
                failed = current.model_copy(update={"state": JobState.FAILED, "last_error": message})
                await self._call("fail", lambda: self.broker.finish(failed))
                self.stats["failed"] += 1
                outcome = FailureOutcome(job=failed, retried=False)

        job.state = outcome.job.state
        job.attempt = outcome.job.attempt
        job.last_error = message
        return outcome

    async def recover_stale(self) -> int:
        """
        Return jobs left ``active`` by a previous process to the waiting pool.

        Call once at startup, before any worker dequeues.

        Returns:
            Number of jobs recovered
        """
        recovered = 0
        async with self._lock:
            now = self._clock()
            for lane in Lane:
                stale = await self._call("recover_stale", lambda: self.broker.active_jobs(lane))
                for job in stale:
                    waiting = job.model_copy(update={"state": JobState.WAITING, "available_at": now})
                    await self._call("recover_stale", lambda: self.broker.requeue(waiting))
                    recovered += 1

        if recovered:
            logger.warning(f"Recovered {recovered} jobs left active by a previous run")
        self.stats["recovered"] += recovered
        return recovered

    async def in_flight_sources(self, lane: Lane) -> Set[str]:
        """Source ids with a waiting or active job in ``lane``"""
        waiting = await self._call("in_flight_sources", lambda: self.broker.waiting_jobs(lane))
        active = await self._call("in_flight_sources", lambda: self.broker.active_jobs(lane))
        return {job.source_id for job in waiting} | {job.source_id for job in active}

    async def counts(self, lane: Lane) -> Dict[str, int]:
        return await self._call("counts", lambda: self.broker.counts(lane))

    async def dead_letters(self, lane: Lane, limit: int = 100) -> List[Job]:
        return await self._call("dead_letters", lambda: self.broker.dead_letters(lane, limit))

    async def close(self) -> None:
        await self.broker.close()
        logger.info("Job queue closed")

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)
