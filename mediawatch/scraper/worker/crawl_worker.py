"""
Crawl worker loop: turns crawl-lane jobs into processing-lane jobs.

Runs a scheduling ticker that enqueues one crawl job per active source, and a
bounded pool of worker units that each dequeue a job, load the page in an
isolated browsing context, run the extraction strategy for the job's content
type and hand the result to the processing lane.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ...schema.content import ExtractedContent
from ...schema.job import CrawlRequest, Job, JobOptions, Lane
from ..browser.extractors import extract_content
from ..browser.session import BrowserSession
from ..browser.user_agents import UserAgentRotator
from ..config.settings import ScraperSettings, get_cached_settings
from ..core.exceptions import CrawlError, QueueUnavailableError
from ..core.types import ScrapeErrorType, ServiceStatus
from ..queue.job_queue import JobQueue
from ..sources.registry import SourceRegistry
from ..utils.logging import ScrapeLoggerAdapter, get_logger
from .ticker import PeriodicTask

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerStats(dict[str, Any]):
    """Counters for the crawl worker loop"""

    def __init__(self):
        super().__init__(
            {
                "started_at": datetime.now(timezone.utc),
                "jobs_scheduled": 0,
                "sources_skipped": 0,
                "jobs_dequeued": 0,
                "jobs_completed": 0,
                "jobs_retried": 0,
                "jobs_failed": 0,
                "processing_jobs_enqueued": 0,
                "processing_time_total": 0.0,
                "errors_by_type": {},
            }
        )

    def record_scheduled(self, enqueued: int, skipped: int):
        self["jobs_scheduled"] += enqueued
        self["sources_skipped"] += skipped

    def record_finished(self, success: bool, processing_time: float):
        if success:
            self["jobs_completed"] += 1
        self["processing_time_total"] += processing_time

    def record_error(self, error_type: str):
        if error_type not in self["errors_by_type"]:
            self["errors_by_type"][error_type] = 0
        self["errors_by_type"][error_type] += 1

    def get_summary(self) -> Dict[str, Any]:
        uptime = datetime.now(timezone.utc) - self["started_at"]
        handled = self["jobs_completed"] + self["jobs_retried"] + self["jobs_failed"]

        return {
            "uptime_seconds": uptime.total_seconds(),
            "jobs_scheduled": self["jobs_scheduled"],
            "sources_skipped": self["sources_skipped"],
            "jobs_dequeued": self["jobs_dequeued"],
            "jobs_completed": self["jobs_completed"],
            "jobs_retried": self["jobs_retried"],
            "jobs_failed": self["jobs_failed"],
            "processing_jobs_enqueued": self["processing_jobs_enqueued"],
            "success_rate": self["jobs_completed"] / max(1, handled),
            "average_processing_time": self["processing_time_total"] / max(1, handled),
            "errors_by_type": dict(self["errors_by_type"]),
        }


class CrawlWorkerLoop:
    """
    Scheduler plus a bounded pool of crawl worker units over one shared browser.

    ``schedule_once()`` and ``process_next()`` expose single iterations of the
    two activities so they can be driven directly without timers.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        queue: JobQueue,
        browser: BrowserSession,
        settings: Optional[ScraperSettings] = None,
        user_agents: Optional[UserAgentRotator] = None,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self.queue = queue
        self.browser = browser
        self.settings = settings or get_cached_settings()
        self.user_agents = user_agents or UserAgentRotator(self.settings.user_agents or None)
        self._clock = clock or _utcnow

        self.job_options = JobOptions(
            max_attempts=self.settings.max_attempts,
            initial_backoff_ms=self.settings.initial_backoff_ms,
        )
        self.viewport = {"width": self.settings.viewport_width, "height": self.settings.viewport_height}

        self.status = ServiceStatus.STOPPED
        self.fatal_error: Optional[BaseException] = None
        self._stop_event = asyncio.Event()
        self._workers: List[asyncio.Task[None]] = []
        self._scheduler = PeriodicTask(
            "crawl-scheduler",
            self.settings.scheduling_interval_seconds,
            self._scheduled_tick,
            fatal_exceptions=(QueueUnavailableError,),
        )

        self.stats = WorkerStats()
        self._events = ScrapeLoggerAdapter(get_logger(__name__), component="crawl_worker")

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def scheduler_alive(self) -> bool:
        return self._scheduler.is_alive

    @property
    def workers_alive(self) -> int:
        return sum(1 for task in self._workers if not task.done())

    async def start(self) -> None:
        """Launch the shared browser, the scheduler and the worker pool"""
        if self.status == ServiceStatus.RUNNING:
            logger.warning("Crawl worker loop is already running")
            return

        self.status = ServiceStatus.STARTING
        self._stop_event.clear()
        self.fatal_error = None

        try:
            await self.browser.launch()
        except Exception as e:
            self.status = ServiceStatus.ERROR
            logger.error(f"Failed to launch browser session: {e}")
            raise

        self._scheduler.start()
        self._workers = [
            asyncio.create_task(self._worker_unit(index), name=f"crawl-worker-{index}")
            for index in range(self.settings.max_concurrent_scrapes)
        ]

        self.status = ServiceStatus.RUNNING
        logger.info(
            f"Crawl worker loop started with {len(self._workers)} workers",
            extra={"workers": len(self._workers), "scheduling_interval": self.settings.scheduling_interval_seconds},
        )

    async def stop(self) -> None:
        """
        Stop scheduling and let worker units exit after their current job.

        Jobs still ``active`` stay active until the next startup recovers them.
        """
        if self.status == ServiceStatus.STOPPED and not self._workers:
            return

        logger.info("Stopping crawl worker loop...")
        self._stop_event.set()
        if self.status != ServiceStatus.ERROR:
            self.status = ServiceStatus.STOPPING

        await self._scheduler.stop()

        if self._workers:
            results = await asyncio.gather(*self._workers, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                    logger.error(f"Worker unit exited with error: {result}")
            self._workers = []

        try:
            await self.browser.close()
        except Exception as e:
            logger.error(f"Error closing browser session: {e}")

        if self.status != ServiceStatus.ERROR:
            self.status = ServiceStatus.STOPPED
        logger.info("Crawl worker loop stopped", extra=self.stats.get_summary())

    async def wait_stopped(self) -> None:
        """Block until a stop is requested or a fatal error occurs"""
        await self._stop_event.wait()

    def _escalate(self, error: QueueUnavailableError) -> None:
        if self.fatal_error is None:
            self.fatal_error = error
            logger.critical(f"Crawl worker loop halting: {error}")
        self.status = ServiceStatus.ERROR
        self._stop_event.set()

    async def _scheduled_tick(self) -> int:
        try:
            return await self.schedule_once()
        except QueueUnavailableError as e:
            self._escalate(e)
            raise

    async def schedule_once(self) -> int:
        """
        Enqueue one crawl job per active source.

        With the in-flight guard on, sources that already have a waiting or
        active crawl job are skipped.

        Returns:
            Number of crawl jobs enqueued
        """
        sources = self.registry.active_sources()
        in_flight = await self.queue.in_flight_sources(Lane.CRAWL) if self.settings.dedupe_in_flight else set()

        enqueued = 0
        skipped = 0
        for source in sources:
            if source.id in in_flight:
                skipped += 1
                continue
            await self.queue.enqueue(Lane.CRAWL, CrawlRequest.from_source(source), self.job_options)
            enqueued += 1

        self.stats.record_scheduled(enqueued, skipped)
        logger.info(
            f"Scheduled {enqueued} crawl jobs",
            extra={"active_sources": len(sources), "enqueued": enqueued, "skipped_in_flight": skipped},
        )
        return enqueued

    async def _worker_unit(self, index: int) -> None:
        logger.debug(f"Worker unit {index} started")

        while not self._stop_event.is_set():
            try:
                handled = await self.process_next()
            except QueueUnavailableError as e:
                self._escalate(e)
                break
            except Exception as e:
                logger.error(f"Unexpected error in worker unit {index}: {e}", exc_info=True)
                self.stats.record_error("worker_loop_error")
                handled = False

            if not handled:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.poll_interval_seconds)
                except asyncio.TimeoutError:
                    continue

        logger.debug(f"Worker unit {index} stopped")

    async def process_next(self) -> bool:
        """
        Run one worker iteration: dequeue a crawl job and process it.

        Returns:
            True if a job was dequeued and handled, False if the lane was empty
        """
        job = await self.queue.dequeue(Lane.CRAWL)
        if job is None:
            return False

        await self.process_job(job)
        return True

    async def process_job(self, job: Job) -> bool:
        """
        Crawl one dequeued job.

        Per-job errors are translated into ``fail``; only queue unavailability
        propagates.

        Returns:
            True if the job completed
        """
        self.stats["jobs_dequeued"] += 1
        start_time = time.monotonic()
        self._events.log_job_started(job.id, job.source_id, job.url, job.attempt)

        try:
            content = await self._crawl(job)
        except CrawlError as e:
            await self._handle_failure(job, e)
            self.stats.record_finished(False, time.monotonic() - start_time)
            return False
        except Exception as e:
            error = CrawlError(f"{type(e).__name__}: {e}", ScrapeErrorType.UNKNOWN, original_error=e)
            await self._handle_failure(job, error)
            self.stats.record_finished(False, time.monotonic() - start_time)
            return False

        await self.queue.enqueue(Lane.PROCESSING, content, self.job_options)
        self.stats["processing_jobs_enqueued"] += 1
        await self.queue.complete(job)

        self.stats.record_finished(True, time.monotonic() - start_time)
        items = len(content.payload) if isinstance(content.payload, list) else 1
        self._events.log_job_completed(
            job.id, job.source_id, job.url, job.attempt, content_type=job.content_type, items=items
        )
        return True

    async def _crawl(self, job: Job) -> ExtractedContent:
        context = await self.browser.new_context(user_agent=self.user_agents.next(), viewport=self.viewport)
        try:
            if self.settings.request_delay_ms > 0:
                await asyncio.sleep(self.settings.request_delay_ms / 1000)

            page = await context.navigate(
                job.url,
                timeout_ms=self.settings.navigation_timeout_ms,
                wait_until=self.settings.wait_until,
            )
            payload = await extract_content(context, page, job.content_type)
        finally:
            await context.close()

        return ExtractedContent(
            source_id=job.source_id,
            content_type=job.content_type,
            url=job.url,
            payload=payload,
            extracted_at=self._clock(),
        )

    async def _handle_failure(self, job: Job, error: CrawlError) -> None:
        self.stats.record_error(error.error_type.value)
        outcome = await self.queue.fail(job, error)

        if outcome is None:
            logger.warning(
                f"Job {job.id} was no longer active when its failure was recorded",
                extra={"job_id": job.id, "source_id": job.source_id, "error": str(error)},
            )
            return

        if outcome.retried:
            self.stats["jobs_retried"] += 1
            self._events.log_job_retry(
                job.id,
                job.source_id,
                job.url,
                outcome.job.attempt,
                outcome.delay_ms,
                str(error),
                error_type=error.error_type.value,
            )
        else:
            self.stats["jobs_failed"] += 1
            self._events.log_job_failed(
                job.id,
                job.source_id,
                job.url,
                outcome.job.attempt,
                outcome.job.max_attempts,
                str(error),
                error_type=error.error_type.value,
            )

    def health(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "scheduler_alive": self.scheduler_alive,
            "workers_alive": self.workers_alive,
            "workers_total": len(self._workers),
            "browser_connected": self.browser.is_connected,
            "fatal_error": str(self.fatal_error) if self.fatal_error else None,
        }

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = self.stats.get_summary()
        stats["scheduler"] = self._scheduler.get_stats()
        stats["browser"] = dict(self.browser.stats)
        stats["queue"] = self.queue.get_stats()
        return stats
