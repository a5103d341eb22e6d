"""
Composition root for the scraper service.

Wires settings, seed sources, the source registry and its validation ticker,
the job queue, the crawl worker loop and the health endpoint, and owns their
startup and shutdown order.
"""

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any, Dict, Iterator, List, Optional

import uvicorn

from .. import __version__
from ..schema import HealthStatus, JobOptions, Lane
from .browser.session import BrowserSession
from .browser.user_agents import UserAgentRotator
from .config.seeds import load_seed_file
from .config.settings import ScraperSettings, get_cached_settings
from .core.exceptions import QueueError
from .core.types import ServiceStatus
from .health import create_health_app
from .queue.broker import QueueBroker
from .queue.job_queue import JobQueue
from .queue.local_broker import LocalQueueBroker
from .queue.redis_broker import RedisQueueBroker
from .sources.probe import HTTPLivenessProbe
from .sources.registry import SourceRegistry
from .worker.crawl_worker import CrawlWorkerLoop
from .worker.ticker import PeriodicTask

logger = logging.getLogger(__name__)


class _HealthServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the service"""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def create_broker(settings: ScraperSettings) -> QueueBroker:
    """Select the queue broker implementation configured for this environment"""
    if settings.queue_backend == "redis":
        logger.info("Using Redis queue broker")
        return RedisQueueBroker(
            settings.redis_url, prefix=settings.queue_key_prefix, max_dead_letters=settings.max_dead_letters
        )

    logger.info("Using local queue broker", extra={"path": str(settings.local_queue_file)})
    return LocalQueueBroker(settings.local_queue_file, max_dead_letters=settings.max_dead_letters)


def load_seed_sources(settings: ScraperSettings) -> List[Dict[str, Any]]:
    """Read the configured seed file, filling in the default validation interval"""
    if settings.sources_file is None:
        logger.warning("No sources file configured; starting with an empty registry")
        return []

    entries = load_seed_file(settings.sources_file)
    for entry in entries:
        entry.setdefault("validation_interval", settings.default_validation_interval_seconds)
    return entries


class ScraperService:
    """Runs the validator, scheduler, worker pool and health endpoint together."""

    def __init__(
        self,
        settings: Optional[ScraperSettings] = None,
        registry: Optional[SourceRegistry] = None,
        queue: Optional[JobQueue] = None,
        worker_loop: Optional[CrawlWorkerLoop] = None,
    ):
        self.settings = settings or get_cached_settings()
        self.status = ServiceStatus.STOPPED

        user_agents = UserAgentRotator(self.settings.user_agents or None)
        self.probe: Optional[HTTPLivenessProbe] = None

        if registry is None:
            self.probe = HTTPLivenessProbe(self.settings.probe_timeout_seconds, user_agents)
            registry = SourceRegistry(self.probe)
        self.registry = registry

        self.queue = queue or JobQueue(
            create_broker(self.settings),
            JobOptions(max_attempts=self.settings.max_attempts, initial_backoff_ms=self.settings.initial_backoff_ms),
        )

        self.worker_loop = worker_loop or CrawlWorkerLoop(
            self.registry,
            self.queue,
            BrowserSession(
                headless=self.settings.headless,
                executable_path=self.settings.browser_executable_path,
                args=self.settings.browser_args,
            ),
            self.settings,
            user_agents,
        )

        self.validator = PeriodicTask(
            "source-validator",
            self.settings.validation_sweep_interval_seconds,
            self.registry.validate_sweep,
        )

        self._shutdown_event = asyncio.Event()
        self._health_server: Optional[_HealthServer] = None
        self._health_task: Optional[asyncio.Task[None]] = None

    async def initialize(self) -> None:
        """
        Load seed sources and connect to the queue broker.

        Raises:
            ConfigError: If settings or seed sources are malformed
            QueueError: If the queue broker is unreachable
        """
        self.status = ServiceStatus.STARTING
        try:
            if len(self.registry) == 0:
                self.registry.load(load_seed_sources(self.settings))
            await self.queue.initialize()
            await self.queue.recover_stale()
        except Exception:
            self.status = ServiceStatus.ERROR
            raise

    async def start(self) -> None:
        """Start the validator ticker, the crawl worker loop and the health endpoint"""
        self.validator.start()
        await self.worker_loop.start()

        if self.settings.health_check_enabled:
            self._start_health_server()

        self.status = ServiceStatus.RUNNING
        logger.info(f"Scraper service {__version__} running", extra={"environment": self.settings.environment})

    def _start_health_server(self) -> None:
        config = uvicorn.Config(
            create_health_app(self),
            host=self.settings.health_check_host,
            port=self.settings.health_check_port,
            log_level="warning",
            lifespan="off",
        )
        self._health_server = _HealthServer(config)
        self._health_task = asyncio.create_task(self._health_server.serve(), name="health-server")
        logger.info(
            f"Health endpoint listening on {self.settings.health_check_host}:{self.settings.health_check_port}"
        )

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown"""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, lambda signum, frame: self.request_shutdown())
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

    async def run(self) -> None:
        """
        Initialize, start and block until shutdown is requested or the worker loop halts.

        Raises:
            QueueUnavailableError: If the queue broker became unreachable mid-run
        """
        await self.initialize()
        await self.start()

        shutdown_wait = asyncio.create_task(self._shutdown_event.wait())
        worker_wait = asyncio.create_task(self.worker_loop.wait_stopped())
        try:
            await asyncio.wait({shutdown_wait, worker_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (shutdown_wait, worker_wait):
                task.cancel()
            await self.shutdown()

        if self.worker_loop.fatal_error is not None:
            raise self.worker_loop.fatal_error

    async def health(self) -> HealthStatus:
        worker_health = self.worker_loop.health()
        scheduler_ok = worker_health["scheduler_alive"]
        validator_ok = self.validator.is_alive
        workers_ok = worker_health["workers_total"] > 0 and worker_health["workers_alive"] > 0

        queue_counts: Dict[str, Dict[str, int]] = {}
        queue_ok = True
        for lane in Lane:
            try:
                queue_counts[lane.value] = await self.queue.broker.counts(lane)
            except QueueError as e:
                queue_ok = False
                logger.warning(f"Queue counts unavailable for health check: {e}")
                break

        if scheduler_ok and validator_ok and workers_ok and queue_ok:
            status = "ok"
        elif not (scheduler_ok or validator_ok or workers_ok) or self.worker_loop.fatal_error is not None:
            status = "down"
        else:
            status = "degraded"

        return HealthStatus(
            status=status,
            version=__version__,
            scheduler="ok" if scheduler_ok else "down",
            validator="ok" if validator_ok else "down",
            workers_alive=worker_health["workers_alive"],
            workers_total=worker_health["workers_total"],
            queue=queue_counts,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "registry": self.registry.get_stats(),
            "validator": self.validator.get_stats(),
            "worker": self.worker_loop.get_stats(),
        }

    async def shutdown(self) -> None:
        """Stop components in reverse order of startup"""
        if self.status == ServiceStatus.STOPPED:
            return

        logger.info("Shutting down scraper service...")
        self.status = ServiceStatus.STOPPING

        if self._health_server is not None:
            self._health_server.should_exit = True
        if self._health_task is not None:
            try:
                await self._health_task
            except Exception as e:
                logger.error(f"Error stopping health endpoint: {e}")
            self._health_task = None
            self._health_server = None

        await self.worker_loop.stop()
        await self.validator.stop()

        if self.probe is not None:
            await self.probe.close()
        await self.queue.close()

        self.status = ServiceStatus.STOPPED
        logger.info("Scraper service shutdown complete")
