"""
Periodic background task with an explicit cancellation token.

``tick()`` runs one iteration directly so tests can drive the schedule
deterministically; ``start()`` runs it on an interval until ``stop()``.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``func`` every ``interval_seconds`` until stopped."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
        run_immediately: bool = True,
        fatal_exceptions: Tuple[Type[BaseException], ...] = (),
    ):
        """
        Args:
            name: Task name used in logs and stats
            interval_seconds: Delay between the end of one run and the start of the next
            func: Zero-argument coroutine function to run
            run_immediately: Run once as soon as the task starts instead of after the first interval
            fatal_exceptions: Exception types that stop the loop instead of being logged and skipped
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.run_immediately = run_immediately
        self.fatal_exceptions = fatal_exceptions

        self._task: Optional[asyncio.Task[None]] = None
        self._shutdown_event = asyncio.Event()
        self.fatal_error: Optional[BaseException] = None

        self.stats: Dict[str, Any] = {
            "runs": 0,
            "errors": 0,
            "last_run_at": None,
            "last_error": None,
        }

    @property
    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Any:
        """Run one iteration now"""
        result = await self.func()
        self.stats["runs"] += 1
        self.stats["last_run_at"] = datetime.now(timezone.utc)
        return result

    def start(self) -> None:
        if self.is_alive:
            logger.warning(f"Periodic task {self.name} is already running")
            return

        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"Started periodic task {self.name} every {self.interval_seconds}s")

    async def stop(self) -> None:
        self._shutdown_event.set()

        if self._task is None:
            return

        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped periodic task {self.name}")

    async def _wait_interval(self) -> bool:
        """Sleep one interval; returns True if shutdown was requested meanwhile"""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval_seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self) -> None:
        if not self.run_immediately and await self._wait_interval():
            return

        while not self._shutdown_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except self.fatal_exceptions as e:
                self.fatal_error = e
                logger.critical(f"Periodic task {self.name} stopped on fatal error: {e}")
                break
            except Exception as e:
                self.stats["errors"] += 1
                self.stats["last_error"] = str(e)
                logger.error(f"Error in periodic task {self.name}: {e}", exc_info=True)

            if await self._wait_interval():
                break

        logger.debug(f"Periodic task {self.name} loop exited")

    def get_stats(self) -> Dict[str, Any]:
        last_run_at = self.stats["last_run_at"]
        return {
            **self.stats,
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "alive": self.is_alive,
            "last_run_at": last_run_at.isoformat() if last_run_at else None,
        }
