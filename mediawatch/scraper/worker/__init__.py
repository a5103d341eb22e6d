"""
Crawl worker components.

- CrawlWorkerLoop: scheduling ticker plus a bounded pool of browser-driven worker units
- PeriodicTask: interval runner with an explicit cancellation token
- WorkerStats: counters reported by the loop
"""

from .crawl_worker import CrawlWorkerLoop, WorkerStats
from .ticker import PeriodicTask

__all__ = [
    "CrawlWorkerLoop",
    "PeriodicTask",
    "WorkerStats",
]
