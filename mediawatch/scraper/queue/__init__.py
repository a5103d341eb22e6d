"""
Lane-separated job queue with retry/backoff over pluggable brokers.
"""

from .broker import QueueBroker
from .job_queue import FailureOutcome, JobQueue, compute_backoff_ms
from .local_broker import LocalQueueBroker
from .redis_broker import RedisQueueBroker

__all__ = [
    "FailureOutcome",
    "JobQueue",
    "LocalQueueBroker",
    "QueueBroker",
    "RedisQueueBroker",
    "compute_backoff_ms",
]
