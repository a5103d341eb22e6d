"""
Queue broker contract.

A broker stores jobs per lane and hands out claims. It knows nothing about
retry policy; ``JobQueue`` implements the state machine on top of it.
Implementations report transport failures as ``QueueError``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ...schema.job import Job, Lane


class QueueBroker(ABC):
    @abstractmethod
    async def ping(self) -> None:
        """Raise ``QueueError`` if the broker cannot be reached."""

    @abstractmethod
    async def put(self, job: Job) -> None:
        """Store a new ``waiting`` job."""

    @abstractmethod
    async def claim(self, lane: Lane, now: datetime) -> Optional[Job]:
        """
        Atomically take one waiting job whose ``available_at`` is not after ``now``,
        mark it ``active`` and return it. Two callers never receive the same job.
        """

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Current stored version of a job, or None once it is gone."""

    @abstractmethod
    async def requeue(self, job: Job) -> None:
        """Move an ``active`` job back into the waiting pool, eligible at ``job.available_at``."""

    @abstractmethod
    async def finish(self, job: Job) -> None:
        """Drop a terminal job; ``failed`` jobs are kept as dead letters."""

    @abstractmethod
    async def active_jobs(self, lane: Lane) -> List[Job]:
        """Jobs currently claimed in the lane."""

    @abstractmethod
    async def waiting_jobs(self, lane: Lane) -> List[Job]:
        """Jobs waiting in the lane, including those still in backoff."""

    @abstractmethod
    async def dead_letters(self, lane: Lane, limit: int = 100) -> List[Job]:
        """Most recent permanently failed jobs in the lane."""

    @abstractmethod
    async def counts(self, lane: Lane) -> Dict[str, int]:
        """Backlog sizes: waiting, active, failed."""

    async def close(self) -> None:
        return None
