"""
Local queue broker for development and tests.

Keeps jobs in process memory and, when given a path, snapshots them to a
JSON file after every mutation so a restarted process picks them up again.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ...schema.job import Job, JobState, Lane
from ..core.exceptions import QueueError
from .broker import QueueBroker

logger = logging.getLogger(__name__)


class LocalQueueBroker(QueueBroker):
    """
    In-memory broker with optional JSON file persistence.
    """

    def __init__(self, path: Optional[Path] = None, max_dead_letters: int = 1000):
        self.path = path
        self.max_dead_letters = max_dead_letters
        self._jobs: Dict[str, Job] = {}
        self._dead_letters: Dict[Lane, List[Job]] = {lane: [] for lane in Lane}

        # Thread lock for file operations
        self._lock = threading.Lock()

        if self.path is not None:
            self._load()

        logger.info(f"Local queue broker initialized (persistence: {self.path or 'off'})")

    def _load(self) -> None:
        assert self.path is not None
        if not self.path.exists():
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._jobs = {job["id"]: Job.model_validate(job) for job in data.get("jobs", [])}
            for lane in Lane:
                stored = data.get("dead_letters", {}).get(lane.value, [])
                self._dead_letters[lane] = [Job.model_validate(job) for job in stored]
        except (OSError, ValueError) as e:
            raise QueueError(f"Cannot read local queue file {self.path}: {e}") from e

        logger.info(f"Restored {len(self._jobs)} jobs from {self.path}")

    def _persist(self) -> None:
        if self.path is None:
            return

        data = {
            "jobs": [job.model_dump(mode="json") for job in self._jobs.values()],
            "dead_letters": {
                lane.value: [job.model_dump(mode="json") for job in jobs] for lane, jobs in self._dead_letters.items()
            },
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(self.path)
        except OSError as e:
            raise QueueError(f"Cannot write local queue file {self.path}: {e}") from e

    async def ping(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise QueueError(f"Queue directory {self.path.parent} is unusable: {e}") from e

    async def put(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job.model_copy()
            self._persist()

    async def claim(self, lane: Lane, now: datetime) -> Optional[Job]:
        with self._lock:
            eligible = [
                job
                for job in self._jobs.values()
                if job.lane == lane and job.state == JobState.WAITING and job.available_at <= now
            ]
            if not eligible:
                return None

            chosen = min(eligible, key=lambda job: (job.available_at, job.created_at))
            claimed = chosen.model_copy(update={"state": JobState.ACTIVE})
            self._jobs[claimed.id] = claimed
            self._persist()
            return claimed.model_copy()

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    async def requeue(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job.model_copy(update={"state": JobState.WAITING})
            self._persist()

    async def finish(self, job: Job) -> None:
        with self._lock:
            self._jobs.pop(job.id, None)
            if job.state == JobState.FAILED:
                dead = self._dead_letters[job.lane]
                dead.append(job.model_copy())
                del dead[: -self.max_dead_letters]
            self._persist()

    async def active_jobs(self, lane: Lane) -> List[Job]:
        return [j.model_copy() for j in self._jobs.values() if j.lane == lane and j.state == JobState.ACTIVE]

    async def waiting_jobs(self, lane: Lane) -> List[Job]:
        return [j.model_copy() for j in self._jobs.values() if j.lane == lane and j.state == JobState.WAITING]

    async def dead_letters(self, lane: Lane, limit: int = 100) -> List[Job]:
        if limit <= 0:
            return []
        return [j.model_copy() for j in reversed(self._dead_letters[lane][-limit:])]

    async def counts(self, lane: Lane) -> Dict[str, int]:
        waiting = active = 0
        for job in self._jobs.values():
            if job.lane != lane:
                continue
            if job.state == JobState.WAITING:
                waiting += 1
            elif job.state == JobState.ACTIVE:
                active += 1
        return {"waiting": waiting, "active": active, "failed": len(self._dead_letters[lane])}
