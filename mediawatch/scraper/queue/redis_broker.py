"""
Redis-backed queue broker.

Layout per lane under ``prefix``:

* ``<prefix>:<lane>:waiting`` sorted set of job ids scored by ``available_at``
* ``<prefix>:<lane>:active``  set of claimed job ids
* ``<prefix>:<lane>:failed``  list of dead-lettered job bodies (newest first)

Job bodies live in the hash ``<prefix>:jobs``. A claim is won by whichever
WATCH/MULTI transaction moves the id from the waiting set to the active set.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from ...schema.job import Job, JobState, Lane
from ..core.exceptions import QueueError
from .broker import QueueBroker

logger = logging.getLogger(__name__)

# Claim transactions aborted by a concurrent write before giving up for this poll
CLAIM_WATCH_RETRIES = 5


class RedisQueueBroker(QueueBroker):
    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "mediawatch:queue",
        client: Any = None,
        max_dead_letters: int = 1000,
    ):
        if client is None and redis_url is None:
            raise ValueError("Either redis_url or client is required")

        self.prefix = prefix
        self.max_dead_letters = max_dead_letters
        self._redis = client or aioredis.Redis.from_url(
            redis_url,  # type: ignore[arg-type]
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
        logger.info(f"Redis queue broker initialized with prefix {prefix}")

    def _jobs_key(self) -> str:
        return f"{self.prefix}:jobs"

    def _key(self, lane: Lane, kind: str) -> str:
        return f"{self.prefix}:{lane.value}:{kind}"

    async def _run(self, operation: str, coro: Any) -> Any:
        try:
            return await coro
        except RedisError as e:
            raise QueueError(f"Redis {operation} failed: {e}") from e

    async def ping(self) -> None:
        await self._run("ping", self._redis.ping())

    async def put(self, job: Job) -> None:
        async def _put() -> None:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._jobs_key(), job.id, job.model_dump_json())
                pipe.zadd(self._key(job.lane, "waiting"), {job.id: job.available_at.timestamp()})
                await pipe.execute()

        await self._run("put", _put())

    async def claim(self, lane: Lane, now: datetime) -> Optional[Job]:
        """
        Move the earliest eligible job from waiting to active in one MULTI/EXEC.

        The waiting set is WATCHed, so a concurrent claim or enqueue aborts the
        transaction and the claim starts over; a dropped connection leaves the
        job either fully waiting or fully active.
        """
        waiting_key = self._key(lane, "waiting")

        async def _claim() -> Optional[Job]:
            for _ in range(CLAIM_WATCH_RETRIES):
                async with self._redis.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(waiting_key)
                        candidates = await pipe.zrangebyscore(waiting_key, "-inf", now.timestamp(), start=0, num=1)
                        if not candidates:
                            return None

                        job_id = candidates[0]
                        body = await pipe.hget(self._jobs_key(), job_id)
                        pipe.multi()
                        pipe.zrem(waiting_key, job_id)
                        if body is None:
                            logger.warning(f"Dropping waiting id {job_id} without a job body")
                            await pipe.execute()
                            continue

                        job = Job.model_validate_json(body).model_copy(update={"state": JobState.ACTIVE})
                        pipe.sadd(self._key(lane, "active"), job.id)
                        pipe.hset(self._jobs_key(), job.id, job.model_dump_json())
                        await pipe.execute()
                        return job
                    except WatchError:
                        logger.debug(f"Waiting set {waiting_key} changed during claim, retrying")
                        continue

            logger.debug(f"Gave up claiming from {waiting_key} after {CLAIM_WATCH_RETRIES} contended attempts")
            return None

        return await self._run("claim", _claim())

    async def get(self, job_id: str) -> Optional[Job]:
        body = await self._run("get", self._redis.hget(self._jobs_key(), job_id))
        return Job.model_validate_json(body) if body else None

    async def requeue(self, job: Job) -> None:
        waiting = job.model_copy(update={"state": JobState.WAITING})

        async def _requeue() -> None:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._jobs_key(), waiting.id, waiting.model_dump_json())
                pipe.srem(self._key(waiting.lane, "active"), waiting.id)
                pipe.zadd(self._key(waiting.lane, "waiting"), {waiting.id: waiting.available_at.timestamp()})
                await pipe.execute()

        await self._run("requeue", _requeue())

    async def finish(self, job: Job) -> None:
        async def _finish() -> None:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.srem(self._key(job.lane, "active"), job.id)
                pipe.zrem(self._key(job.lane, "waiting"), job.id)
                pipe.hdel(self._jobs_key(), job.id)
                if job.state == JobState.FAILED:
                    pipe.lpush(self._key(job.lane, "failed"), job.model_dump_json())
                    pipe.ltrim(self._key(job.lane, "failed"), 0, self.max_dead_letters - 1)
                await pipe.execute()

        await self._run("finish", _finish())

    async def _load_jobs(self, job_ids: List[str]) -> List[Job]:
        if not job_ids:
            return []
        bodies = await self._redis.hmget(self._jobs_key(), job_ids)
        return [Job.model_validate_json(body) for body in bodies if body]

    async def active_jobs(self, lane: Lane) -> List[Job]:
        async def _active() -> List[Job]:
            ids = await self._redis.smembers(self._key(lane, "active"))
            return await self._load_jobs(sorted(ids))

        return await self._run("active_jobs", _active())

    async def waiting_jobs(self, lane: Lane) -> List[Job]:
        async def _waiting() -> List[Job]:
            ids = await self._redis.zrange(self._key(lane, "waiting"), 0, -1)
            return await self._load_jobs(list(ids))

        return await self._run("waiting_jobs", _waiting())

    async def dead_letters(self, lane: Lane, limit: int = 100) -> List[Job]:
        if limit <= 0:
            return []
        bodies = await self._run("dead_letters", self._redis.lrange(self._key(lane, "failed"), 0, limit - 1))
        return [Job.model_validate_json(body) for body in bodies]

    async def counts(self, lane: Lane) -> Dict[str, int]:
        async def _counts() -> Dict[str, int]:
            return {
                "waiting": int(await self._redis.zcard(self._key(lane, "waiting"))),
                "active": int(await self._redis.scard(self._key(lane, "active"))),
                "failed": int(await self._redis.llen(self._key(lane, "failed"))),
            }

        return await self._run("counts", _counts())

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
