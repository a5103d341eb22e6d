"""In-memory stand-ins for the browser, liveness probe, clock and Redis client."""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from mediawatch.scraper.browser.extractors import IMAGE_SCRIPT, TEXT_SCRIPT, VIDEO_SCRIPT
from mediawatch.scraper.core.exceptions import ExtractionError, NavigationError
from mediawatch.scraper.sources.probe import ProbeResult
from mediawatch.scraper.utils.retry import RetryConfig

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

# Broker retries without sleeping
FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0, jitter=False)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProbe:
    """Answers from a url -> status map; a str value is a transport error, an exception is raised."""

    def __init__(self, statuses: Optional[Dict[str, Union[int, str, Exception]]] = None, default: int = 200):
        self.statuses = dict(statuses or {})
        self.default = default
        self.calls: List[str] = []

    async def check(self, url: str) -> ProbeResult:
        self.calls.append(url)
        outcome = self.statuses.get(url, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return ProbeResult(error=outcome)
        return ProbeResult(status_code=outcome)


class FakePage:
    def __init__(
        self,
        text: str = "",
        images: Optional[List[Dict[str, Any]]] = None,
        videos: Optional[List[Dict[str, Any]]] = None,
        broken_script: bool = False,
    ):
        self.url = ""
        self.text = text
        self.images = images or []
        self.videos = videos or []
        self.broken_script = broken_script


class FakeContext:
    def __init__(self, browser: "FakeBrowser", user_agent: str, viewport: Dict[str, int]):
        self.browser = browser
        self.user_agent = user_agent
        self.viewport = viewport
        self.closed = False

    async def navigate(self, url: str, *, timeout_ms: int, wait_until: str = "networkidle") -> FakePage:
        self.browser.navigations.append((url, wait_until))
        page = self.browser.pages.get(url)
        if page is None:
            raise NavigationError(url, "net::ERR_NAME_NOT_RESOLVED")
        if isinstance(page, Exception):
            raise page
        page.url = url
        return page

    async def evaluate(self, page: FakePage, script: str) -> Any:
        if page.broken_script:
            raise ExtractionError(f"Extraction script failed on {page.url}: ReferenceError")
        if script == TEXT_SCRIPT:
            return page.text
        if script == IMAGE_SCRIPT:
            return page.images
        if script == VIDEO_SCRIPT:
            return page.videos
        raise AssertionError(f"unexpected script {script!r}")

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.browser.stats["contexts_closed"] += 1


class FakeBrowser:
    """Mimics ``BrowserSession``; ``pages`` maps url -> FakePage or an exception to raise."""

    def __init__(self, pages: Optional[Dict[str, Union[FakePage, Exception]]] = None):
        self.pages = dict(pages or {})
        self.launched = False
        self.closed = False
        self.contexts: List[FakeContext] = []
        self.navigations: List[tuple] = []
        self.stats: Dict[str, int] = {"contexts_opened": 0, "contexts_closed": 0}

    @property
    def is_connected(self) -> bool:
        return self.launched and not self.closed

    async def launch(self) -> None:
        self.launched = True
        self.closed = False

    async def new_context(self, *, user_agent: str, viewport: Dict[str, int]) -> FakeContext:
        context = FakeContext(self, user_agent, viewport)
        self.contexts.append(context)
        self.stats["contexts_opened"] += 1
        return context

    async def close(self) -> None:
        self.closed = True


class FakePipeline:
    """Buffers commands until ``execute``; after ``watch`` and before ``multi`` they run immediately."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands: List[tuple] = []
        self.watched: Dict[str, int] = {}
        self.immediate = False

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        await self.reset()
        return False

    def __getattr__(self, name: str) -> Any:
        if self.immediate:
            return getattr(self.redis, name)

        def buffer(*args: Any, **kwargs: Any) -> "FakePipeline":
            self.commands.append((name, args, kwargs))
            return self

        return buffer

    async def watch(self, *keys: str) -> None:
        self.redis._check()
        self.immediate = True
        self.watched.update({key: self.redis.versions[key] for key in keys})

    def multi(self) -> None:
        self.immediate = False

    async def reset(self) -> None:
        self.commands = []
        self.watched = {}
        self.immediate = False

    async def execute(self) -> List[Any]:
        self.redis._check()
        if self.redis.on_execute is not None:
            self.redis.on_execute([name for name, _, _ in self.commands])
        if any(self.redis.versions[key] != version for key, version in self.watched.items()):
            await self.reset()
            raise WatchError("Watched variable changed.")

        results = [await getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.commands]
        await self.reset()
        return results


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` (decode_responses=True) for the queue broker."""

    def __init__(self):
        self.hashes: Dict[str, Dict[str, str]] = defaultdict(dict)
        self.zsets: Dict[str, Dict[str, float]] = defaultdict(dict)
        self.sets: Dict[str, set] = defaultdict(set)
        self.lists: Dict[str, List[str]] = defaultdict(list)
        # Bumped on every write to a sorted set, checked by watching pipelines
        self.versions: Dict[str, int] = defaultdict(int)
        # Called with the queued command names before a pipeline executes
        self.on_execute: Optional[Callable[[List[str]], None]] = None
        self.down = False
        self.closed = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def ping(self) -> bool:
        self._check()
        return True

    async def hset(self, key: str, field: str, value: str) -> int:
        self._check()
        created = field not in self.hashes[key]
        self.hashes[key][field] = value
        return int(created)

    async def hget(self, key: str, field: str) -> Optional[str]:
        self._check()
        return self.hashes[key].get(field)

    async def hmget(self, key: str, fields: List[str]) -> List[Optional[str]]:
        self._check()
        return [self.hashes[key].get(field) for field in fields]

    async def hdel(self, key: str, field: str) -> int:
        self._check()
        return int(self.hashes[key].pop(field, None) is not None)

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self._check()
        added = len(set(mapping) - set(self.zsets[key]))
        self.zsets[key].update(mapping)
        self.versions[key] += 1
        return added

    async def zrem(self, key: str, member: str) -> int:
        self._check()
        removed = self.zsets[key].pop(member, None) is not None
        self.versions[key] += 1
        return int(removed)

    def _sorted_members(self, key: str) -> List[str]:
        return [member for member, _ in sorted(self.zsets[key].items(), key=lambda item: (item[1], item[0]))]

    async def zrangebyscore(
        self, key: str, min: Any, max: Any, start: Optional[int] = None, num: Optional[int] = None
    ) -> List[str]:
        self._check()
        low, high = float(min), float(max)
        members = [m for m in self._sorted_members(key) if low <= self.zsets[key][m] <= high]
        if start is not None and num is not None:
            members = members[start : start + num]
        return members

    async def zrange(self, key: str, start: int, end: int) -> List[str]:
        self._check()
        members = self._sorted_members(key)
        return members[start:] if end == -1 else members[start : end + 1]

    async def zcard(self, key: str) -> int:
        self._check()
        return len(self.zsets[key])

    async def sadd(self, key: str, member: str) -> int:
        self._check()
        added = member not in self.sets[key]
        self.sets[key].add(member)
        return int(added)

    async def srem(self, key: str, member: str) -> int:
        self._check()
        removed = member in self.sets[key]
        self.sets[key].discard(member)
        return int(removed)

    async def smembers(self, key: str) -> set:
        self._check()
        return set(self.sets[key])

    async def scard(self, key: str) -> int:
        self._check()
        return len(self.sets[key])

    async def lpush(self, key: str, value: str) -> int:
        self._check()
        self.lists[key].insert(0, value)
        return len(self.lists[key])

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        self._check()
        values = self.lists[key]
        return values[start:] if end == -1 else values[start : end + 1]

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        self._check()
        values = self.lists[key]
        self.lists[key] = values[start:] if end == -1 else values[start : end + 1]
        return True

    async def llen(self, key: str) -> int:
        self._check()
        return len(self.lists[key])

    async def aclose(self) -> None:
        self.closed = True
