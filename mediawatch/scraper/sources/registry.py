"""
Source registry: the authoritative set of crawl targets and their liveness.

The registry owns its map of sources. Liveness is decided by a probe; probe
failures only flip the ``active`` flag and are logged, they never propagate.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ...schema.source import Source
from ..core.exceptions import ConfigError, ValidationError
from ..utils.logging import ScrapeLoggerAdapter, get_logger
from .probe import ProbeResult

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class LivenessProbe(Protocol):
    async def check(self, url: str) -> ProbeResult: ...


class SweepReport(BaseModel):
    """Summary of one validation sweep"""

    checked: List[str] = []
    activated: List[str] = []
    deactivated: List[str] = []
    skipped: List[str] = []


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceRegistry:
    """
    Encapsulated registry of crawl sources.

    Mutated by the validation sweep and by explicit add/update/remove calls;
    read by the scheduler through ``active_sources()``.
    """

    def __init__(self, probe: LivenessProbe, clock: Optional[Clock] = None):
        self.probe = probe
        self._clock = clock or _utcnow
        self._sources: Dict[str, Source] = {}
        self._lock = asyncio.Lock()
        self._events = ScrapeLoggerAdapter(get_logger(__name__), component="source_registry")

        self.stats: Dict[str, int] = {
            "sweeps": 0,
            "probes": 0,
            "probe_failures": 0,
        }
        self.last_sweep_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    def get(self, source_id: str) -> Optional[Source]:
        source = self._sources.get(source_id)
        return source.model_copy() if source else None

    def load(self, initial_sources: Iterable[Union[Source, Mapping[str, Any]]]) -> int:
        """
        Seed the registry, replacing anything loaded before.

        Args:
            initial_sources: Source objects or raw mappings

        Returns:
            Number of sources loaded

        Raises:
            ConfigError: If the input is not a sequence, an entry is invalid, or ids repeat
        """
        if isinstance(initial_sources, (str, bytes, Mapping)) or not isinstance(initial_sources, Iterable):
            raise ConfigError(f"Seed sources must be a list, got {type(initial_sources).__name__}")

        loaded: Dict[str, Source] = {}
        errors: List[str] = []

        for index, entry in enumerate(initial_sources):
            try:
                source = entry.model_copy() if isinstance(entry, Source) else Source.model_validate(entry)
            except PydanticValidationError as e:
                errors.append(f"source #{index}: {e.errors()[0]['msg']}")
                continue

            if source.id in loaded:
                errors.append(f"source #{index}: duplicate id {source.id!r}")
                continue
            loaded[source.id] = source

        if errors:
            raise ConfigError(f"Malformed seed sources: {'; '.join(errors)}", errors)

        self._sources = loaded
        logger.info(
            f"Loaded {len(loaded)} sources",
            extra={"active": sum(1 for s in loaded.values() if s.active)},
        )
        return len(loaded)

    async def _validate(self, source: Source) -> ProbeResult:
        """
        Check that ``source`` answers its liveness probe.

        Unexpected exceptions from the probe count as a failed check.

        Raises:
            ValidationError: If the source is not alive
        """
        self.stats["probes"] += 1
        try:
            result = await self.probe.check(source.url)
        except Exception as e:
            result = ProbeResult(error=f"probe raised {type(e).__name__}: {e}")

        if not result.is_alive:
            self.stats["probe_failures"] += 1
            raise ValidationError(source.id, source.url, result.describe())
        return result

    async def validate_sweep(self) -> SweepReport:
        """
        Re-probe every source that is due; leave the others untouched.

        Returns:
            SweepReport listing what changed
        """
        now = self._clock()
        report = SweepReport()

        due = [s for s in self._sources.values() if s.is_due(now)]
        report.skipped = sorted(s.id for s in self._sources.values() if not s.is_due(now))

        outcomes = await asyncio.gather(*(self._validate(s) for s in due), return_exceptions=True)

        async with self._lock:
            for probed, outcome in zip(due, outcomes):
                current = self._sources.get(probed.id)
                if current is None or current.url != probed.url:
                    # removed or re-pointed while the check was in flight
                    continue

                report.checked.append(current.id)
                was_active = current.active

                if isinstance(outcome, ValidationError):
                    self._sources[current.id] = current.model_copy(update={"active": False})
                    if was_active:
                        report.deactivated.append(current.id)
                    self._events.log_source_deactivated(current.id, current.url, outcome.reason, was_active=was_active)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    self._sources[current.id] = current.model_copy(update={"active": True, "last_validated": now})
                    if not was_active:
                        report.activated.append(current.id)
                        self._events.log_source_activated(current.id, current.url, outcome.status_code)

        self.stats["sweeps"] += 1
        self.last_sweep_at = now
        logger.info(
            f"Validation sweep checked {len(report.checked)} sources",
            extra={
                "activated": report.activated,
                "deactivated": report.deactivated,
                "skipped": len(report.skipped),
            },
        )
        return report

    async def add_source(self, source: Union[Source, Mapping[str, Any]]) -> bool:
        """
        Register a new source only if it validates and its probe succeeds.

        Returns:
            True if the source was registered and activated
        """
        try:
            candidate = source.model_copy() if isinstance(source, Source) else Source.model_validate(source)
        except PydanticValidationError as e:
            logger.warning(f"Rejected malformed source: {e.errors()[0]['msg']}")
            return False

        if candidate.id in self._sources:
            logger.warning(f"Source {candidate.id} already registered; use update_source")
            return False

        try:
            await self._validate(candidate)
        except ValidationError as e:
            self._events.log_source_deactivated(candidate.id, candidate.url, e.reason, registered=False)
            return False

        async with self._lock:
            if candidate.id in self._sources:
                return False
            self._sources[candidate.id] = candidate.model_copy(
                update={"active": True, "last_validated": self._clock()}
            )

        logger.info(f"Added new source: {candidate.id}", extra={"source_id": candidate.id, "url": candidate.url})
        return True

    async def update_source(self, source_id: str, patch: Mapping[str, Any]) -> bool:
        """
        Merge ``patch`` into an existing source and commit it only if the result probes alive.

        On any failure the prior state is kept unchanged.
        """
        existing = self._sources.get(source_id)
        if existing is None:
            logger.warning(f"Cannot update unknown source {source_id}")
            return False

        if "id" in patch and patch["id"] != source_id:
            logger.warning(f"Refusing to change id of source {source_id}")
            return False

        merged = {**existing.model_dump(), **dict(patch)}
        try:
            candidate = Source.model_validate(merged)
        except PydanticValidationError as e:
            logger.warning(f"Rejected update for {source_id}: {e.errors()[0]['msg']}")
            return False

        try:
            await self._validate(candidate)
        except ValidationError as e:
            logger.warning(
                f"Discarded update for {source_id}: probe failed",
                extra={"source_id": source_id, "url": candidate.url, "reason": e.reason},
            )
            return False

        async with self._lock:
            if source_id not in self._sources:
                return False
            self._sources[source_id] = candidate.model_copy(update={"active": True, "last_validated": self._clock()})

        logger.info(f"Updated source: {source_id}", extra={"source_id": source_id})
        return True

    async def remove_source(self, source_id: str) -> bool:
        """Unconditionally remove a source. Returns whether it existed."""
        async with self._lock:
            removed = self._sources.pop(source_id, None)

        if removed is None:
            return False

        logger.info(f"Removed source: {source_id}", extra={"source_id": source_id, "url": removed.url})
        return True

    def active_sources(self) -> List[Source]:
        """Snapshot of active sources ordered by id"""
        return [self._sources[sid].model_copy() for sid in sorted(self._sources) if self._sources[sid].active]

    def all_sources(self) -> List[Source]:
        """Snapshot of every registered source ordered by id"""
        return [self._sources[sid].model_copy() for sid in sorted(self._sources)]

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "registered": len(self._sources),
            "active": sum(1 for s in self._sources.values() if s.active),
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
        }
