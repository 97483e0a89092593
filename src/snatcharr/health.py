"""Cached reachability state for download clients and indexers.

A :class:`HealthCache` owns one record per target. Reads within the TTL are
served from memory; anything older triggers a live check. A background
scheduler re-checks every enabled target on a fixed interval, one task per
target, so a slow backend never holds up the others.

Checks never raise. A probe that fails, times out or throws is stored as
an ``unhealthy`` record carrying the error message.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Self

from cachetools import TTLCache

from snatcharr.errors import ErrorKind, Result
from snatcharr.indexers import probe_indexer

if TYPE_CHECKING:
    from collections.abc import Iterable

    from snatcharr.clients.registry import ConfiguredClient
    from snatcharr.config import HealthConfig, IndexerConfig

logger = logging.getLogger(__name__)

CLIENT_CACHE_TTL = 300.0
CLIENT_CHECK_INTERVAL = 120.0
INDEXER_CACHE_TTL = 600.0
INDEXER_CHECK_INTERVAL = 300.0
DEFAULT_CHECK_TIMEOUT = 30.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthRecord:
    """Outcome of the latest check of one target."""

    target_id: str
    status: HealthStatus
    checked_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "status": self.status.value,
            "checked_at": self.checked_at.isoformat(),
            "details": self.details,
            "error": self.error,
        }


Probe = Callable[[], Awaitable[Result[dict[str, Any]]]]


@dataclass(frozen=True)
class HealthTarget:
    """Something whose reachability is tracked."""

    id: str
    name: str
    probe: Probe
    enabled: bool = True


class HealthCache:
    """TTL cache of health records with a background refresh scheduler.

    The cache storage is created by :meth:`start` (or :meth:`initialize`) and
    dropped by :meth:`stop`. Checks made while it does not exist still run
    and return their record, which is just not cached.
    """

    def __init__(
        self,
        targets: Iterable[HealthTarget],
        *,
        ttl: float = CLIENT_CACHE_TTL,
        interval: float = CLIENT_CHECK_INTERVAL,
        check_timeout: float = DEFAULT_CHECK_TIMEOUT,
        name: str = "clients",
        timer: Callable[[], float] = time.monotonic,
        maxsize: int = 1024,
    ) -> None:
        """Initialize the cache.

        Args:
            targets: Targets to track
            ttl: Seconds a record is served from the cache
            interval: Seconds between background refresh rounds
            check_timeout: Seconds a single check may take before it counts as failed
            name: Label used in logs
            timer: Monotonic clock used for TTL expiry
            maxsize: Upper bound on cached records
        """
        self._targets: dict[str, HealthTarget] = {t.id: t for t in targets}
        self.ttl = ttl
        self.interval = interval
        self.check_timeout = check_timeout
        self.name = name
        self._timer = timer
        self._maxsize = maxsize

        self._cache: TTLCache[str, HealthRecord] | None = None
        self._last: dict[str, HealthRecord] = {}
        # Guards only the maps above; never held across a probe.
        self._lock = threading.Lock()
        self._scheduler: asyncio.Task[None] | None = None
        self._in_flight: dict[str, asyncio.Task[HealthRecord]] = {}

    @classmethod
    def for_clients(cls, clients: Iterable[ConfiguredClient], config: HealthConfig) -> Self:
        return cls(
            client_targets(clients),
            ttl=config.client_cache_ttl,
            interval=config.client_check_interval,
            check_timeout=config.check_timeout,
            name="clients",
        )

    @classmethod
    def for_indexers(cls, indexers: Iterable[IndexerConfig], config: HealthConfig) -> Self:
        return cls(
            indexer_targets(indexers),
            ttl=config.indexer_cache_ttl,
            interval=config.indexer_check_interval,
            check_timeout=config.check_timeout,
            name="indexers",
        )

    # --- Lifecycle ---

    def initialize(self) -> None:
        """Create the cache storage without starting the scheduler."""
        with self._lock:
            if self._cache is None:
                self._cache = TTLCache(maxsize=self._maxsize, ttl=self.ttl, timer=self._timer)

    @property
    def running(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    async def start(self) -> None:
        """Create the cache storage and start background refreshes."""
        self.initialize()
        if self.running:
            return
        self._scheduler = asyncio.create_task(
            self._run_scheduler(), name=f"health-scheduler-{self.name}"
        )
        logger.info(
            "Started %s health scheduler: %d targets, every %.0fs",
            self.name,
            len(self._targets),
            self.interval,
        )

    async def stop(self) -> None:
        """Stop background refreshes, cancel in-flight checks and drop the cache."""
        tasks = list(self._in_flight.values())
        if self._scheduler is not None:
            tasks.append(self._scheduler)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._scheduler = None
        self._in_flight.clear()
        with self._lock:
            self._cache = None
        logger.info("Stopped %s health scheduler", self.name)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    # --- Targets ---

    def add_target(self, target: HealthTarget) -> None:
        self._targets[target.id] = target

    def targets(self, *, enabled_only: bool = False) -> list[HealthTarget]:
        return [t for t in self._targets.values() if t.enabled or not enabled_only]

    # --- Reads ---

    def cached(self, target_id: str) -> HealthRecord | None:
        """Record younger than the TTL, or None."""
        with self._lock:
            if self._cache is None:
                return None
            return self._cache.get(target_id)

    def last_known(self, target_id: str) -> HealthRecord | None:
        """Latest record regardless of age."""
        with self._lock:
            return self._last.get(target_id)

    def records(self) -> dict[str, HealthRecord]:
        """Latest record for every target checked so far."""
        with self._lock:
            return dict(self._last)

    async def check_health(self, target_id: str, *, force: bool = False) -> Result[HealthRecord]:
        """Get a target's health, from cache when fresh.

        Args:
            target_id: Client or indexer id
            force: Skip the cache and always check live

        Returns:
            A result holding the record, or a ``not_found`` failure for
            unknown targets
        """
        target = self._targets.get(target_id)
        if target is None:
            return Result.fail(ErrorKind.NOT_FOUND, f"No health target with id {target_id!r}")

        if not force:
            record = self.cached(target_id)
            if record is not None:
                logger.debug("Health cache hit for %s", target_id)
                return Result.success(record)

        return Result.success(await self._check(target))

    async def check_all(self, *, force: bool = False) -> dict[str, HealthRecord]:
        """Check every enabled target concurrently, using the cache unless forced."""
        targets = self.targets(enabled_only=True)
        results = await asyncio.gather(
            *(self.check_health(t.id, force=force) for t in targets)
        )
        return {t.id: r.unwrap() for t, r in zip(targets, results, strict=True)}

    async def refresh_all(self) -> list[HealthRecord]:
        """Run one live check of every enabled target and wait for all of them."""
        return list(
            await asyncio.gather(*(self._check(t) for t in self.targets(enabled_only=True)))
        )

    # --- Internals ---

    async def _check(self, target: HealthTarget) -> HealthRecord:
        try:
            result = await asyncio.wait_for(target.probe(), timeout=self.check_timeout)
        except TimeoutError:
            logger.warning("Health check for %s timed out", target.id)
            return self._commit(
                target.id,
                HealthStatus.UNHEALTHY,
                error=f"Health check timed out after {self.check_timeout:g}s",
            )
        except Exception as e:
            logger.warning("Health check for %s raised: %s", target.id, e)
            return self._commit(
                target.id, HealthStatus.UNHEALTHY, error=f"Health check exception: {e}"
            )

        failure = result.failure
        if failure is None:
            return self._commit(target.id, HealthStatus.HEALTHY, details=result.value or {})

        logger.info("%s %s is unhealthy: %s", self.name, target.id, failure)
        return self._commit(
            target.id,
            HealthStatus.UNHEALTHY,
            details={"kind": failure.kind.value},
            error=failure.message or failure.kind.value,
        )

    def _commit(
        self,
        target_id: str,
        status: HealthStatus,
        *,
        details: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> HealthRecord:
        """Stamp and store a record; timestamps strictly increase per target."""
        with self._lock:
            checked_at = datetime.now(UTC)
            previous = self._last.get(target_id)
            if previous is not None and checked_at <= previous.checked_at:
                checked_at = previous.checked_at + timedelta(microseconds=1)
            record = HealthRecord(target_id, status, checked_at, details or {}, error)
            self._last[target_id] = record
            if self._cache is None:
                logger.debug("Health cache not initialized, %s not cached", target_id)
            else:
                self._cache[target_id] = record
        return record

    async def _run_scheduler(self) -> None:
        while True:
            try:
                self._spawn_round()
            except Exception:
                logger.exception("Failed to schedule %s health checks", self.name)
            await asyncio.sleep(self.interval)

    def _spawn_round(self) -> None:
        """Start one check task per enabled target without waiting for them."""
        for target in self.targets(enabled_only=True):
            running = self._in_flight.get(target.id)
            if running is not None and not running.done():
                logger.debug("Health check for %s still running, skipping", target.id)
                continue
            task = asyncio.create_task(self._check(target), name=f"health-check-{target.id}")
            self._in_flight[target.id] = task
            task.add_done_callback(partial(self._forget, target.id))

    def _forget(self, target_id: str, task: asyncio.Task[HealthRecord]) -> None:
        if self._in_flight.get(target_id) is task:
            del self._in_flight[target_id]


def client_targets(clients: Iterable[ConfiguredClient]) -> list[HealthTarget]:
    """Health targets probing each download client with ``test_connection``."""
    return [
        HealthTarget(id=c.id, name=c.name, probe=c.test_connection, enabled=c.config.enabled)
        for c in clients
    ]


def indexer_targets(indexers: Iterable[IndexerConfig]) -> list[HealthTarget]:
    """Health targets probing each indexer's capability or status endpoint."""
    return [
        HealthTarget(id=i.id, name=i.name, probe=partial(probe_indexer, i), enabled=i.enabled)
        for i in indexers
    ]
