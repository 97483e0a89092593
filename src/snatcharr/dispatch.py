"""Turn search results into transfers on a healthy download client.

The pipeline is: rank results, parse each title, match it against the
library, then hand the first acceptable one to the highest-priority client
that speaks its protocol and is not known to be down.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from snatcharr.errors import ErrorKind, Failure, Result
from snatcharr.matcher import MatchOptions, MatchResult, find_match
from snatcharr.parser import ReleaseDescriptor, parse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from snatcharr.catalog import Catalog
    from snatcharr.clients.registry import ConfiguredClient
    from snatcharr.config import Config, SearchConfig
    from snatcharr.health import HealthCache
    from snatcharr.models.common import DownloadProtocol, SearchResult

logger = logging.getLogger(__name__)

# Scores per parsed attribute; a release's quality score is their sum.
RESOLUTION_SCORES = {
    "4320p": 1100,
    "2160p": 1000,
    "1080p": 800,
    "720p": 600,
    "576p": 350,
    "480p": 300,
}
SOURCE_SCORES = {
    "REMUX": 500,
    "BluRay": 450,
    "WEB-DL": 400,
    "WEBRip": 350,
    "WEB": 350,
    "BDRip": 300,
    "BRRip": 280,
    "HDTV": 250,
    "DVDRip": 150,
    "DVD": 100,
}
CODEC_SCORES = {
    "x265": 150,
    "AV1": 150,
    "x264": 100,
    "VP9": 80,
    "XviD": 20,
    "DivX": 20,
}
MAX_QUALITY_SCORE = 2000

QUALITY_WEIGHT = 0.6
SEEDER_WEIGHT = 0.3
HEALTH_WEIGHT = 0.1

# Failures that only concern one release; the pipeline moves on to the next.
_RELEASE_FAILURES = frozenset({ErrorKind.DUPLICATE_TORRENT, ErrorKind.INVALID_TORRENT})


def quality_score(descriptor: ReleaseDescriptor) -> int:
    """Score a parsed release by resolution, source and codec, capped at 2000."""
    score = (
        RESOLUTION_SCORES.get(descriptor.quality or "", 0)
        + SOURCE_SCORES.get(descriptor.source or "", 0)
        + CODEC_SCORES.get(descriptor.codec or "", 0)
    )
    return min(score, MAX_QUALITY_SCORE)


def seeder_score(seeders: int) -> float:
    """Logarithmic seeder score: 10 seeders is 100, 100 is 200."""
    if seeders <= 0:
        return 0.0
    return math.log10(seeders) * 100


def ranking_score(result: SearchResult, descriptor: ReleaseDescriptor | None = None) -> float:
    """Weighted ranking score of a search result.

    Args:
        result: Search result to score
        descriptor: Already parsed title, parsed here when omitted

    Returns:
        Quality at 60%, seeders at 30% and swarm health at 10%
    """
    descriptor = descriptor or parse(result.title)
    return (
        quality_score(descriptor) * QUALITY_WEIGHT
        + seeder_score(result.seeders) * SEEDER_WEIGHT
        + result.health_score() * 100 * HEALTH_WEIGHT
    )


def rank_results(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Order results best first; equal scores keep their input order."""
    return sorted(results, key=ranking_score, reverse=True)


@dataclass(frozen=True)
class DispatchedTransfer:
    """A release accepted by a download client."""

    client_id: str
    client_name: str
    handle: str
    title: str


class Dispatcher:
    """Picks a download client for a release and hands the release over."""

    def __init__(
        self, clients: Iterable[ConfiguredClient], health: HealthCache | None = None
    ) -> None:
        self.clients = list(clients)
        self.health = health

    def candidates(self, protocol: DownloadProtocol) -> list[ConfiguredClient]:
        """Enabled clients able to fetch ``protocol``, best priority first.

        Clients whose last known health record is unhealthy are left out.
        Clients never checked are assumed reachable.
        """
        eligible = []
        for client in self.clients:
            config = client.config
            if not config.enabled:
                continue
            if config.type.protocol not in (None, protocol):
                continue
            if self.health is not None:
                record = self.health.last_known(client.id)
                if record is not None and not record.is_healthy:
                    logger.debug("Skipping unhealthy client %s", client.name)
                    continue
            eligible.append(client)
        return sorted(eligible, key=lambda c: c.config.priority)

    def select_client(self, protocol: DownloadProtocol) -> Result[ConfiguredClient]:
        candidates = self.candidates(protocol)
        if not candidates:
            return Result.fail(
                ErrorKind.NO_CLIENTS_AVAILABLE,
                f"No healthy enabled {protocol.value} client is configured",
                protocol=protocol.value,
            )
        return Result.success(candidates[0])

    async def dispatch(
        self,
        result: SearchResult,
        *,
        category: str | None = None,
        paused: bool = False,
    ) -> Result[DispatchedTransfer]:
        """Send a search result to the best available client.

        Clients are tried in priority order. A failure that concerns the
        release itself (duplicate, malformed payload) stops at once; a
        failure of the client moves on to the next candidate.

        Returns:
            A result holding the accepted transfer, or the last failure
        """
        payload = result.payload()
        if payload is None:
            return Result.fail(
                ErrorKind.INVALID_TORRENT, f"Search result '{result.title}' has no download link"
            )

        candidates = self.candidates(result.protocol)
        if not candidates:
            return Result.fail(
                ErrorKind.NO_CLIENTS_AVAILABLE,
                f"No healthy enabled {result.protocol.value} client is configured",
                protocol=result.protocol.value,
            )

        failures: list[Failure] = []
        for client in candidates:
            added = await client.add(payload, category=category, paused=paused)
            failure = added.failure
            if failure is None:
                logger.info("Sent %r to %s as %s", result.title, client.name, added.value)
                return Result.success(
                    DispatchedTransfer(client.id, client.name, str(added.value), result.title)
                )
            logger.warning("Client %s rejected %r: %s", client.name, result.title, failure)
            if failure.kind in _RELEASE_FAILURES:
                return Result.from_failure(failure)
            failures.append(failure)

        return Result.from_failure(failures[-1])


class SearchBudget:
    """Rate limits for automated searches.

    Counts searches in total, per catalog entry and per season, and spaces
    consecutive searches by the configured delay.
    """

    def __init__(
        self,
        config: SearchConfig,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._total = 0
        self._per_entry: Counter[str] = Counter()
        self._per_season: Counter[tuple[str, int]] = Counter()

    @property
    def used(self) -> int:
        return self._total

    @property
    def remaining(self) -> int:
        return max(0, self.config.max_searches_per_run - self._total)

    def allows(self, entry_id: str, season: int | None = None) -> bool:
        """Whether one more search for this entry (and season) fits the limits."""
        if self._total >= self.config.max_searches_per_run:
            return False
        if self._per_entry[entry_id] >= self.config.max_searches_per_entry:
            return False
        if season is not None:
            return self._per_season[(entry_id, season)] < self.config.max_searches_per_season
        return True

    def record(self, entry_id: str, season: int | None = None) -> None:
        self._total += 1
        self._per_entry[entry_id] += 1
        if season is not None:
            self._per_season[(entry_id, season)] += 1

    async def acquire(self, entry_id: str, season: int | None = None) -> bool:
        """Claim a search slot, waiting out the delay after the first search.

        Returns:
            False, without waiting, when a limit is reached
        """
        if not self.allows(entry_id, season):
            logger.info("Search limit reached for %s", entry_id)
            return False
        if self._total > 0 and self.config.search_delay > 0:
            await self._sleep(self.config.search_delay)
        self.record(entry_id, season)
        return True


@dataclass
class AcquisitionOutcome:
    """What happened to a batch of search results."""

    result: SearchResult | None = None
    descriptor: ReleaseDescriptor | None = None
    match: MatchResult | None = None
    transfer: DispatchedTransfer | None = None
    failure: Failure | None = None
    skipped: list[tuple[str, str]] = field(default_factory=list)

    @property
    def acquired(self) -> bool:
        return self.transfer is not None


class Acquirer:
    """Parse, match and dispatch the best acceptable search result."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        options: MatchOptions | None = None,
        min_quality_score: float = 0.0,
        category: str | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.options = options or MatchOptions()
        self.min_quality_score = min_quality_score
        self.category = category

    @classmethod
    def from_config(cls, config: Config, dispatcher: Dispatcher) -> Acquirer:
        return cls(
            dispatcher,
            options=MatchOptions(
                confidence_threshold=config.matching.confidence_threshold,
                monitored_only=config.matching.monitored_only,
                require_id_match=config.matching.require_id_match,
            ),
            min_quality_score=config.search.min_quality_score,
        )

    async def acquire(
        self, results: Iterable[SearchResult], catalog: Catalog
    ) -> AcquisitionOutcome:
        """Dispatch the best result that passes the quality floor and matches the library.

        Results are tried best first. Each rejected one is recorded in
        ``skipped`` with the reason. Processing stops at the first dispatched
        transfer, or at a failure that no other result could get past, such
        as no client being available.
        """
        outcome = AcquisitionOutcome()
        parsed = [(r, parse(r.title)) for r in results]
        parsed.sort(key=lambda pair: ranking_score(*pair), reverse=True)

        for result, descriptor in parsed:
            score = quality_score(descriptor)
            if score < self.min_quality_score:
                outcome.skipped.append(
                    (result.title, f"quality score {score} below {self.min_quality_score:g}")
                )
                continue

            matched = find_match(
                descriptor,
                catalog,
                self.options,
                tmdb_id=result.tmdb_id,
                imdb_id=result.imdb_id,
            )
            if not matched.ok:
                logger.warning("Skipping %r: %s", result.title, matched.failure)
                outcome.skipped.append((result.title, str(matched.failure)))
                continue

            sent = await self.dispatcher.dispatch(result, category=self.category)
            if sent.ok:
                outcome.result = result
                outcome.descriptor = descriptor
                outcome.match = matched.value
                outcome.transfer = sent.value
                return outcome

            outcome.skipped.append((result.title, str(sent.failure)))
            if sent.kind not in _RELEASE_FAILURES:
                outcome.failure = sent.failure
                return outcome

        return outcome
