"""Tests for ranking, client selection, search limits and acquisition."""

from typing import Any

import pytest

from snatcharr.catalog import CatalogEntry, InMemoryCatalog, MediaType
from snatcharr.clients.registry import ConfiguredClient
from snatcharr.config import ClientConfig, ClientType, Config, SearchConfig
from snatcharr.dispatch import (
    Acquirer,
    Dispatcher,
    SearchBudget,
    quality_score,
    rank_results,
    seeder_score,
)
from snatcharr.errors import ErrorKind, Result
from snatcharr.health import HealthCache, HealthTarget
from snatcharr.models.common import DownloadProtocol, PayloadKind, SearchResult
from snatcharr.parser import parse

MAGNET = "magnet:?xt=urn:btih:abcdef0123456789abcdef0123456789abcdef01"


class FakeAdapter:
    """Adapter answering ``add`` from a list of prepared results."""

    def __init__(self, *results: Result[str]) -> None:
        self.results = list(results) or [Result.success("handle-1")]
        self.added: list[tuple[Any, dict[str, Any]]] = []

    async def add(self, config: ClientConfig, payload: Any, **options: Any) -> Result[str]:
        self.added.append((payload, options))
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def _client(
    client_id: str,
    client_type: ClientType,
    *results: Result[str],
    priority: int = 1,
    enabled: bool = True,
) -> ConfiguredClient:
    config = ClientConfig(
        id=client_id,
        name=client_id,
        type=client_type,
        host="localhost",
        port=1,
        priority=priority,
        enabled=enabled,
    )
    return ConfiguredClient(config, FakeAdapter(*results))  # type: ignore[arg-type]


def _release(title: str, seeders: int = 10, **kwargs: Any) -> SearchResult:
    kwargs.setdefault("magnet_url", MAGNET)
    return SearchResult(title=title, indexer="test", seeders=seeders, **kwargs)


class TestRanking:
    """Tests for quality and ranking scores."""

    def test_quality_score_sums_attributes(self) -> None:
        """Should add resolution, source and codec scores."""
        assert quality_score(parse("The.Matrix.1999.1080p.BluRay.x264-GROUP")) == 1350
        assert quality_score(parse("The.Matrix.1999.2160p.BluRay.x265-GROUP")) == 1600

    def test_quality_score_unknown_attributes(self) -> None:
        """Should score names without technical tags as zero."""
        assert quality_score(parse("random_file_name")) == 0

    def test_seeder_score_logarithmic(self) -> None:
        """Should score seeders on a log scale."""
        assert seeder_score(0) == 0.0
        assert seeder_score(10) == pytest.approx(100.0)
        assert seeder_score(100) == pytest.approx(200.0)

    def test_quality_outweighs_seeders(self) -> None:
        """Should rank a better release above a better seeded one."""
        popular = _release("Movie.2020.720p.HDTV.x264-GRP", seeders=1000)
        sharp = _release("Movie.2020.2160p.WEB-DL.x265-GRP", seeders=5)

        assert rank_results([popular, sharp]) == [sharp, popular]

    def test_ties_keep_input_order(self) -> None:
        """Should keep equally scored results in their original order."""
        first = _release("Movie.2020.1080p.WEB-DL.x264-AAA")
        second = _release("Movie.2020.1080p.WEB-DL.x264-BBB")

        assert rank_results([first, second]) == [first, second]


class TestDispatcherCandidates:
    """Tests for client selection."""

    def test_protocol_and_priority(self) -> None:
        """Should keep enabled clients for the protocol, lowest priority value first."""
        qbit = _client("qbit", ClientType.BITTORRENT_REST_SSL, priority=2)
        sab = _client("sab", ClientType.NZB_REST_APIKEY, priority=1)
        web = _client("web", ClientType.GENERIC_HTTP, priority=3)
        off = _client("off", ClientType.BITTORRENT_RPC_CSRF, priority=0, enabled=False)
        dispatcher = Dispatcher([web, off, sab, qbit])

        assert [c.id for c in dispatcher.candidates(DownloadProtocol.TORRENT)] == ["qbit", "web"]
        assert [c.id for c in dispatcher.candidates(DownloadProtocol.NZB)] == ["sab", "web"]

    @pytest.mark.asyncio
    async def test_unhealthy_clients_skipped(self) -> None:
        """Should leave out clients whose last health check failed."""
        down = _client("down", ClientType.BITTORRENT_REST_SSL, priority=1)
        up = _client("up", ClientType.BITTORRENT_RPC_CSRF, priority=2)

        async def refused() -> Result[dict[str, Any]]:
            return Result.fail(ErrorKind.CONNECTION_FAILED, "refused")

        health = HealthCache([HealthTarget("down", "down", refused)])
        await health.check_health("down")
        dispatcher = Dispatcher([down, up], health)

        assert [c.id for c in dispatcher.candidates(DownloadProtocol.TORRENT)] == ["up"]

    def test_select_client_none_available(self) -> None:
        """Should report no_clients_available when nothing qualifies."""
        dispatcher = Dispatcher([_client("qbit", ClientType.BITTORRENT_REST_SSL)])

        result = dispatcher.select_client(DownloadProtocol.NZB)

        assert result.kind == ErrorKind.NO_CLIENTS_AVAILABLE

    def test_select_client(self) -> None:
        """Should pick the highest-priority candidate."""
        dispatcher = Dispatcher(
            [
                _client("b", ClientType.BITTORRENT_REST_SSL, priority=5),
                _client("a", ClientType.BITTORRENT_REST_SSL, priority=1),
            ]
        )

        assert dispatcher.select_client(DownloadProtocol.TORRENT).unwrap().id == "a"


class TestDispatch:
    """Tests for handing releases to clients."""

    @pytest.mark.asyncio
    async def test_dispatch_to_first_client(self) -> None:
        """Should send the magnet with the requested options."""
        client = _client("qbit", ClientType.BITTORRENT_REST_SSL, Result.success("abc"))
        dispatcher = Dispatcher([client])

        result = await dispatcher.dispatch(_release("Movie.2020.1080p"), category="movies")

        transfer = result.unwrap()
        assert transfer.client_id == "qbit"
        assert transfer.handle == "abc"
        payload, options = client.adapter.added[0]  # type: ignore[attr-defined]
        assert payload.kind == PayloadKind.MAGNET
        assert options == {"category": "movies", "paused": False}

    @pytest.mark.asyncio
    async def test_falls_back_on_client_failure(self) -> None:
        """Should try the next client when one is unreachable."""
        broken = _client(
            "broken",
            ClientType.BITTORRENT_REST_SSL,
            Result.fail(ErrorKind.CONNECTION_FAILED, "refused"),
            priority=1,
        )
        working = _client("working", ClientType.BITTORRENT_RPC_CSRF, priority=2)

        result = await Dispatcher([broken, working]).dispatch(_release("Movie.2020.1080p"))

        assert result.unwrap().client_id == "working"

    @pytest.mark.asyncio
    async def test_release_failure_stops(self) -> None:
        """Should not offer a duplicate release to other clients."""
        first = _client(
            "first",
            ClientType.BITTORRENT_REST_SSL,
            Result.fail(ErrorKind.DUPLICATE_TORRENT, "exists"),
            priority=1,
        )
        second = _client("second", ClientType.BITTORRENT_RPC_CSRF, priority=2)

        result = await Dispatcher([first, second]).dispatch(_release("Movie.2020.1080p"))

        assert result.kind == ErrorKind.DUPLICATE_TORRENT
        assert second.adapter.added == []  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_all_clients_fail(self) -> None:
        """Should return the last client's failure."""
        first = _client(
            "first",
            ClientType.BITTORRENT_REST_SSL,
            Result.fail(ErrorKind.CONNECTION_FAILED, "refused"),
        )
        second = _client(
            "second",
            ClientType.BITTORRENT_RPC_CSRF,
            Result.fail(ErrorKind.TIMEOUT, "slow"),
        )

        result = await Dispatcher([first, second]).dispatch(_release("Movie.2020.1080p"))

        assert result.kind == ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_no_download_link(self) -> None:
        """Should reject results without a link."""
        dispatcher = Dispatcher([_client("qbit", ClientType.BITTORRENT_REST_SSL)])

        result = await dispatcher.dispatch(_release("Movie.2020.1080p", magnet_url=None))

        assert result.kind == ErrorKind.INVALID_TORRENT

    @pytest.mark.asyncio
    async def test_no_client_for_protocol(self) -> None:
        """Should report no_clients_available for NZB releases without NZB clients."""
        dispatcher = Dispatcher([_client("qbit", ClientType.BITTORRENT_REST_SSL)])
        release = _release(
            "Movie.2020.1080p", magnet_url=None, download_url="http://indexer/get/1.nzb"
        )

        result = await dispatcher.dispatch(release)

        assert result.kind == ErrorKind.NO_CLIENTS_AVAILABLE


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestSearchBudget:
    """Tests for search rate limits."""

    @pytest.mark.asyncio
    async def test_delay_after_first_search(self) -> None:
        """Should wait the configured delay before every search but the first."""
        sleep = FakeSleep()
        budget = SearchBudget(SearchConfig(search_delay=2.0), sleep=sleep)

        assert await budget.acquire("1")
        assert await budget.acquire("2")
        assert await budget.acquire("3")

        assert sleep.delays == [2.0, 2.0]
        assert budget.used == 3

    @pytest.mark.asyncio
    async def test_per_entry_limit(self) -> None:
        """Should stop searching an entry after its limit."""
        budget = SearchBudget(
            SearchConfig(max_searches_per_entry=2, search_delay=0), sleep=FakeSleep()
        )

        assert await budget.acquire("1")
        assert await budget.acquire("1")
        assert not await budget.acquire("1")
        assert await budget.acquire("2")

    @pytest.mark.asyncio
    async def test_per_season_limit(self) -> None:
        """Should limit searches per season separately from the entry."""
        budget = SearchBudget(
            SearchConfig(max_searches_per_season=1, search_delay=0), sleep=FakeSleep()
        )

        assert await budget.acquire("show", season=1)
        assert not await budget.acquire("show", season=1)
        assert await budget.acquire("show", season=2)

    @pytest.mark.asyncio
    async def test_run_limit(self) -> None:
        """Should stop all searches once the run limit is used up, without waiting."""
        sleep = FakeSleep()
        budget = SearchBudget(
            SearchConfig(max_searches_per_run=2, search_delay=1.0), sleep=sleep
        )

        await budget.acquire("1")
        await budget.acquire("2")

        assert not await budget.acquire("3")
        assert budget.remaining == 0
        assert sleep.delays == [1.0]


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        [CatalogEntry(id=1, type=MediaType.MOVIE, title="The Matrix", year=1999, tmdb_id=603)]
    )


class TestAcquirer:
    """Tests for the parse, match and dispatch pipeline."""

    @pytest.mark.asyncio
    async def test_skips_unmatched_and_dispatches_best_match(
        self, catalog: InMemoryCatalog
    ) -> None:
        """Should pass over releases missing from the library."""
        stranger = _release("Unknown.Movie.2010.2160p.BluRay.x265-GRP")
        wanted = _release("The.Matrix.1999.1080p.BluRay.x264-GROUP")
        acquirer = Acquirer(Dispatcher([_client("qbit", ClientType.BITTORRENT_REST_SSL)]))

        outcome = await acquirer.acquire([wanted, stranger], catalog)

        assert outcome.acquired
        assert outcome.result is wanted
        assert outcome.match is not None
        assert outcome.match.catalog_entry.id == 1
        assert len(outcome.skipped) == 1
        assert outcome.skipped[0][0] == stranger.title
        assert outcome.skipped[0][1].startswith("no_match_found")

    @pytest.mark.asyncio
    async def test_quality_floor(self, catalog: InMemoryCatalog) -> None:
        """Should skip releases below the minimum quality score."""
        low = _release("The.Matrix.1999.480p.DVDRip.XviD-GRP", seeders=500)
        acquirer = Acquirer(
            Dispatcher([_client("qbit", ClientType.BITTORRENT_REST_SSL)]), min_quality_score=1000
        )

        outcome = await acquirer.acquire([low], catalog)

        assert not outcome.acquired
        assert outcome.skipped == [(low.title, "quality score 470 below 1000")]

    @pytest.mark.asyncio
    async def test_duplicate_moves_to_next_release(self, catalog: InMemoryCatalog) -> None:
        """Should try the next release when the client already has one."""
        client = _client(
            "qbit",
            ClientType.BITTORRENT_REST_SSL,
            Result.fail(ErrorKind.DUPLICATE_TORRENT, "exists"),
            Result.success("second"),
        )
        best = _release("The.Matrix.1999.1080p.BluRay.x264-GROUP")
        fallback = _release("The.Matrix.1999.720p.BluRay.x264-GROUP")

        outcome = await Acquirer(Dispatcher([client])).acquire([fallback, best], catalog)

        assert outcome.result is fallback
        assert outcome.transfer is not None
        assert outcome.transfer.handle == "second"

    @pytest.mark.asyncio
    async def test_stops_without_clients(self, catalog: InMemoryCatalog) -> None:
        """Should give up when no client can take any release."""
        outcome = await Acquirer(Dispatcher([])).acquire(
            [_release("The.Matrix.1999.1080p.BluRay.x264-GROUP")], catalog
        )

        assert not outcome.acquired
        assert outcome.failure is not None
        assert outcome.failure.kind == ErrorKind.NO_CLIENTS_AVAILABLE

    @pytest.mark.asyncio
    async def test_from_config_uses_matching_settings(self, catalog: InMemoryCatalog) -> None:
        """Should take the threshold and quality floor from configuration."""
        config = Config()
        config.matching.confidence_threshold = 0.99
        config.search.min_quality_score = 100

        acquirer = Acquirer.from_config(config, Dispatcher([]))

        assert acquirer.options.confidence_threshold == 0.99
        assert acquirer.min_quality_score == 100
