"""Tests for indexer reachability probes."""

import httpx
import pytest
import respx
from httpx import Response

from snatcharr.config import IndexerConfig
from snatcharr.errors import ErrorKind
from snatcharr.indexers import probe_indexer


class TestProbeIndexer:
    """Tests for probe_indexer."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_torznab_caps(self) -> None:
        """Should ask Torznab indexers for their capabilities with the API key."""
        route = respx.get(host="jackett", path="/api/v2.0/indexers/all/results/torznab/api").mock(
            return_value=Response(200, text="<caps><server title='Jackett'/></caps>")
        )
        config = IndexerConfig(
            id="jackett",
            name="Jackett",
            type="torznab",
            base_url="http://jackett:9117/api/v2.0/indexers/all/results/torznab/",
            api_key="key",
        )

        result = await probe_indexer(config)

        assert result.ok
        params = route.calls.last.request.url.params
        assert params["t"] == "caps"
        assert params["apikey"] == "key"

    @respx.mock
    @pytest.mark.asyncio
    async def test_torznab_error_body(self) -> None:
        """Should treat a Torznab error document as rejected credentials."""
        respx.get(host="indexer", path="/api").mock(
            return_value=Response(
                200, text='<error code="100" description="Incorrect user credentials"/>'
            )
        )
        config = IndexerConfig(
            id="idx", name="Indexer", type="newznab", base_url="http://indexer", api_key="bad"
        )

        result = await probe_indexer(config)

        assert result.kind == ErrorKind.AUTHENTICATION_FAILED

    @respx.mock
    @pytest.mark.asyncio
    async def test_prowlarr_status(self) -> None:
        """Should read the version from a Prowlarr-style status endpoint."""
        route = respx.get("http://prowlarr:9696/api/v1/system/status").mock(
            return_value=Response(200, json={"version": "1.12.2"})
        )
        config = IndexerConfig(
            id="prowlarr",
            name="Prowlarr",
            type="prowlarr",
            base_url="http://prowlarr:9696",
            api_key="key",
        )

        result = await probe_indexer(config)

        assert result.unwrap() == {"type": "prowlarr", "version": "1.12.2"}
        assert route.calls.last.request.headers["X-Api-Key"] == "key"

    @respx.mock
    @pytest.mark.asyncio
    async def test_unauthorized(self) -> None:
        """Should classify 401 answers as authentication failures."""
        respx.get("http://prowlarr:9696/api/v1/system/status").mock(return_value=Response(401))
        config = IndexerConfig(
            id="prowlarr", name="Prowlarr", type="prowlarr", base_url="http://prowlarr:9696"
        )

        result = await probe_indexer(config)

        assert result.kind == ErrorKind.AUTHENTICATION_FAILED

    @respx.mock
    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        """Should classify refused connections as connection_failed."""
        respx.get("http://prowlarr:9696/api/v1/system/status").mock(
            side_effect=httpx.ConnectError("Connection refused")
        )
        config = IndexerConfig(
            id="prowlarr", name="Prowlarr", type="prowlarr", base_url="http://prowlarr:9696"
        )

        result = await probe_indexer(config)

        assert result.kind == ErrorKind.CONNECTION_FAILED

    @respx.mock
    @pytest.mark.asyncio
    async def test_separate_connect_and_read_timeouts(self) -> None:
        """Should apply the connect and read timeouts independently."""
        route = respx.get("http://prowlarr:9696/api/v1/system/status").mock(
            return_value=Response(200, json={"version": "1.12.2"})
        )
        config = IndexerConfig(
            id="prowlarr",
            name="Prowlarr",
            type="prowlarr",
            base_url="http://prowlarr:9696",
            options={"timeout": 15, "connect_timeout": 2},
        )

        await probe_indexer(config)

        timeout = route.calls.last.request.extensions["timeout"]
        assert timeout["connect"] == 2.0
        assert timeout["read"] == 15.0
