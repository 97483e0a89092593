"""Tests for the client type registry."""

import pytest
import respx
from httpx import Response

from snatcharr.clients import (
    ClientRegistry,
    HttpApiClient,
    NzbgetClient,
    QBittorrentClient,
    SabnzbdClient,
    TransmissionClient,
    default_registry,
)
from snatcharr.config import ClientConfig, ClientType, ConfigurationError
from snatcharr.models.common import DownloadProtocol


class TestClientRegistry:
    """Tests for adapter lookup."""

    @pytest.mark.parametrize(
        ("client_type", "adapter_class"),
        [
            (ClientType.BITTORRENT_REST_SSL, QBittorrentClient),
            (ClientType.BITTORRENT_RPC_CSRF, TransmissionClient),
            (ClientType.NZB_JSON_RPC, NzbgetClient),
            (ClientType.NZB_REST_APIKEY, SabnzbdClient),
            (ClientType.GENERIC_HTTP, HttpApiClient),
        ],
    )
    def test_default_adapters(self, client_type: ClientType, adapter_class: type) -> None:
        """Should have a built-in adapter for every client type."""
        assert isinstance(default_registry().get(client_type), adapter_class)

    def test_missing_adapter(self) -> None:
        """Should raise ConfigurationError for unregistered types."""
        with pytest.raises(ConfigurationError, match="generic_http"):
            ClientRegistry().get(ClientType.GENERIC_HTTP)

    def test_adapters_shared_between_clients(self) -> None:
        """Should reuse one adapter instance for clients of the same type."""
        configs = [
            ClientConfig(id="a", name="a", type=ClientType.BITTORRENT_RPC_CSRF, host="h", port=1),
            ClientConfig(id="b", name="b", type=ClientType.BITTORRENT_RPC_CSRF, host="h", port=2),
        ]

        bound = default_registry().bind(configs)

        assert [c.id for c in bound] == ["a", "b"]
        assert bound[0].adapter is bound[1].adapter

    def test_protocols(self) -> None:
        """Should map each client type to the transport it fetches."""
        assert ClientType.BITTORRENT_REST_SSL.protocol == DownloadProtocol.TORRENT
        assert ClientType.NZB_REST_APIKEY.protocol == DownloadProtocol.NZB
        assert ClientType.GENERIC_HTTP.protocol is None


class TestConfiguredClient:
    """Tests for the config-bound client wrapper."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_delegates_with_its_config(self) -> None:
        """Should call the adapter with the bound configuration."""
        route = respx.get("http://box:8000/api/status").mock(
            return_value=Response(200, json={"version": "2"})
        )
        config = ClientConfig(
            id="web", name="Web", type=ClientType.GENERIC_HTTP, host="box", port=8000, api_key="k"
        )
        client = default_registry().bind([config])[0]

        result = await client.test_connection()

        assert result.unwrap() == {"version": "2"}
        assert client.name == "Web"
        assert route.call_count == 1
