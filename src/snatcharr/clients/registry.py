"""Lookup table from client type tag to adapter, and configured client bindings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from snatcharr.clients.http import HttpApiClient
from snatcharr.clients.nzbget import NzbgetClient
from snatcharr.clients.qbittorrent import QBittorrentClient
from snatcharr.clients.sabnzbd import SabnzbdClient
from snatcharr.clients.transmission import TransmissionClient
from snatcharr.config import ClientConfig, ClientType, ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from snatcharr.clients.base import BaseDownloadClient
    from snatcharr.errors import Result
    from snatcharr.models.common import ListFilter, Payload, TransferStatus


@dataclass(frozen=True, eq=False)
class ConfiguredClient:
    """A client configuration paired with the adapter that speaks its protocol."""

    config: ClientConfig
    adapter: BaseDownloadClient

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    async def test_connection(self) -> Result[dict[str, Any]]:
        return await self.adapter.test_connection(self.config)

    async def add(self, payload: Payload, **options: Any) -> Result[str]:
        return await self.adapter.add(self.config, payload, **options)

    async def get_status(self, handle: Any) -> Result[TransferStatus]:
        return await self.adapter.get_status(self.config, handle)

    async def list_transfers(
        self, *, status_filter: ListFilter | None = None, ids: Iterable[Any] | None = None
    ) -> Result[list[TransferStatus]]:
        return await self.adapter.list_transfers(self.config, status_filter=status_filter, ids=ids)

    async def remove(self, handle: Any, *, delete_files: bool = False) -> Result[None]:
        return await self.adapter.remove(self.config, handle, delete_files=delete_files)

    async def pause(self, handle: Any) -> Result[None]:
        return await self.adapter.pause(self.config, handle)

    async def resume(self, handle: Any) -> Result[None]:
        return await self.adapter.resume(self.config, handle)


class ClientRegistry:
    """Maps each :class:`ClientType` to one adapter instance."""

    def __init__(self, adapters: dict[ClientType, BaseDownloadClient] | None = None) -> None:
        self._adapters: dict[ClientType, BaseDownloadClient] = dict(adapters or {})

    def register(self, client_type: ClientType, adapter: BaseDownloadClient) -> None:
        self._adapters[client_type] = adapter

    def get(self, client_type: ClientType) -> BaseDownloadClient:
        """Get the adapter for a type tag.

        Raises:
            ConfigurationError: If no adapter is registered for the tag
        """
        try:
            return self._adapters[client_type]
        except KeyError:
            raise ConfigurationError(
                f"No adapter registered for client type {client_type.value!r}"
            ) from None

    def bind(self, configs: Iterable[ClientConfig]) -> list[ConfiguredClient]:
        """Resolve the adapter for every configured client.

        Raises:
            ConfigurationError: If a client's type has no adapter
        """
        return [ConfiguredClient(config, self.get(config.type)) for config in configs]


def default_registry() -> ClientRegistry:
    """Registry with the built-in adapter for every client type."""
    return ClientRegistry(
        {
            ClientType.BITTORRENT_REST_SSL: QBittorrentClient(),
            ClientType.BITTORRENT_RPC_CSRF: TransmissionClient(),
            ClientType.NZB_JSON_RPC: NzbgetClient(),
            ClientType.NZB_REST_APIKEY: SabnzbdClient(),
            ClientType.GENERIC_HTTP: HttpApiClient(),
        }
    )
