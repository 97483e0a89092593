"""Download client adapters."""

from snatcharr.clients.base import BaseDownloadClient, ClientError
from snatcharr.clients.http import HttpApiClient
from snatcharr.clients.nzbget import NzbgetClient
from snatcharr.clients.qbittorrent import QBittorrentClient
from snatcharr.clients.registry import ClientRegistry, ConfiguredClient, default_registry
from snatcharr.clients.sabnzbd import SabnzbdClient
from snatcharr.clients.transmission import TransmissionClient

__all__ = [
    "BaseDownloadClient",
    "ClientError",
    "ClientRegistry",
    "ConfiguredClient",
    "HttpApiClient",
    "NzbgetClient",
    "QBittorrentClient",
    "SabnzbdClient",
    "TransmissionClient",
    "default_registry",
]
