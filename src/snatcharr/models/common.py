"""Models shared between indexers, download clients and dispatch."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from collections.abc import Iterable


class TransferState(str, Enum):
    """Normalized lifecycle state of a transfer across all backends."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class ListFilter(str, Enum):
    """Filters accepted by a download client's ``list`` operation."""

    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    PAUSED = "paused"
    COMPLETED = "completed"
    ACTIVE = "active"
    INACTIVE = "inactive"


class DownloadProtocol(str, Enum):
    """Transport family of a release and of the clients able to fetch it."""

    TORRENT = "torrent"
    NZB = "nzb"


class TransferStatus(BaseModel):
    """Status of one transfer as reported by a download client."""

    id: str
    name: str
    state: TransferState
    progress: float = 0.0
    download_speed: int = 0
    upload_speed: int = 0
    downloaded: int = 0
    uploaded: int = 0
    size: int = 0
    eta: int | None = None
    ratio: float | None = None
    save_path: str | None = None
    category: str | None = None
    added_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.state == TransferState.COMPLETED or self.progress >= 100.0

    @property
    def is_active(self) -> bool:
        return self.download_speed > 0 or self.upload_speed > 0


def apply_filter(
    statuses: Iterable[TransferStatus],
    status_filter: ListFilter | None = None,
    ids: Iterable[str] | None = None,
) -> list[TransferStatus]:
    """Filter transfer statuses the same way for every backend.

    Args:
        statuses: Statuses returned by a backend
        status_filter: Optional state filter
        ids: Optional handles to keep

    Returns:
        The statuses that pass both filters, in their original order
    """
    wanted = {str(i).lower() for i in ids} if ids is not None else None
    result = []
    for status in statuses:
        if wanted is not None and status.id.lower() not in wanted:
            continue
        if status_filter is not None and not _passes(status, status_filter):
            continue
        result.append(status)
    return result


def _passes(status: TransferStatus, status_filter: ListFilter) -> bool:
    if status_filter == ListFilter.COMPLETED:
        return status.is_complete
    if status_filter == ListFilter.ACTIVE:
        return status.is_active
    if status_filter == ListFilter.INACTIVE:
        return not status.is_active
    return status.state.value == status_filter.value


class PayloadKind(str, Enum):
    MAGNET = "magnet"
    FILE = "file"
    URL = "url"


@dataclass(frozen=True)
class Payload:
    """What to hand to a download client: a magnet link, raw file bytes, or a URL."""

    kind: PayloadKind
    data: str | bytes
    filename: str | None = None

    @classmethod
    def magnet(cls, link: str) -> Payload:
        return cls(PayloadKind.MAGNET, link)

    @classmethod
    def file(cls, content: bytes, filename: str | None = None) -> Payload:
        return cls(PayloadKind.FILE, content, filename)

    @classmethod
    def url(cls, url: str) -> Payload:
        return cls(PayloadKind.URL, url)

    @property
    def text(self) -> str:
        """The payload as text (magnet or URL)."""
        if isinstance(self.data, bytes):
            return self.data.decode("utf-8", errors="replace")
        return self.data

    @property
    def content(self) -> bytes:
        """The payload as bytes (file content)."""
        if isinstance(self.data, bytes):
            return self.data
        return self.data.encode("utf-8")


class SearchResult(BaseModel):
    """A release returned by an indexer search."""

    title: str
    size: int = 0
    seeders: int = 0
    leechers: int = 0
    download_url: str | None = None
    magnet_url: str | None = None
    info_url: str | None = None
    indexer: str
    category: int | None = None
    published_at: datetime | None = None
    tmdb_id: int | None = None
    imdb_id: str | None = None
    download_protocol: DownloadProtocol | None = None

    @property
    def protocol(self) -> DownloadProtocol:
        """Transport family, inferred from the links when the indexer did not say."""
        if self.download_protocol is not None:
            return self.download_protocol
        if self.magnet_url or (self.download_url or "").startswith("magnet:"):
            return DownloadProtocol.TORRENT
        if (self.download_url or "").lower().split("?")[0].endswith(".nzb"):
            return DownloadProtocol.NZB
        return DownloadProtocol.TORRENT

    def payload(self) -> Payload | None:
        """Build the payload to hand to a download client, preferring magnet links."""
        if self.magnet_url:
            return Payload.magnet(self.magnet_url)
        if self.download_url:
            if self.download_url.startswith("magnet:"):
                return Payload.magnet(self.download_url)
            return Payload.url(self.download_url)
        return None

    def health_score(self) -> float:
        """Swarm health in [0, 1] from the seeder/leecher ratio and seeder count.

        Returns 0.0 with no peers at all and 0.1 when nobody is seeding.
        """
        total = self.seeders + self.leechers
        if total <= 0:
            return 0.0
        if self.seeders <= 0:
            return 0.1
        return min(1.0, self.seeders / total + self.seeders / 100)
