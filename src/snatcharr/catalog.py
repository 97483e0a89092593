"""Library catalog models and the read-only query contract used for matching."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, Self

from pydantic import BaseModel, Field


class MediaType(str, Enum):
    """Kind of library item."""

    MOVIE = "movie"
    TV_SHOW = "tv_show"


class ExternalIdKind(str, Enum):
    """Metadata provider whose identifier is being looked up."""

    TMDB = "tmdb"
    IMDB = "imdb"


class CatalogEntry(BaseModel):
    """A movie or show in the library."""

    id: int | str
    type: MediaType
    title: str
    original_title: str | None = None
    year: int | None = None
    tmdb_id: int | None = None
    imdb_id: str | None = None
    alternative_titles: list[str] = Field(default_factory=list)
    monitored: bool = True

    def external_id(self, kind: ExternalIdKind) -> int | str | None:
        """Get this entry's identifier for a metadata provider."""
        if kind == ExternalIdKind.TMDB:
            return self.tmdb_id
        return self.imdb_id


class Episode(BaseModel):
    """A single episode belonging to a TV show entry."""

    id: int | str
    catalog_entry_id: int | str
    season_number: int
    episode_number: int
    title: str | None = None


class Catalog(Protocol):
    """Read-only view of the library consumed by the matcher."""

    def list_candidates(self, type: MediaType, monitored_only: bool) -> list[CatalogEntry]:
        """List entries of a media type in stable insertion order."""
        ...

    def find_by_external_id(
        self,
        kind: ExternalIdKind,
        external_id: int | str,
        *,
        type: MediaType | None = None,
        monitored_only: bool = False,
    ) -> CatalogEntry | None:
        """Find the entry carrying a metadata provider ID.

        TMDB numbers movies and shows separately, so callers pass ``type``
        to search one media type only.
        """
        ...

    def get_episode(
        self, catalog_entry_id: int | str, season: int, episode: int
    ) -> Episode | None:
        """Look up an episode of a show by season and episode number."""
        ...


class InMemoryCatalog:
    """Catalog held in memory, preserving insertion order.

    Used by the CLI (loaded from a JSON export) and by tests.
    """

    def __init__(
        self,
        entries: list[CatalogEntry] | None = None,
        episodes: list[Episode] | None = None,
    ) -> None:
        self._entries: list[CatalogEntry] = []
        self._episodes: dict[tuple[int | str, int, int], Episode] = {}
        for entry in entries or []:
            self.add_entry(entry)
        for episode in episodes or []:
            self.add_episode(episode)

    def add_entry(self, entry: CatalogEntry) -> None:
        self._entries.append(entry)

    def add_episode(self, episode: Episode) -> None:
        key = (episode.catalog_entry_id, episode.season_number, episode.episode_number)
        self._episodes[key] = episode

    @property
    def entries(self) -> list[CatalogEntry]:
        return list(self._entries)

    def list_candidates(self, type: MediaType, monitored_only: bool) -> list[CatalogEntry]:
        return [
            entry
            for entry in self._entries
            if entry.type == type and (entry.monitored or not monitored_only)
        ]

    def find_by_external_id(
        self,
        kind: ExternalIdKind,
        external_id: int | str,
        *,
        type: MediaType | None = None,
        monitored_only: bool = False,
    ) -> CatalogEntry | None:
        wanted = _normalize_external_id(kind, external_id)
        for entry in self._entries:
            if type is not None and entry.type != type:
                continue
            if monitored_only and not entry.monitored:
                continue
            value = entry.external_id(kind)
            if value is not None and _normalize_external_id(kind, value) == wanted:
                return entry
        return None

    def get_episode(
        self, catalog_entry_id: int | str, season: int, episode: int
    ) -> Episode | None:
        return self._episodes.get((catalog_entry_id, season, episode))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build a catalog from ``{"entries": [...], "episodes": [...]}``."""
        entries = [CatalogEntry.model_validate(item) for item in data.get("entries", [])]
        episodes = [Episode.model_validate(item) for item in data.get("episodes", [])]
        return cls(entries, episodes)

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load a catalog from a JSON file.

        Raises:
            ValueError: If the file is not valid JSON or does not match the schema
        """
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)


def _normalize_external_id(kind: ExternalIdKind, value: int | str) -> int | str:
    if kind == ExternalIdKind.TMDB:
        try:
            return int(value)
        except (TypeError, ValueError):
            return str(value)
    return str(value).strip().lower()
