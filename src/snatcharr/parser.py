"""Release name parsing.

Turns scene-style release names such as
``Blade.Runner.1982.Directors.Cut.1080p.BluRay.x264-GROUP`` into a
structured :class:`ReleaseDescriptor`. Parsing never fails: input that
carries no recognizable signal yields a descriptor of type
:attr:`ReleaseType.UNKNOWN` with a confidence close to zero.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


class ReleaseType(str, Enum):
    """Kind of media a release name describes."""

    MOVIE = "movie"
    TV_EPISODE = "tv_episode"
    TV_SEASON_PACK = "tv_season_pack"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExternalIds:
    """Metadata provider identifiers attached to a release."""

    tmdb: int | None = None
    imdb: str | None = None

    def __bool__(self) -> bool:
        return bool(self.tmdb) or bool(self.imdb)


@dataclass(frozen=True)
class ReleaseDescriptor:
    """Structured view of a single release name.

    Attributes:
        type: Movie, single episode, season pack or unknown
        title: Title text preceding the year or season marker
        year: Release year if one was found
        season: Season number for TV releases
        episodes: Episode numbers, several for multi-episode releases
        quality: Canonical resolution such as ``1080p``
        source: Canonical source such as ``BluRay`` or ``WEB-DL``
        codec: Canonical codec such as ``x264`` or ``x265``
        release_group: Trailing ``-GROUP`` suffix
        edition: Canonical edition name (movies and season packs only)
        season_pack: True when the release bundles a whole season
        external_ids: TMDB/IMDB identifiers embedded in the name or supplied by an indexer
        parse_confidence: 0.0-1.0 estimate of how much of the name was understood
    """

    type: ReleaseType
    title: str
    raw_title: str = ""
    original_title: str | None = None
    year: int | None = None
    season: int | None = None
    episodes: tuple[int, ...] = ()
    quality: str | None = None
    source: str | None = None
    codec: str | None = None
    release_group: str | None = None
    edition: str | None = None
    season_pack: bool = False
    external_ids: ExternalIds = field(default_factory=ExternalIds)
    parse_confidence: float = 0.0

    @property
    def episode(self) -> int | None:
        """First episode number, or None for season packs and movies."""
        return self.episodes[0] if self.episodes else None

    @property
    def is_tv(self) -> bool:
        return self.type in (ReleaseType.TV_EPISODE, ReleaseType.TV_SEASON_PACK)

    def with_external_ids(
        self, *, tmdb: int | None = None, imdb: str | None = None
    ) -> ReleaseDescriptor:
        """Return a copy carrying the given IDs, falling back to the parsed ones."""
        ids = ExternalIds(
            tmdb=tmdb or self.external_ids.tmdb,
            imdb=imdb or self.external_ids.imdb,
        )
        return replace(self, external_ids=ids)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict.

        The ``edition`` key is omitted entirely for single-episode releases.
        """
        data = asdict(self)
        data["type"] = self.type.value
        data["episodes"] = list(self.episodes)
        if self.type == ReleaseType.TV_EPISODE:
            data.pop("edition")
        return data


# Ordered: when several editions appear in a name the first row wins.
EDITIONS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Director's Cut", re.compile(r"\bdirector['’]?s?\s?(?:cut|edition)\b", re.I)),
    ("Extended Edition", re.compile(r"\bextended\s?(?:cut|edition|version)\b", re.I)),
    ("Theatrical", re.compile(r"\btheatrical\s?(?:cut|edition|release)\b", re.I)),
    ("Ultimate Edition", re.compile(r"\bultimate\s?(?:cut|edition)\b", re.I)),
    ("Collector's Edition", re.compile(r"\bcollector['’]?s?\s?edition\b", re.I)),
    ("Special Edition", re.compile(r"\bspecial\s?edition\b", re.I)),
    ("Unrated", re.compile(r"\bunrated\b", re.I)),
    ("Remastered", re.compile(r"\bremastered\b", re.I)),
    ("IMAX", re.compile(r"\bimax\b", re.I)),
)

_QUALITY_RE = re.compile(r"\b(480p|576p|720p|1080[pi]|2160p|4320p|4k|8k|uhd)\b", re.I)
_QUALITY_CANONICAL = {"4k": "2160p", "uhd": "2160p", "8k": "4320p", "1080i": "1080p"}

_SOURCES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("REMUX", re.compile(r"\b(?:bd)?remux\b", re.I)),
    ("BluRay", re.compile(r"\bblu-?ray\b", re.I)),
    ("BDRip", re.compile(r"\bbdrip\b", re.I)),
    ("BRRip", re.compile(r"\bbrrip\b", re.I)),
    ("WEB-DL", re.compile(r"\bweb[\s-]?dl\b", re.I)),
    ("WEBRip", re.compile(r"\bweb-?rip\b", re.I)),
    ("HDTV", re.compile(r"\bhdtv\b", re.I)),
    ("DVDRip", re.compile(r"\bdvd-?rip\b", re.I)),
    ("DVD", re.compile(r"\bdvd(?:r|5|9)?\b", re.I)),
    ("WEB", re.compile(r"\bWEB\b")),
)

_CODECS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("x265", re.compile(r"\b(?:[hx]\s?265|hevc)\b", re.I)),
    ("x264", re.compile(r"\b(?:[hx]\s?264|avc)\b", re.I)),
    ("AV1", re.compile(r"\bav1\b", re.I)),
    ("VP9", re.compile(r"\bvp9\b", re.I)),
    ("XviD", re.compile(r"\bxvid\b", re.I)),
    ("DivX", re.compile(r"\bdivx\b", re.I)),
)

# Tags that never belong to a title but carry no field of their own. Scene tags are
# upper case, which keeps words like "Limited" or "Proper" inside titles intact.
_NOISE_RE = re.compile(
    r"\b(?:PROPER|REPACK|INTERNAL|LIMITED|MULTI|DUAL|HDR(?:10)?|DoVi|DV|ATMOS|Atmos|TrueHD|"
    r"DTS(?:-HD)?|DDP?5\s1|AAC|AC3|EAC3|10bit|AMZN|NF|HYBRID|Hybrid)\b"
)

_EPISODE_RE = re.compile(
    r"\bS(?P<season>\d{1,2})\s?E(?P<episode>\d{1,3})"
    r"(?P<tail>(?:\s?-\s?E?\d{1,3}(?![\dpi])|E\d{1,3})*)",
    re.I,
)
_EPISODE_TAIL_RE = re.compile(r"(-)?\s?E?(\d{1,3})", re.I)
_CROSS_EPISODE_RE = re.compile(r"\b(?P<season>\d{1,2})x(?P<episode>\d{2,3})\b", re.I)
_SEASON_RE = re.compile(
    r"\bS(?P<season>\d{1,2})\b|\b(?:complete\s)?season\s?(?P<word>\d{1,2})\b", re.I
)
_YEAR_RE = re.compile(r"\b(19\d{2}|20\d{2})\b")

_EXTENSION_RE = re.compile(r"\.(?:mkv|mp4|avi|m4v|ts|wmv|nzb|torrent)$", re.I)
_SITE_PREFIX_RE = re.compile(
    r"^\s*(?:\[\s*(?:www\.)?[\w-]+\.(?:com|org|net|to|me|cc|io)\s*\]"
    r"|www\.[\w-]+\.(?:com|org|net|to|me|cc|io))"
    r"\s*-?\s*",
    re.I,
)
_LEADING_TAG_RE = re.compile(r"^\s*\[[^\]]*\]\s*")
_TRAILING_TAG_RE = re.compile(r"\s*\[[^\]]*\]\s*$")
_GROUP_RE = re.compile(r"-(?P<group>[A-Za-z0-9]+)$")
_TMDB_RE = re.compile(r"[\[{(]?\btmdb(?:id)?[-=\s](?P<id>\d+)[\]})]?", re.I)
_IMDB_RE = re.compile(r"[\[{(]?\b(?:imdb(?:id)?[-=\s])?(?P<id>tt\d{7,8})\b[\]})]?", re.I)

# Suffixes that look like a group but belong to a source tag (WEB-DL, DVD-Rip).
_NOT_GROUPS = frozenset({"dl", "rip", "hd", "ma", "x", "audio"})


def parse(raw_title: str) -> ReleaseDescriptor:
    """Parse a release name into a :class:`ReleaseDescriptor`.

    Args:
        raw_title: Release name as published by an indexer or found on disk

    Returns:
        The parsed descriptor. Never raises.
    """
    raw = raw_title or ""
    cleaned = _strip_wrapping(raw)
    cleaned, external_ids = _extract_external_ids(cleaned)
    cleaned, release_group = _extract_release_group(cleaned)
    text = _normalize_separators(cleaned)

    quality = _match_quality(text)
    source = _first_in_table(_SOURCES, text)
    codec = _first_in_table(_CODECS, text)
    tech_start = _technical_start(text)

    season: int | None = None
    episodes: tuple[int, ...] = ()
    marker_start: int | None = None

    episode_match = _EPISODE_RE.search(text) or _CROSS_EPISODE_RE.search(text)
    if episode_match:
        season = int(episode_match.group("season"))
        episodes = _episode_numbers(episode_match)
        marker_start = episode_match.start()
        release_type = ReleaseType.TV_EPISODE
    else:
        season_match = _SEASON_RE.search(text)
        if season_match:
            season = int(season_match.group("season") or season_match.group("word"))
            marker_start = season_match.start()
            release_type = ReleaseType.TV_SEASON_PACK
        else:
            release_type = ReleaseType.MOVIE

    year_limit = marker_start if marker_start is not None else tech_start
    year_match = _pick_year(text, year_limit)
    year = int(year_match.group(1)) if year_match else None

    title_end = min(
        pos
        for pos in (
            marker_start,
            year_match.start() if year_match else None,
            tech_start,
        )
        if pos is not None
    )
    title = _clean_title(text[:title_end])

    if release_type == ReleaseType.MOVIE and not (year or quality or source or codec):
        release_type = ReleaseType.UNKNOWN

    edition = None
    if year and release_type in (ReleaseType.MOVIE, ReleaseType.TV_SEASON_PACK):
        edition = _first_in_table(EDITIONS, text)

    descriptor = ReleaseDescriptor(
        type=release_type,
        title=title,
        raw_title=raw,
        year=year,
        season=season,
        episodes=episodes,
        quality=quality,
        source=source,
        codec=codec,
        release_group=release_group,
        edition=edition,
        season_pack=release_type == ReleaseType.TV_SEASON_PACK,
        external_ids=external_ids,
    )
    return replace(descriptor, parse_confidence=_confidence(descriptor))


def _strip_wrapping(raw: str) -> str:
    """Remove file extensions, website prefixes and leading/trailing bracket tags."""
    text = raw.strip()
    text = _EXTENSION_RE.sub("", text)
    text = _SITE_PREFIX_RE.sub("", text)
    text = _LEADING_TAG_RE.sub("", text)
    text = _TRAILING_TAG_RE.sub("", text)
    return text.strip()


def _extract_external_ids(text: str) -> tuple[str, ExternalIds]:
    tmdb: int | None = None
    imdb: str | None = None

    tmdb_match = _TMDB_RE.search(text)
    if tmdb_match:
        tmdb = int(tmdb_match.group("id")) or None
        text = text[: tmdb_match.start()] + " " + text[tmdb_match.end() :]

    imdb_match = _IMDB_RE.search(text)
    if imdb_match:
        imdb = imdb_match.group("id").lower()
        text = text[: imdb_match.start()] + " " + text[imdb_match.end() :]

    return text.strip(), ExternalIds(tmdb=tmdb, imdb=imdb)


def _extract_release_group(text: str) -> tuple[str, str | None]:
    match = _GROUP_RE.search(text)
    if not match:
        return text, None
    group = match.group("group")
    if group.lower() in _NOT_GROUPS or _YEAR_RE.fullmatch(group) or _QUALITY_RE.fullmatch(group):
        return text, None
    # A hyphen in a bare title (Spider-Man) is not a group separator.
    if not _has_release_tokens(_normalize_separators(text[: match.start()])):
        return text, None
    return text[: match.start()], group


def _has_release_tokens(text: str) -> bool:
    """Whether the text carries a year, season or episode marker, or a quality, source or codec."""
    patterns = [_YEAR_RE, _EPISODE_RE, _CROSS_EPISODE_RE, _SEASON_RE, _QUALITY_RE]
    patterns.extend(pattern for _, pattern in _SOURCES)
    patterns.extend(pattern for _, pattern in _CODECS)
    return any(pattern.search(text) for pattern in patterns)


def _normalize_separators(text: str) -> str:
    text = re.sub(r"[._\[\](){}]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _match_quality(text: str) -> str | None:
    match = _QUALITY_RE.search(text)
    if not match:
        return None
    value = match.group(1).lower()
    return _QUALITY_CANONICAL.get(value, value)


def _first_in_table(table: tuple[tuple[str, re.Pattern[str]], ...], text: str) -> str | None:
    for name, pattern in table:
        if pattern.search(text):
            return name
    return None


def _technical_start(text: str) -> int:
    """Position of the first technical or edition token, or the end of the text."""
    starts = [len(text)]
    patterns = [_QUALITY_RE, _NOISE_RE]
    patterns.extend(pattern for _, pattern in _SOURCES)
    patterns.extend(pattern for _, pattern in _CODECS)
    patterns.extend(pattern for _, pattern in EDITIONS)
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            starts.append(match.start())
    return min(starts)


def _pick_year(text: str, limit: int) -> re.Match[str] | None:
    """Choose the release year: the last year token before ``limit`` that is not the first word.

    A year at the very start is part of the title (``1917``, ``2012``).
    """
    candidates = [m for m in _YEAR_RE.finditer(text) if 0 < m.start() < limit]
    return candidates[-1] if candidates else None


def _episode_numbers(match: re.Match[str]) -> tuple[int, ...]:
    episodes = [int(match.group("episode"))]
    tail = match.groupdict().get("tail") or ""
    for dash, number in _EPISODE_TAIL_RE.findall(tail):
        value = int(number)
        if dash and value > episodes[-1]:
            episodes.extend(range(episodes[-1] + 1, value + 1))
        elif value not in episodes:
            episodes.append(value)
    return tuple(episodes)


def _clean_title(text: str) -> str:
    title = re.sub(r"\s+", " ", text).strip(" -")
    return title


def _confidence(descriptor: ReleaseDescriptor) -> float:
    if descriptor.type == ReleaseType.UNKNOWN:
        return 0.1 if descriptor.title else 0.0

    score = 0.3 if descriptor.title else 0.0
    if descriptor.type == ReleaseType.MOVIE:
        score += 0.3 if descriptor.year else 0.0
    else:
        score += 0.3 if descriptor.season is not None else 0.0
    score += 0.15 if descriptor.quality else 0.0
    score += 0.1 if descriptor.source else 0.0
    score += 0.05 if descriptor.codec else 0.0
    score += 0.1 if descriptor.release_group else 0.0
    return round(min(score, 1.0), 2)
