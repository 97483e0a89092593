"""Resolve parsed releases against the library catalog.

Matching runs in three stages:

1. ID short-circuit: a TMDB or IMDB ID carried by the release (TMDB first)
   that hits a catalog entry wins outright with a fixed confidence of 0.98.
2. Title/year scoring: Jaro-Winkler similarity between normalized titles,
   taken over the entry's primary, original and alternative titles, plus a
   year term and penalties for alternative titles, sequel markers and
   singular/plural near misses.
3. Episode resolution for TV releases. Season packs resolve to the show
   without an episode.

Scoring formulas:
- Movies: ``similarity * 0.7 + year_term + penalties``
- TV shows: ``similarity * 0.95 + penalties``

Both are clamped to [0, 1]. The best title score a candidate can reach is
0.95, which keeps title matches strictly below ID matches.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rapidfuzz.distance import JaroWinkler

from snatcharr.catalog import CatalogEntry, Episode, ExternalIdKind, MediaType
from snatcharr.errors import ErrorKind, Result
from snatcharr.parser import ReleaseType

if TYPE_CHECKING:
    from snatcharr.catalog import Catalog
    from snatcharr.parser import ReleaseDescriptor

logger = logging.getLogger(__name__)

ID_MATCH_CONFIDENCE = 0.98
DEFAULT_CONFIDENCE_THRESHOLD = 0.6
ALTERNATIVE_TITLE_PENALTY = 0.05
SEQUEL_PENALTY = 0.4
PLURAL_PENALTY = 0.5

MOVIE_TITLE_WEIGHT = 0.7
TV_TITLE_WEIGHT = 0.95

# Year term for movies, by absolute difference between release and catalog year.
YEAR_EXACT_BONUS = 0.25
YEAR_OFF_BY_ONE_PENALTY = -0.15
YEAR_MISMATCH_PENALTY = -0.5
YEAR_MISSING_PENALTY = -0.05

_TRANSLITERATIONS = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})
_ARTICLES_RE = re.compile(r"\b(?:the|a|an)\b")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_SPACES_RE = re.compile(r"\s+")

_SEQUEL_MARKERS = (
    re.compile(r"\b(?:ii|iii|iv|vi|vii|viii|ix)\b"),
    re.compile(r"\b(?:part|chapter|episode|volume)\s*\d+\b"),
    re.compile(r"\b\d{1,2}\b"),
    re.compile(
        r"\b(?:reloaded|revolutions|returns|resurrection|rises|begins|origins|revenge|"
        r"redemption|reckoning|reborn|awakening|legacy|quest|journey|chronicles|saga)\b"
    ),
)


@dataclass(frozen=True)
class MatchOptions:
    """Tuning knobs for :func:`find_match`.

    Attributes:
        confidence_threshold: Minimum title-match confidence to accept
        monitored_only: Exclude unmonitored catalog entries from candidacy
        require_id_match: Accept only ID matches, never fall back to titles
    """

    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    monitored_only: bool = True
    require_id_match: bool = False


@dataclass(frozen=True)
class MatchResult:
    """The catalog entry (and episode, for single-episode releases) a release resolved to."""

    catalog_entry: CatalogEntry
    episode: Episode | None
    confidence: float
    match_reason: str


@dataclass(frozen=True)
class _Scored:
    entry: CatalogEntry
    confidence: float
    variant: str
    is_alternative: bool


def normalize_title(title: str) -> str:
    """Normalize a title for comparison.

    Case-folds, transliterates umlauts, strips accents, drops English
    articles and punctuation, and collapses whitespace. Non-Latin scripts
    pass through so they compare by exact normalized string.
    """
    text = title.lower().translate(_TRANSLITERATIONS)
    text = "".join(
        ch for ch in unicodedata.normalize("NFKD", text) if not unicodedata.combining(ch)
    )
    text = _ARTICLES_RE.sub("", text)
    text = _PUNCTUATION_RE.sub("", text)
    return _SPACES_RE.sub(" ", text).strip()


def title_similarity(left: str, right: str) -> float:
    """Jaro-Winkler similarity of two titles after normalization, in [0, 1].

    When one title is a bare prefix of the other the score is scaled by the
    length ratio, so "Heat" does not pass for "Heathers".
    """
    a = normalize_title(left)
    b = normalize_title(right)
    if a == b:
        return 1.0 if a else 0.0
    if not a or not b:
        return 0.0
    similarity = JaroWinkler.normalized_similarity(a, b)
    shorter, longer = sorted((a, b), key=len)
    if longer.startswith(shorter):
        similarity *= len(shorter) / len(longer)
    return similarity


def has_sequel_marker(title: str) -> bool:
    """Check for numbering or sequel words such as ``II``, ``Part 2`` or ``Reloaded``."""
    text = title.lower()
    return any(pattern.search(text) for pattern in _SEQUEL_MARKERS)


def is_plural_variant(left: str, right: str) -> bool:
    """Check whether two short titles differ only by a trailing ``s`` (``Alien`` vs ``Aliens``)."""
    a = normalize_title(left)
    b = normalize_title(right)
    if a == b:
        return False
    if not ((a.endswith("s") and a[:-1] == b) or (b.endswith("s") and b[:-1] == a)):
        return False
    return len(a.split()) <= 2 and len(b.split()) <= 2


def find_match(
    descriptor: ReleaseDescriptor,
    catalog: Catalog,
    options: MatchOptions | None = None,
    *,
    tmdb_id: int | None = None,
    imdb_id: str | None = None,
) -> Result[MatchResult]:
    """Find the catalog entry a parsed release refers to.

    Args:
        descriptor: Parsed release
        catalog: Read-only library view
        options: Matching options (defaults to :class:`MatchOptions`)
        tmdb_id: TMDB ID supplied alongside the release, e.g. by the indexer
        imdb_id: IMDB ID supplied alongside the release

    Returns:
        A successful result holding a :class:`MatchResult`, or a failure of
        kind ``no_match_found`` or ``episode_not_found``.
    """
    options = options or MatchOptions()
    if tmdb_id or imdb_id:
        descriptor = descriptor.with_external_ids(tmdb=tmdb_id, imdb=imdb_id)

    media_type = MediaType.TV_SHOW if descriptor.is_tv else MediaType.MOVIE

    id_hit = _match_by_id(descriptor, catalog, media_type, options.monitored_only)
    if id_hit is not None:
        entry, id_label = id_hit
        logger.debug("Matched %r via %s to %r", descriptor.title, id_label, entry.title)
        return _resolve(descriptor, catalog, entry, ID_MATCH_CONFIDENCE, id_label, by_id=True)

    if options.require_id_match:
        return Result.fail(
            ErrorKind.NO_MATCH_FOUND,
            f"No ID match for '{descriptor.title}' and title matching is disabled",
        )

    if descriptor.type == ReleaseType.UNKNOWN or not descriptor.title:
        return Result.fail(
            ErrorKind.NO_MATCH_FOUND, f"Could not identify release '{descriptor.raw_title}'"
        )

    candidates = catalog.list_candidates(media_type, options.monitored_only)
    best = _best_title_match(descriptor, candidates)
    if best is None or best.confidence < options.confidence_threshold:
        logger.debug(
            "No match for %r (best %.2f, threshold %.2f)",
            descriptor.title,
            best.confidence if best else 0.0,
            options.confidence_threshold,
        )
        return Result.fail(
            ErrorKind.NO_MATCH_FOUND,
            f"No library item matches '{descriptor.title}'",
            best_confidence=best.confidence if best else 0.0,
        )

    label = f"alternative title '{best.variant}'" if best.is_alternative else "title"
    return _resolve(descriptor, catalog, best.entry, best.confidence, label)


def _match_by_id(
    descriptor: ReleaseDescriptor,
    catalog: Catalog,
    media_type: MediaType,
    monitored_only: bool,
) -> tuple[CatalogEntry, str] | None:
    ids = descriptor.external_ids
    if ids.tmdb and ids.tmdb > 0:
        lookup: tuple[ExternalIdKind, int | str, str] = (
            ExternalIdKind.TMDB,
            ids.tmdb,
            f"TMDB ID {ids.tmdb}",
        )
    elif ids.imdb:
        lookup = (ExternalIdKind.IMDB, ids.imdb, f"IMDB ID {ids.imdb}")
    else:
        return None

    kind, value, label = lookup
    entry = catalog.find_by_external_id(
        kind, value, type=media_type, monitored_only=monitored_only
    )
    if entry is None:
        logger.info("%s from release %r not found in library", label, descriptor.title)
        return None
    return entry, label


def _best_title_match(
    descriptor: ReleaseDescriptor, candidates: list[CatalogEntry]
) -> _Scored | None:
    best: _Scored | None = None
    for entry in candidates:
        scored = _score_entry(descriptor, entry)
        # Strictly greater keeps the earliest entry on ties.
        if best is None or scored.confidence > best.confidence:
            best = scored
    return best


def _title_variants(entry: CatalogEntry) -> list[tuple[str, bool]]:
    """Primary, original and alternative titles, deduplicated by normalized form."""
    variants = [(entry.title, False)]
    if entry.original_title and entry.original_title != entry.title:
        variants.append((entry.original_title, False))
    variants.extend((title, True) for title in entry.alternative_titles)

    seen: set[str] = set()
    unique = []
    for title, is_alt in variants:
        key = normalize_title(title)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append((title, is_alt))
    return unique


def _score_entry(descriptor: ReleaseDescriptor, entry: CatalogEntry) -> _Scored:
    best: _Scored | None = None
    for variant, is_alt in _title_variants(entry):
        similarity = title_similarity(descriptor.title, variant)
        confidence = _combine(descriptor, entry, variant, similarity, is_alt)
        if best is None or confidence > best.confidence:
            best = _Scored(entry, confidence, variant, is_alt)
    if best is None:
        return _Scored(entry, 0.0, entry.title, False)
    return best


def _combine(
    descriptor: ReleaseDescriptor,
    entry: CatalogEntry,
    variant: str,
    similarity: float,
    is_alternative: bool,
) -> float:
    penalties = 0.0
    if is_alternative:
        penalties -= ALTERNATIVE_TITLE_PENALTY
    if is_plural_variant(variant, descriptor.title):
        penalties -= PLURAL_PENALTY
    if has_sequel_marker(variant) != has_sequel_marker(descriptor.title) and similarity > 0.7:
        penalties -= SEQUEL_PENALTY

    if entry.type == MediaType.MOVIE:
        score = similarity * MOVIE_TITLE_WEIGHT + _year_term(descriptor.year, entry.year)
    else:
        score = similarity * TV_TITLE_WEIGHT
        if descriptor.year and entry.year and descriptor.year != entry.year:
            score += YEAR_MISMATCH_PENALTY

    return max(0.0, min(1.0, score + penalties))


def _year_term(release_year: int | None, entry_year: int | None) -> float:
    if release_year is None or entry_year is None:
        return YEAR_MISSING_PENALTY
    diff = abs(release_year - entry_year)
    if diff == 0:
        return YEAR_EXACT_BONUS
    if diff == 1:
        return YEAR_OFF_BY_ONE_PENALTY
    return YEAR_MISMATCH_PENALTY


def _resolve(
    descriptor: ReleaseDescriptor,
    catalog: Catalog,
    entry: CatalogEntry,
    confidence: float,
    via: str,
    *,
    by_id: bool = False,
) -> Result[MatchResult]:
    """Attach the episode for TV releases and build the match reason."""
    percent = f"{confidence * 100:.1f}%"
    prefix = "ID-matched" if by_id else "Matched"

    if descriptor.type == ReleaseType.TV_SEASON_PACK:
        reason = (
            f"{prefix} season pack '{descriptor.title}' S{descriptor.season} "
            f"to '{entry.title}' via {via} with {percent} confidence"
        )
        return Result.success(MatchResult(entry, None, confidence, reason))

    if descriptor.type == ReleaseType.TV_EPISODE:
        season = descriptor.season if descriptor.season is not None else 0
        number = descriptor.episode if descriptor.episode is not None else 0
        episode = catalog.get_episode(entry.id, season, number)
        if episode is None:
            return Result.fail(
                ErrorKind.EPISODE_NOT_FOUND,
                f"'{entry.title}' has no episode S{season:02d}E{number:02d}",
                catalog_entry_id=entry.id,
                season=season,
                episode=number,
            )
        reason = (
            f"{prefix} '{descriptor.title}' S{season:02d}E{number:02d} to '{entry.title}' "
            f"S{episode.season_number:02d}E{episode.episode_number:02d} "
            f"via {via} with {percent} confidence"
        )
        return Result.success(MatchResult(entry, episode, confidence, reason))

    reason = (
        f"{prefix} '{descriptor.title}' ({descriptor.year}) to '{entry.title}' ({entry.year}) "
        f"via {via} with {percent} confidence"
    )
    return Result.success(MatchResult(entry, None, confidence, reason))
