"""snatcharr - Turn indexer release names into downloads for your library.

Parses free-text release names into structured descriptors, resolves them
against a movie/TV library with a confidence score, and hands accepted
releases to qBittorrent, Transmission, NZBGet, SABnzbd or a generic HTTP
download client, skipping clients whose cached health check failed.

Quick Start
-----------
Parse a release name::

    from snatcharr import parse

    release = parse("The.Matrix.1999.1080p.BluRay.x264-GROUP")
    print(release.title, release.year, release.quality)

Match it against a library::

    from snatcharr import InMemoryCatalog, find_match

    catalog = InMemoryCatalog.from_file(Path("library.json"))
    result = find_match(release, catalog)
    if result.ok:
        print(result.value.match_reason)

Send a release to a download client::

    from snatcharr import Config, Dispatcher, default_registry

    config = Config.load()
    dispatcher = Dispatcher(default_registry().bind(config.clients))
    sent = await dispatcher.dispatch(search_result)

CLI Usage
---------
::

    snatcharr parse "Breaking.Bad.S01E01.720p.HDTV.x264-CTU"
    snatcharr match "The.Matrix.1999.1080p.BluRay.x264-GROUP" --catalog library.json
    snatcharr clients test qbit
    snatcharr health --force

Classes
-------
ReleaseDescriptor
    Structured view of a release name.
MatchResult
    Catalog entry (and episode) a release resolved to.
Result
    Value-or-failure returned by every fallible operation.
HealthCache
    TTL cache of client and indexer reachability.
Dispatcher
    Healthy, priority-ordered client selection.
"""

from snatcharr.catalog import CatalogEntry, Episode, InMemoryCatalog, MediaType
from snatcharr.clients.registry import ClientRegistry, ConfiguredClient, default_registry
from snatcharr.config import Config, ConfigurationError
from snatcharr.dispatch import Acquirer, Dispatcher, SearchBudget, rank_results
from snatcharr.errors import ErrorKind, Failure, Result
from snatcharr.health import HealthCache, HealthRecord, HealthStatus
from snatcharr.matcher import MatchOptions, MatchResult, find_match
from snatcharr.parser import ReleaseDescriptor, ReleaseType, parse

__version__ = "0.1.0"

__all__ = [
    "Acquirer",
    "CatalogEntry",
    "ClientRegistry",
    "Config",
    "ConfigurationError",
    "ConfiguredClient",
    "Dispatcher",
    "Episode",
    "ErrorKind",
    "Failure",
    "HealthCache",
    "HealthRecord",
    "HealthStatus",
    "InMemoryCatalog",
    "MatchOptions",
    "MatchResult",
    "MediaType",
    "ReleaseDescriptor",
    "ReleaseType",
    "Result",
    "SearchBudget",
    "__version__",
    "default_registry",
    "find_match",
    "parse",
    "rank_results",
]
