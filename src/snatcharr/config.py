"""Configuration loading for snatcharr."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Self

from snatcharr.models.common import DownloadProtocol


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""


class ClientType(str, Enum):
    """Wire protocol family of a download client."""

    BITTORRENT_REST_SSL = "bittorrent_rest_ssl"
    BITTORRENT_RPC_CSRF = "bittorrent_rpc_csrf"
    NZB_JSON_RPC = "nzb_json_rpc"
    NZB_REST_APIKEY = "nzb_rest_apikey"
    GENERIC_HTTP = "generic_http"

    @property
    def protocol(self) -> DownloadProtocol | None:
        """Transport the client fetches, or None when it accepts both."""
        if self in (ClientType.BITTORRENT_REST_SSL, ClientType.BITTORRENT_RPC_CSRF):
            return DownloadProtocol.TORRENT
        if self in (ClientType.NZB_JSON_RPC, ClientType.NZB_REST_APIKEY):
            return DownloadProtocol.NZB
        return None


# Product names accepted in config files in place of the protocol tag.
CLIENT_TYPE_ALIASES: dict[str, ClientType] = {
    "qbittorrent": ClientType.BITTORRENT_REST_SSL,
    "transmission": ClientType.BITTORRENT_RPC_CSRF,
    "nzbget": ClientType.NZB_JSON_RPC,
    "sabnzbd": ClientType.NZB_REST_APIKEY,
    "http": ClientType.GENERIC_HTTP,
}

DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_MAX_RETRIES = 2


def normalize_base_path(path: str | None) -> str:
    """Normalize a URL prefix to ``/prefix`` form, or ``""`` for none."""
    if not path:
        return ""
    stripped = path.strip().strip("/")
    return f"/{stripped}" if stripped else ""


@dataclass
class ClientConfig:
    """Download client connection configuration."""

    id: str
    name: str
    type: ClientType
    host: str
    port: int
    enabled: bool = True
    priority: int = 1
    use_tls: bool = False
    base_path: str = ""
    username: str | None = None
    password: str | None = None
    api_key: str | None = None
    category: str | None = None
    download_directory: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        self.base_path = normalize_base_path(self.base_path)

    @property
    def origin(self) -> str:
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def base_url(self) -> str:
        """Origin plus the configured URL prefix."""
        return f"{self.origin}{self.base_path}"

    def url_for(self, path: str) -> str:
        """Full URL of an endpoint, including the URL prefix."""
        return f"{self.base_url}/{path.lstrip('/')}"

    @property
    def read_timeout(self) -> float:
        return float(self.options.get("timeout", self.timeout))

    @property
    def connect_timeout(self) -> float:
        return float(self.options.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT))

    @property
    def max_retries(self) -> int:
        return max(1, int(self.options.get("max_retries", DEFAULT_MAX_RETRIES)))


@dataclass
class IndexerConfig:
    """Indexer connection configuration."""

    id: str
    name: str
    type: str
    base_url: str
    api_key: str | None = None
    enabled: bool = True
    options: dict[str, Any] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    @property
    def read_timeout(self) -> float:
        return float(self.options.get("timeout", self.timeout))

    @property
    def connect_timeout(self) -> float:
        return float(self.options.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT))


@dataclass
class MatchingConfig:
    """Configuration for release matching."""

    confidence_threshold: float = 0.6
    monitored_only: bool = True
    require_id_match: bool = False


@dataclass
class HealthConfig:
    """Cache lifetimes and check intervals for health tracking, in seconds."""

    client_cache_ttl: float = 300.0
    client_check_interval: float = 120.0
    indexer_cache_ttl: float = 600.0
    indexer_check_interval: float = 300.0
    check_timeout: float = 30.0


@dataclass
class SearchConfig:
    """Quality floor and rate limits for automated searches."""

    min_quality_score: float = 0.0
    max_searches_per_run: int = 50
    max_searches_per_entry: int = 3
    max_searches_per_season: int = 10
    search_delay: float = 2.0


VALID_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "info"


def _default_config_path() -> Path:
    """Get the default config file path."""
    return Path.home() / ".config" / "snatcharr" / "config.toml"


# --- Helper functions for parsing config sections ---


def _load_toml_file(path: Path) -> dict[str, Any]:
    """Read a TOML file.

    Raises:
        ConfigurationError: If the file cannot be parsed
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid config file: {e}") from e


def _parse_client_type(value: Any, name: str) -> ClientType:
    tag = str(value).strip().lower()
    if tag in CLIENT_TYPE_ALIASES:
        return CLIENT_TYPE_ALIASES[tag]
    try:
        return ClientType(tag)
    except ValueError:
        raise ConfigurationError(f"Unknown download client type {value!r} for {name!r}") from None


def _parse_clients_from_dict(data: dict[str, Any], timeout: float) -> list[ClientConfig]:
    """Parse the ``[[clients]]`` array of tables.

    Raises:
        ConfigurationError: If a client lacks required fields or has an unknown type
    """
    clients = []
    seen: set[str] = set()
    for index, item in enumerate(data.get("clients", [])):
        name = item.get("name") or item.get("id") or f"client-{index + 1}"
        for required in ("type", "host", "port"):
            if required not in item:
                raise ConfigurationError(f"Download client {name!r} is missing {required!r}")
        client_id = str(item.get("id", name))
        if client_id in seen:
            raise ConfigurationError(f"Duplicate download client id {client_id!r}")
        seen.add(client_id)
        clients.append(
            ClientConfig(
                id=client_id,
                name=name,
                type=_parse_client_type(item["type"], name),
                host=item["host"],
                port=int(item["port"]),
                enabled=item.get("enabled", True),
                priority=int(item.get("priority", 1)),
                use_tls=item.get("use_tls", item.get("use_ssl", False)),
                base_path=item.get("base_path", item.get("url_base", "")),
                username=item.get("username"),
                password=item.get("password"),
                api_key=item.get("api_key"),
                category=item.get("category"),
                download_directory=item.get("download_directory"),
                options=dict(item.get("options", {})),
                timeout=timeout,
            )
        )
    return clients


def _parse_indexers_from_dict(data: dict[str, Any], timeout: float) -> list[IndexerConfig]:
    """Parse the ``[[indexers]]`` array of tables.

    Raises:
        ConfigurationError: If an indexer lacks required fields
    """
    indexers = []
    for index, item in enumerate(data.get("indexers", [])):
        name = item.get("name") or item.get("id") or f"indexer-{index + 1}"
        for required in ("type", "base_url"):
            if required not in item:
                raise ConfigurationError(f"Indexer {name!r} is missing {required!r}")
        indexers.append(
            IndexerConfig(
                id=str(item.get("id", name)),
                name=name,
                type=str(item["type"]).lower(),
                base_url=item["base_url"],
                api_key=item.get("api_key"),
                enabled=item.get("enabled", True),
                options=dict(item.get("options", {})),
                timeout=timeout,
            )
        )
    return indexers


def _parse_matching_from_dict(data: dict[str, Any]) -> MatchingConfig:
    section = data.get("matching", {})
    defaults = MatchingConfig()
    threshold = float(section.get("confidence_threshold", defaults.confidence_threshold))
    if not 0.0 <= threshold <= 1.0:
        raise ConfigurationError(f"confidence_threshold must be between 0 and 1, got {threshold}")
    return MatchingConfig(
        confidence_threshold=threshold,
        monitored_only=section.get("monitored_only", defaults.monitored_only),
        require_id_match=section.get("require_id_match", defaults.require_id_match),
    )


def _parse_health_from_dict(data: dict[str, Any]) -> HealthConfig:
    section = data.get("health", {})
    defaults = HealthConfig()
    return HealthConfig(
        client_cache_ttl=float(section.get("client_cache_ttl", defaults.client_cache_ttl)),
        client_check_interval=float(
            section.get("client_check_interval", defaults.client_check_interval)
        ),
        indexer_cache_ttl=float(section.get("indexer_cache_ttl", defaults.indexer_cache_ttl)),
        indexer_check_interval=float(
            section.get("indexer_check_interval", defaults.indexer_check_interval)
        ),
        check_timeout=float(section.get("check_timeout", defaults.check_timeout)),
    )


def _parse_search_from_dict(data: dict[str, Any]) -> SearchConfig:
    section = data.get("search", {})
    defaults = SearchConfig()
    return SearchConfig(
        min_quality_score=float(section.get("min_quality_score", defaults.min_quality_score)),
        max_searches_per_run=int(
            section.get("max_searches_per_run", defaults.max_searches_per_run)
        ),
        max_searches_per_entry=int(
            section.get("max_searches_per_entry", defaults.max_searches_per_entry)
        ),
        max_searches_per_season=int(
            section.get("max_searches_per_season", defaults.max_searches_per_season)
        ),
        search_delay=float(section.get("search_delay", defaults.search_delay)),
    )


def _parse_logging_from_dict(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("logging", {}).get("level", LoggingConfig.level)).lower()
    if level not in VALID_LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level {level!r} in config file")
    return LoggingConfig(level=level)


def _float_from_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


@dataclass
class Config:
    """Application configuration."""

    clients: list[ClientConfig] = field(default_factory=list)
    indexers: list[IndexerConfig] = field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls) -> Self:
        """Load configuration from environment and config file.

        Configuration precedence (highest to lowest):
        1. Environment variables
        2. Config file (~/.config/snatcharr/config.toml)

        Environment variables:
        - SNATCHARR_TIMEOUT (request timeout in seconds)
        - SNATCHARR_LOG_LEVEL
        - SNATCHARR_CONFIDENCE_THRESHOLD
        - SNATCHARR_MIN_QUALITY_SCORE
        - SNATCHARR_HEALTH_CHECK_INTERVAL (client check interval in seconds)

        Returns:
            Config instance with loaded values

        Raises:
            ConfigurationError: If config file exists but is invalid
        """
        config = cls()

        config_file = _default_config_path()
        if config_file.exists():
            config = cls.from_file(config_file)

        return cls._load_from_env(config)

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load configuration from a TOML file.

        Args:
            path: Path to the TOML config file

        Returns:
            Config instance

        Raises:
            ConfigurationError: If the file cannot be parsed or is invalid
        """
        data = _load_toml_file(path)
        timeout = float(data.get("timeout", DEFAULT_TIMEOUT))

        return cls(
            clients=_parse_clients_from_dict(data, timeout),
            indexers=_parse_indexers_from_dict(data, timeout),
            timeout=timeout,
            matching=_parse_matching_from_dict(data),
            health=_parse_health_from_dict(data),
            search=_parse_search_from_dict(data),
            logging=_parse_logging_from_dict(data),
        )

    @classmethod
    def _load_from_env(cls, base: Self) -> Self:
        """Override configuration with environment variables.

        Args:
            base: Base config to override

        Returns:
            Config instance with environment overrides
        """
        timeout = _float_from_env("SNATCHARR_TIMEOUT", base.timeout)
        clients = base.clients
        if timeout != base.timeout:
            for client in clients:
                client.timeout = timeout
            for indexer in base.indexers:
                indexer.timeout = timeout

        matching = MatchingConfig(
            confidence_threshold=_float_from_env(
                "SNATCHARR_CONFIDENCE_THRESHOLD", base.matching.confidence_threshold
            ),
            monitored_only=base.matching.monitored_only,
            require_id_match=base.matching.require_id_match,
        )

        search = SearchConfig(
            min_quality_score=_float_from_env(
                "SNATCHARR_MIN_QUALITY_SCORE", base.search.min_quality_score
            ),
            max_searches_per_run=base.search.max_searches_per_run,
            max_searches_per_entry=base.search.max_searches_per_entry,
            max_searches_per_season=base.search.max_searches_per_season,
            search_delay=base.search.search_delay,
        )

        health = HealthConfig(
            client_cache_ttl=base.health.client_cache_ttl,
            client_check_interval=_float_from_env(
                "SNATCHARR_HEALTH_CHECK_INTERVAL", base.health.client_check_interval
            ),
            indexer_cache_ttl=base.health.indexer_cache_ttl,
            indexer_check_interval=base.health.indexer_check_interval,
            check_timeout=base.health.check_timeout,
        )

        log_level = os.environ.get("SNATCHARR_LOG_LEVEL")
        logging_config = LoggingConfig(level=log_level.lower()) if log_level else base.logging

        return cls(
            clients=clients,
            indexers=base.indexers,
            timeout=timeout,
            matching=matching,
            health=health,
            search=search,
            logging=logging_config,
        )

    def get_client(self, name_or_id: str) -> ClientConfig:
        """Look up a configured download client by id or name.

        Raises:
            ConfigurationError: If no client has that id or name
        """
        for client in self.clients:
            if name_or_id in (client.id, client.name):
                return client
        raise ConfigurationError(f"No download client named {name_or_id!r} is configured")
