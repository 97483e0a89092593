"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from snatcharr.config import (
    ClientType,
    Config,
    ConfigurationError,
    IndexerConfig,
    normalize_base_path,
)

FULL_CONFIG = """
timeout = 45

[[clients]]
id = "qbit"
name = "qBittorrent"
type = "qbittorrent"
host = "seedbox"
port = 8080
use_tls = true
url_base = "/qbittorrent/"
username = "admin"
password = "secret"
priority = 2
category = "movies"

[clients.options]
max_retries = 4

[[clients]]
name = "sab"
type = "nzb_rest_apikey"
host = "nas"
port = 8085
api_key = "abc"
enabled = false

[[indexers]]
id = "jackett"
name = "Jackett"
type = "Torznab"
base_url = "http://jackett:9117/api/v2.0/indexers/all/results/torznab/"
api_key = "key"

[matching]
confidence_threshold = 0.75
require_id_match = true

[health]
client_cache_ttl = 60
check_timeout = 10

[search]
min_quality_score = 900
max_searches_per_run = 20

[logging]
level = "DEBUG"
"""


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(content)
    return path


class TestConfigFromFile:
    """Tests for TOML parsing."""

    def test_clients(self, tmp_path: Path) -> None:
        """Should parse clients with aliases, defaults and options."""
        config = Config.from_file(_write(tmp_path, FULL_CONFIG))

        qbit, sab = config.clients
        assert qbit.type == ClientType.BITTORRENT_REST_SSL
        assert qbit.base_url == "https://seedbox:8080/qbittorrent"
        assert qbit.priority == 2
        assert qbit.timeout == 45
        assert qbit.max_retries == 4
        assert sab.id == "sab"
        assert sab.type == ClientType.NZB_REST_APIKEY
        assert sab.enabled is False
        assert sab.max_retries == 2

    def test_indexers(self, tmp_path: Path) -> None:
        """Should lowercase indexer types and strip trailing slashes."""
        config = Config.from_file(_write(tmp_path, FULL_CONFIG))

        indexer = config.indexers[0]
        assert indexer.type == "torznab"
        assert indexer.base_url == "http://jackett:9117/api/v2.0/indexers/all/results/torznab"

    def test_sections(self, tmp_path: Path) -> None:
        """Should read matching, health, search and logging settings."""
        config = Config.from_file(_write(tmp_path, FULL_CONFIG))

        assert config.matching.confidence_threshold == 0.75
        assert config.matching.require_id_match is True
        assert config.matching.monitored_only is True
        assert config.health.client_cache_ttl == 60
        assert config.health.check_timeout == 10
        assert config.health.indexer_cache_ttl == 600
        assert config.search.min_quality_score == 900
        assert config.search.max_searches_per_run == 20
        assert config.logging.level == "debug"

    def test_defaults(self, tmp_path: Path) -> None:
        """Should fall back to defaults for an empty file."""
        config = Config.from_file(_write(tmp_path, ""))

        assert config.clients == []
        assert config.matching.confidence_threshold == 0.6
        assert config.health.client_check_interval == 120
        assert config.search.search_delay == 2.0

    def test_invalid_toml(self, tmp_path: Path) -> None:
        """Should raise ConfigurationError for malformed TOML."""
        with pytest.raises(ConfigurationError, match="Invalid config file"):
            Config.from_file(_write(tmp_path, "[clients\n"))

    def test_unknown_client_type(self, tmp_path: Path) -> None:
        """Should reject client types it has no adapter for."""
        content = '[[clients]]\nname = "x"\ntype = "deluge"\nhost = "h"\nport = 1\n'

        with pytest.raises(ConfigurationError, match="deluge"):
            Config.from_file(_write(tmp_path, content))

    def test_missing_client_field(self, tmp_path: Path) -> None:
        """Should name the missing field."""
        content = '[[clients]]\nname = "x"\ntype = "http"\nhost = "h"\n'

        with pytest.raises(ConfigurationError, match="port"):
            Config.from_file(_write(tmp_path, content))

    def test_duplicate_client_ids(self, tmp_path: Path) -> None:
        """Should reject two clients with the same id."""
        client = '[[clients]]\nid = "a"\ntype = "http"\nhost = "h"\nport = 1\n'

        with pytest.raises(ConfigurationError, match="Duplicate"):
            Config.from_file(_write(tmp_path, client + client))

    def test_threshold_out_of_range(self, tmp_path: Path) -> None:
        """Should reject thresholds outside [0, 1]."""
        with pytest.raises(ConfigurationError, match="confidence_threshold"):
            Config.from_file(_write(tmp_path, "[matching]\nconfidence_threshold = 1.5\n"))

    def test_invalid_log_level(self, tmp_path: Path) -> None:
        """Should reject unknown log levels."""
        with pytest.raises(ConfigurationError, match="Invalid log level"):
            Config.from_file(_write(tmp_path, '[logging]\nlevel = "verbose"\n'))


class TestConfigLoad:
    """Tests for Config.load with file and environment."""

    def test_load_without_file(self, tmp_path: Path) -> None:
        """Should return defaults when no config file exists."""
        with (
            patch.object(Path, "home", return_value=tmp_path),
            patch.dict(os.environ, {}, clear=True),
        ):
            config = Config.load()

        assert config.clients == []
        assert config.logging.level == "info"

    def test_load_from_default_path(self, tmp_path: Path) -> None:
        """Should read ~/.config/snatcharr/config.toml."""
        config_dir = tmp_path / ".config" / "snatcharr"
        config_dir.mkdir(parents=True)
        (config_dir / "config.toml").write_text(FULL_CONFIG)

        with (
            patch.object(Path, "home", return_value=tmp_path),
            patch.dict(os.environ, {}, clear=True),
        ):
            config = Config.load()

        assert [c.id for c in config.clients] == ["qbit", "sab"]

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        """Should let environment variables override file values."""
        config_dir = tmp_path / ".config" / "snatcharr"
        config_dir.mkdir(parents=True)
        (config_dir / "config.toml").write_text(FULL_CONFIG)
        env = {
            "SNATCHARR_TIMEOUT": "5",
            "SNATCHARR_CONFIDENCE_THRESHOLD": "0.9",
            "SNATCHARR_MIN_QUALITY_SCORE": "1200",
            "SNATCHARR_HEALTH_CHECK_INTERVAL": "30",
            "SNATCHARR_LOG_LEVEL": "WARNING",
        }

        with (
            patch.object(Path, "home", return_value=tmp_path),
            patch.dict(os.environ, env, clear=True),
        ):
            config = Config.load()

        assert config.timeout == 5
        assert config.clients[0].timeout == 5
        assert config.matching.confidence_threshold == 0.9
        assert config.matching.require_id_match is True
        assert config.search.min_quality_score == 1200
        assert config.search.max_searches_per_run == 20
        assert config.health.client_check_interval == 30
        assert config.health.client_cache_ttl == 60
        assert config.logging.level == "warning"

    def test_env_not_a_number(self, tmp_path: Path) -> None:
        """Should raise ConfigurationError for non-numeric overrides."""
        with (
            patch.object(Path, "home", return_value=tmp_path),
            patch.dict(os.environ, {"SNATCHARR_TIMEOUT": "soon"}, clear=True),
            pytest.raises(ConfigurationError, match="SNATCHARR_TIMEOUT"),
        ):
            Config.load()


class TestClientLookup:
    """Tests for client helpers."""

    def test_get_client_by_id_or_name(self, tmp_path: Path) -> None:
        """Should find clients by id or display name."""
        config = Config.from_file(_write(tmp_path, FULL_CONFIG))

        assert config.get_client("qbit").name == "qBittorrent"
        assert config.get_client("qBittorrent").id == "qbit"

    def test_get_client_missing(self) -> None:
        """Should raise ConfigurationError for unknown clients."""
        with pytest.raises(ConfigurationError, match="nope"):
            Config().get_client("nope")

    def test_url_for_joins_prefix(self, tmp_path: Path) -> None:
        """Should place endpoint paths under the URL prefix."""
        config = Config.from_file(_write(tmp_path, FULL_CONFIG))

        url = config.clients[0].url_for("/api/v2/auth/login")

        assert url == "https://seedbox:8080/qbittorrent/api/v2/auth/login"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [(None, ""), ("", ""), ("/", ""), ("qbt", "/qbt"), ("/qbt/", "/qbt"), (" sab/ ", "/sab")],
    )
    def test_normalize_base_path(self, raw: str | None, expected: str) -> None:
        """Should normalize prefixes to a leading slash and no trailing slash."""
        assert normalize_base_path(raw) == expected

    def test_indexer_timeouts(self) -> None:
        """Should read indexer timeouts from the global timeout and the defaults."""
        indexer = IndexerConfig(id="i", name="i", type="torznab", base_url="http://i", timeout=45)

        assert indexer.read_timeout == 45
        assert indexer.connect_timeout == 5
