"""Tests for CLI global logging configuration."""

import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from snatcharr.cli import app
from snatcharr.config import Config, LoggingConfig
from snatcharr.logging_config import configure_logging, parse_log_level

runner = CliRunner()


class TestGlobalLogLevel:
    """Tests for global --log-level flag."""

    @patch("snatcharr.cli.configure_logging")
    def test_global_log_level_flag_configures_logging(self, mock_configure: patch) -> None:
        """Global --log-level flag should configure logging before command runs."""
        result = runner.invoke(app, ["--log-level", "debug", "version"])

        assert result.exit_code == 0
        mock_configure.assert_called_once_with("debug")

    @patch("snatcharr.cli.configure_logging")
    def test_global_log_level_short_flag(self, mock_configure: patch) -> None:
        """Short -l flag should work as alias for --log-level."""
        result = runner.invoke(app, ["-l", "warning", "version"])

        assert result.exit_code == 0
        mock_configure.assert_called_once_with("warning")

    def test_global_log_level_invalid_exits_with_error(self) -> None:
        """Invalid log level should exit with error."""
        result = runner.invoke(app, ["--log-level", "verbose", "version"])

        assert result.exit_code == 1
        assert "verbose" in result.output.lower()

    @patch("snatcharr.cli.configure_logging")
    def test_global_log_level_case_insensitive(self, mock_configure: patch) -> None:
        """Log level should be case insensitive."""
        result = runner.invoke(app, ["--log-level", "DEBUG", "version"])

        assert result.exit_code == 0
        mock_configure.assert_called_once_with("debug")


class TestLogLevelPriority:
    """Tests for log level priority chain: CLI > env > config > default."""

    @patch("snatcharr.cli.configure_logging")
    @patch.dict(os.environ, {"SNATCHARR_LOG_LEVEL": "warning"})
    def test_cli_overrides_env_var(self, mock_configure: patch) -> None:
        """CLI flag should override environment variable."""
        result = runner.invoke(app, ["--log-level", "debug", "version"])

        assert result.exit_code == 0
        mock_configure.assert_called_once_with("debug")

    @patch("snatcharr.cli.configure_logging")
    @patch("snatcharr.cli.Config.load")
    @patch.dict(os.environ, {"SNATCHARR_LOG_LEVEL": "error"})
    def test_env_overrides_config(self, mock_config_load: patch, mock_configure: patch) -> None:
        """Environment variable should override config file."""
        mock_config_load.return_value = Config(logging=LoggingConfig(level="debug"))

        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        mock_configure.assert_called_once_with("error")

    @patch("snatcharr.cli.configure_logging")
    @patch("snatcharr.cli.Config.load")
    @patch.dict(os.environ, {}, clear=True)
    def test_config_overrides_default(self, mock_config_load: patch, mock_configure: patch) -> None:
        """Config file should override default when no CLI or env."""
        mock_config_load.return_value = Config(logging=LoggingConfig(level="warning"))

        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        mock_configure.assert_called_once_with("warning")

    @patch("snatcharr.cli.configure_logging")
    @patch.dict(os.environ, {}, clear=True)
    def test_default_is_info(self, mock_configure: patch, tmp_path: Path) -> None:
        """Should fall back to info without CLI flag, env or config file."""
        with patch.object(Path, "home", return_value=tmp_path):
            result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        mock_configure.assert_called_once_with("info")


class TestConfigureLogging:
    """Tests for the logging helpers."""

    def test_parse_log_level(self) -> None:
        """Should map names to levels regardless of case."""
        assert parse_log_level("DEBUG") == logging.DEBUG
        assert parse_log_level(" warning ") == logging.WARNING

    def test_parse_log_level_invalid(self) -> None:
        """Should list the valid levels in the error."""
        with pytest.raises(ValueError, match="Valid levels: debug, info, warning, error, critical"):
            parse_log_level("verbose")

    def test_http_loggers_quiet_unless_debug(self) -> None:
        """Should keep httpx at WARNING unless debugging."""
        configure_logging("info")
        assert logging.getLogger("httpx").level == logging.WARNING

        configure_logging("debug")
        assert logging.getLogger("httpx").level == logging.DEBUG
        assert logging.getLogger().level == logging.DEBUG

        configure_logging("info")
