"""Tests for the bucketguard CLI."""

import json
import logging
from unittest.mock import patch

from click.testing import CliRunner

from bucketguard.cli import _JsonFormatter, _format_window, cli


def _config_file(tmp_path):
    path = tmp_path / "bucketguard.yaml"
    path.write_text("""
server:
  default_profile: tiny
  profiles:
    tiny:
      requests: 2
      window_ms: 60000
""")
    return path


class TestFormatWindow:
    def test_minutes(self):
        assert _format_window(15 * 60 * 1000) == "15m"

    def test_seconds(self):
        assert _format_window(1500) == "1.5s"


class TestJsonFormatter:
    def test_fields(self):
        record = logging.LogRecord(
            "bucketguard.rate_limiter", logging.WARNING, __file__, 1,
            "Rate limited: key=%s", ("abc",), None,
        )
        data = json.loads(_JsonFormatter().format(record))
        assert data["level"] == "WARNING"
        assert data["logger"] == "bucketguard.rate_limiter"
        assert data["message"] == "Rate limited: key=abc"
        assert "timestamp" in data


class TestProfilesCommand:
    def test_lists_builtins(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["profiles"])
        assert result.exit_code == 0, result.output
        assert "auth" in result.output
        assert "15m" in result.output
        assert "api" in result.output and "(default)" in result.output

    def test_json(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["profiles", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["sensitive"] == {"requests": 3, "window_ms": 60000}

    def test_from_config(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["--config", str(_config_file(tmp_path)), "profiles", "--json"],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["tiny"]["requests"] == 2

    def test_bad_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("server:\n  default_profile: missing\n")
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(path), "profiles"])
        assert result.exit_code != 0
        assert "missing" in result.output


class TestSimulateCommand:
    def test_denies_after_capacity(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["simulate", "--profile", "sensitive", "--count", "5"])
        assert result.exit_code == 0, result.output
        assert result.output.count("allowed  remaining=") == 3
        assert result.output.count("denied") == 2
        assert "3/5 allowed by profile 'sensitive'" in result.output

    def test_default_profile_from_config(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(
            cli, ["-c", str(_config_file(tmp_path)), "simulate", "-n", "3"],
        )
        assert result.exit_code == 0, result.output
        assert "2/3 allowed by profile 'tiny'" in result.output

    def test_unknown_profile(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["simulate", "--profile", "bogus"])
        assert result.exit_code == 2
        assert "Unknown profile 'bogus'" in result.output

    def test_count_must_be_positive(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["simulate", "--count", "0"])
        assert result.exit_code == 2


class TestServeCommand:
    def test_runs_uvicorn_with_overrides(self):
        runner = CliRunner()
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(cli, ["serve", "--host", "0.0.0.0", "--port", "9999"])
        assert result.exit_code == 0, result.output
        mock_run.assert_called_once()
        kwargs = mock_run.call_args.kwargs
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 9999
        assert kwargs["log_level"] == "info"
        assert "0.0.0.0:9999" in result.output
