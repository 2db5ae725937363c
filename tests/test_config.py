"""Tests for YAML configuration loading."""

import pytest

from bucketguard.config import (
    BucketGuardConfig,
    ProfileConfig,
    ServerConfig,
    load_config,
)
from bucketguard.constants import DEFAULT_PORT


def _write(tmp_path, text):
    path = tmp_path / "bucketguard.yaml"
    path.write_text(text)
    return path


class TestDefaults:
    def test_builtin_profiles(self):
        config = BucketGuardConfig()
        profiles = config.server.profiles
        assert set(profiles) == {"auth", "api", "general", "sensitive"}
        assert profiles["auth"] == ProfileConfig(requests=5, window_ms=900_000)
        assert profiles["api"] == ProfileConfig(requests=100, window_ms=60_000)
        assert config.server.default_profile == "api"
        assert config.log_level == "INFO"

    def test_profiles_not_shared_between_instances(self):
        a = ServerConfig()
        b = ServerConfig()
        a.profiles["extra"] = ProfileConfig(requests=1, window_ms=1)
        assert "extra" not in b.profiles


class TestProfileValidation:
    @pytest.mark.parametrize("requests,window", [
        (0, 1000), (5, -1), (1.5, 1000), ("10", 1000), (True, 1000),
    ])
    def test_invalid(self, requests, window):
        with pytest.raises(ValueError):
            ProfileConfig(requests=requests, window_ms=window)


class TestLoadConfig:
    def test_empty_file(self, tmp_path):
        config = load_config(_write(tmp_path, ""))
        assert config.server.port == DEFAULT_PORT
        assert "auth" in config.server.profiles

    def test_full_file(self, tmp_path):
        config = load_config(_write(tmp_path, """
log_level: DEBUG
server:
  host: 0.0.0.0
  port: 9000
  default_profile: waitlist
  profiles:
    waitlist:
      requests: 10
      window_ms: 60000
    auth:
      requests: 2
      window_ms: 300000
"""))
        assert config.log_level == "DEBUG"
        assert config.server.host == "0.0.0.0"
        assert config.server.port == 9000
        assert config.server.default_profile == "waitlist"
        assert config.server.profiles["waitlist"] == ProfileConfig(10, 60_000)
        assert config.server.profiles["auth"] == ProfileConfig(2, 300_000)
        # untouched built-ins survive the merge
        assert config.server.profiles["general"].requests == 1000

    def test_missing_profile_field(self, tmp_path):
        path = _write(tmp_path, """
server:
  profiles:
    broken:
      requests: 10
""")
        with pytest.raises(ValueError, match="window_ms"):
            load_config(path)

    def test_invalid_profile_value(self, tmp_path):
        path = _write(tmp_path, """
server:
  profiles:
    api:
      requests: 0
      window_ms: 1000
""")
        with pytest.raises(ValueError, match="positive integer"):
            load_config(path)

    def test_unknown_default_profile(self, tmp_path):
        path = _write(tmp_path, """
server:
  default_profile: nope
""")
        with pytest.raises(ValueError, match="nope"):
            load_config(path)
