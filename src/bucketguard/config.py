"""YAML configuration loading for bucketguard."""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from bucketguard.constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_PROFILE,
    DEFAULT_PROFILES,
)

logger = logging.getLogger(__name__)


@dataclass
class ProfileConfig:
    requests: int
    window_ms: int

    def __post_init__(self):
        for name in ("requests", "window_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(
                    f"profile {name} must be a positive integer, got {value!r}"
                )


def default_profiles() -> dict[str, ProfileConfig]:
    return {
        name: ProfileConfig(requests=requests, window_ms=window)
        for name, (requests, window) in DEFAULT_PROFILES.items()
    }


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    default_profile: str = DEFAULT_PROFILE
    auth_profile: str = "auth"
    profiles: dict[str, ProfileConfig] = field(default_factory=default_profiles)


@dataclass
class BucketGuardConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "INFO"


def load_config(path: Path) -> BucketGuardConfig:
    """Load configuration from a YAML file.

    Profiles listed in the file are merged over the built-in ones, so a
    file only needs to mention the profiles it changes or adds.
    """
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    config = BucketGuardConfig()

    if "server" in raw:
        s = raw["server"] or {}
        profiles = default_profiles()
        for name, p in (s.get("profiles") or {}).items():
            if not isinstance(p, dict) or "requests" not in p or "window_ms" not in p:
                raise ValueError(
                    f"profile '{name}' needs 'requests' and 'window_ms'"
                )
            profiles[name] = ProfileConfig(
                requests=p["requests"], window_ms=p["window_ms"],
            )
        config.server = ServerConfig(
            host=s.get("host", DEFAULT_HOST),
            port=s.get("port", DEFAULT_PORT),
            default_profile=s.get("default_profile", DEFAULT_PROFILE),
            auth_profile=s.get("auth_profile", "auth"),
            profiles=profiles,
        )
        for name in (config.server.default_profile, config.server.auth_profile):
            if name not in profiles:
                raise ValueError(f"Unknown profile referenced: '{name}'")

    config.log_level = raw.get("log_level", "INFO")
    logger.debug("Loaded config from %s (%d profiles)",
                 path, len(config.server.profiles))
    return config
