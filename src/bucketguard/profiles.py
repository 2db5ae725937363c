"""Preconfigured rate limit profiles.

Each profile becomes an independent :class:`RateLimiter` with its own
bucket store, so exhausting one profile never touches another.
"""

from __future__ import annotations

from typing import Optional

from bucketguard.config import ProfileConfig, default_profiles
from bucketguard.rate_limiter import RateLimitConfig, RateLimiter

# auth: 5 / 15 min, api: 100 / min, general: 1000 / min, sensitive: 3 / min
PROFILES: dict[str, ProfileConfig] = default_profiles()


def get_profile(name: str,
                profiles: Optional[dict[str, ProfileConfig]] = None) -> ProfileConfig:
    """Look up a profile by name. Raises KeyError for unknown names."""
    profiles = PROFILES if profiles is None else profiles
    try:
        return profiles[name]
    except KeyError:
        known = ", ".join(sorted(profiles))
        raise KeyError(f"Unknown profile '{name}' (known: {known})") from None


def profile_config(profile: ProfileConfig, **overrides) -> RateLimitConfig:
    """Build a limiter config from a profile; overrides go straight through."""
    return RateLimitConfig(
        requests=profile.requests, window=profile.window_ms, **overrides,
    )


def create_rate_limiter(name: str,
                        profiles: Optional[dict[str, ProfileConfig]] = None,
                        **overrides) -> RateLimiter:
    return RateLimiter(profile_config(get_profile(name, profiles), **overrides))


def build_limiters(profiles: Optional[dict[str, ProfileConfig]] = None,
                   **overrides) -> dict[str, RateLimiter]:
    """One limiter per profile, keyed by profile name."""
    profiles = PROFILES if profiles is None else profiles
    return {
        name: RateLimiter(profile_config(profile, **overrides))
        for name, profile in profiles.items()
    }
