"""Shared constants for bucketguard."""

# Time
MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND

# Key derivation
UNKNOWN_CLIENT = "unknown"
KEY_LENGTH = 32  # chars of base64(ip:user-agent) kept as the bucket key

# Response headers
HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"

# 429 body
TOO_MANY_REQUESTS = "Too Many Requests"
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."

# Named profiles: name -> (requests, window in ms)
DEFAULT_PROFILES = {
    "auth": (5, 15 * MS_PER_MINUTE),
    "api": (100, MS_PER_MINUTE),
    "general": (1000, MS_PER_MINUTE),
    "sensitive": (3, MS_PER_MINUTE),
}
DEFAULT_PROFILE = "api"

# HTTP server
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8420
