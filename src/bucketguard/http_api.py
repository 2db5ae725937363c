"""HTTP layer for bucketguard.

Maps rate limit decisions onto response headers and 429 responses, and
wires limiters into FastAPI either app-wide (``RateLimitMiddleware``) or
per route (``require_quota``).  ``create_api`` builds a small service that
exposes quota introspection for every configured profile.
"""

from __future__ import annotations

import logging
import math
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from bucketguard.config import ServerConfig
from bucketguard.constants import (
    HEADER_LIMIT,
    HEADER_REMAINING,
    HEADER_RESET,
    HEADER_RETRY_AFTER,
    MS_PER_SECOND,
    RATE_LIMIT_MESSAGE,
    TOO_MANY_REQUESTS,
)
from bucketguard.profiles import build_limiters
from bucketguard.rate_limiter import RateLimiter, RateLimitResult
from bucketguard.sanitize import sanitize_object

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Decision -> response mapping
# ---------------------------------------------------------------------------

def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Headers for a decision; denials also carry Retry-After in seconds."""
    headers = {
        HEADER_LIMIT: str(result.limit),
        HEADER_REMAINING: str(result.remaining),
        HEADER_RESET: str(result.reset),
    }
    if not result.success and result.retry_after is not None:
        headers[HEADER_RETRY_AFTER] = str(
            math.ceil(result.retry_after / MS_PER_SECOND)
        )
    return headers


def rejection_body(result: RateLimitResult) -> dict:
    return {
        "error": TOO_MANY_REQUESTS,
        "message": RATE_LIMIT_MESSAGE,
        "retryAfter": result.retry_after,
    }


def rejection_response(result: RateLimitResult) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content=rejection_body(result),
        headers=rate_limit_headers(result),
    )


class RateLimitExceeded(Exception):
    """Raised by route dependencies when a request is over quota."""

    def __init__(self, result: RateLimitResult):
        self.result = result
        super().__init__(RATE_LIMIT_MESSAGE)


async def _rate_limit_exceeded_handler(request: Request,
                                       exc: RateLimitExceeded) -> JSONResponse:
    return rejection_response(exc.result)


def install_handlers(app: FastAPI) -> None:
    """Render ``RateLimitExceeded`` as the 429 JSON response."""
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ---------------------------------------------------------------------------
# Host wiring
# ---------------------------------------------------------------------------

class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies one limiter to every request passing through the app."""

    def __init__(self, app, limiter: RateLimiter,
                 exempt_paths: tuple[str, ...] = ()):
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = exempt_paths

    async def dispatch(self, request: Request,
                       call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        result = self.limiter.limit(request)
        if not result.success:
            return rejection_response(result)

        response = await call_next(request)
        # Route-level limiters (require_quota) are more specific; keep theirs
        for name, value in rate_limit_headers(result).items():
            response.headers.setdefault(name, value)
        return response


def require_quota(limiter: RateLimiter):
    """FastAPI dependency consuming a token from ``limiter`` per call."""

    async def _dependency(request: Request, response: Response) -> RateLimitResult:
        result = limiter.limit(request)
        if not result.success:
            raise RateLimitExceeded(result)
        response.headers.update(rate_limit_headers(result))
        return result

    return _dependency


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class ProfileModel(BaseModel):
    requests: int
    window_ms: int


class StatusResponse(BaseModel):
    status: str = "ok"
    uptime_seconds: int
    default_profile: str
    profiles: dict[str, ProfileModel]


class QuotaModel(BaseModel):
    limit: int
    remaining: int
    reset: int
    retry_after: int = Field(..., alias="retryAfter")


class LimitsResponse(BaseModel):
    limits: dict[str, QuotaModel]


class VerifyRequest(BaseModel):
    name: str = Field(..., max_length=500)
    email: str = Field(..., max_length=500)
    phone: Optional[str] = Field(None, max_length=100)


class VerifyResponse(BaseModel):
    valid: bool
    fields: dict[str, Optional[str]]
    errors: dict[str, list[str]]


_VERIFY_RULES = {
    "name": {"type": "name"},
    "email": {"type": "email"},
    "phone": {"type": "phone"},
}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_api(settings: Optional[ServerConfig] = None,
               limiters: Optional[dict[str, RateLimiter]] = None) -> FastAPI:
    """Create the FastAPI application.

    Every profile in ``settings`` gets its own limiter.  The default profile
    guards all routes through the middleware; the auth profile additionally
    guards ``/v1/auth/verify``.  Cleanup schedulers run for the lifetime of
    the app.
    """
    settings = settings or ServerConfig()
    limiters = limiters or build_limiters(settings.profiles)
    for name in (settings.default_profile, settings.auth_profile):
        if name not in limiters:
            raise ValueError(f"No limiter for profile referenced: '{name}'")
    start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for limiter in limiters.values():
            limiter.start()
        logger.info("Started cleanup for %d rate limit profile(s)", len(limiters))
        try:
            yield
        finally:
            for limiter in limiters.values():
                limiter.stop()
            logger.info("Stopped rate limit cleanup")

    app = FastAPI(
        title="bucketguard",
        description="Token-bucket rate limiting with quota introspection.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.limiters = limiters
    install_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiters[settings.default_profile],
        exempt_paths=("/v1/limits",),
    )

    @app.get(
        "/v1/status",
        response_model=StatusResponse,
        summary="Service status and configured profiles",
    )
    async def get_status():
        return StatusResponse(
            uptime_seconds=int(time.time() - start_time),
            default_profile=settings.default_profile,
            profiles={
                name: ProfileModel(
                    requests=limiter.config.requests,
                    window_ms=limiter.config.window,
                )
                for name, limiter in limiters.items()
            },
        )

    @app.get(
        "/v1/limits",
        response_model=LimitsResponse,
        response_model_by_alias=True,
        summary="Caller's remaining quota per profile (consumes nothing)",
    )
    async def get_limits(request: Request):
        return LimitsResponse(limits={
            name: QuotaModel(**limiter.check(request).to_dict())
            for name, limiter in limiters.items()
        })

    @app.post(
        "/v1/auth/verify",
        response_model=VerifyResponse,
        dependencies=[Depends(require_quota(limiters[settings.auth_profile]))],
        summary="Validate signup fields under the strict auth profile",
    )
    async def post_verify(req: VerifyRequest):
        sanitized, errors, valid = sanitize_object(req.model_dump(), _VERIFY_RULES)
        if not valid:
            logger.info("Rejected signup fields: %s",
                        {k: v for k, v in errors.items() if v})
        return VerifyResponse(valid=valid, fields=sanitized, errors=errors)

    return app
