from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from itcrm.api.errors import app_error_response
from itcrm.core.auth import decode_session_token, extract_token
from itcrm.core.config import get_settings
from itcrm.core.errors import RateLimitedError, UnauthenticatedError


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


class _TokenBucketLimiter:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}

    def take(self, client_key: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        key = (client_key, route_group)

        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _BucketState(tokens=float(capacity), last_refill=now)
                self._buckets[key] = bucket

            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(float(capacity), bucket.tokens + elapsed * refill_rate)
            bucket.last_refill = now

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_rate))

            bucket.tokens -= 1.0
            return True, 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = _TokenBucketLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-user token bucket on mutating /api requests, one bucket per resource group."""

    mutating_methods = {"POST", "PATCH", "PUT", "DELETE"}

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)
        if not request.url.path.startswith("/api/") or request.method.upper() not in self.mutating_methods:
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            client_key=_resolve_client_key(request),
            route_group=_resolve_route_group(request.url.path),
            capacity=settings.rate_limit_mutations_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        response = app_error_response(request, RateLimitedError())
        response.headers["Retry-After"] = str(retry_after)
        return response


def _resolve_route_group(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return "api"
    if parts[1] == "admin" and len(parts) >= 3:
        return f"admin.{parts[2]}"
    return parts[1]


def _resolve_client_key(request: Request) -> str:
    token, _ = extract_token(request)
    if token:
        try:
            principal = decode_session_token(token)
        except UnauthenticatedError:
            principal = None
        if principal is not None:
            return f"user:{principal.user_id}"
    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def reset_rate_limiter() -> None:
    _limiter.clear()
