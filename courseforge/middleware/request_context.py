"""Request context middleware: request id, timing, access log and rate limiting.

Generation endpoints are expensive, so a request to ``/api/generation/``
draws ``settings.generation_request_weight`` tokens from the caller's
bucket instead of one. The bucket arithmetic is the pure function
``check_rate_limit`` so it can be tested without a server.
"""

import logging
import threading
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..core.config import settings
from ..core.logging_config import request_id_var

logger = logging.getLogger(__name__)

# {caller_key: (available_tokens, last_refill_timestamp)}
_rate_buckets: dict[str, tuple[float, float]] = {}
_rate_lock = threading.Lock()

_EVICT_AGE = 120.0
_EVICT_THRESHOLD = 1000

_EXEMPT_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})
_GENERATION_PREFIX = "/api/generation/"


def check_rate_limit(
    bucket: dict[str, tuple[float, float]],
    key: str,
    max_per_minute: int,
    now: Optional[float] = None,
    cost: float = 1.0,
) -> tuple[bool, float]:
    """Token bucket check for *key*, drawing *cost* tokens when allowed.

    The bucket holds at most ``max_per_minute`` tokens and refills at
    ``max_per_minute / 60`` per second. Returns ``(allowed, retry_after)``
    where *retry_after* is the seconds until *cost* tokens are available.
    A request costing more than the bucket's capacity is charged the full
    capacity, so it is allowed once the bucket is full.
    """
    if max_per_minute <= 0:
        return True, 0.0
    if now is None:
        now = time.monotonic()

    if len(bucket) > _EVICT_THRESHOLD:
        cutoff = now - _EVICT_AGE
        for stale in [k for k, (_, ts) in bucket.items() if ts < cutoff]:
            del bucket[stale]

    capacity = float(max_per_minute)
    cost = min(max(cost, 0.0), capacity)
    refill_rate = capacity / 60.0

    if key in bucket:
        tokens, last_refill = bucket[key]
        tokens = min(capacity, tokens + (now - last_refill) * refill_rate)
    else:
        tokens = capacity

    if tokens >= cost:
        bucket[key] = (tokens - cost, now)
        return True, 0.0

    bucket[key] = (tokens, now)
    return False, (cost - tokens) / refill_rate


def _caller_key(request: Request) -> str:
    """Owner header when auth is off, else the client address."""
    if not settings.auth_enabled:
        owner = request.headers.get("x-owner-id")
        if owner:
            return f"owner:{owner.strip()}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _request_cost(request: Request) -> float:
    if request.method == "POST" and request.url.path.startswith(_GENERATION_PREFIX):
        return settings.generation_request_weight
    return 1.0


class RequestContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request_id_var.set(rid)

        if request.url.path not in _EXEMPT_PATHS:
            key = _caller_key(request)
            with _rate_lock:
                allowed, retry_after = check_rate_limit(
                    _rate_buckets, key, settings.rate_limit_per_minute, cost=_request_cost(request)
                )
            if not allowed:
                logger.warning(
                    "Rate limit exceeded",
                    extra={"client": key, "path": request.url.path, "retry_after": round(retry_after, 1)},
                )
                return JSONResponse(
                    status_code=429,
                    content={
                        "error": "RATE_LIMITED",
                        "message": "Too many requests",
                        "details": {"retry_after": round(retry_after, 1)},
                    },
                    headers={"Retry-After": str(int(retry_after) + 1), "X-Request-ID": rid},
                )

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        response.headers["X-Request-ID"] = rid
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
