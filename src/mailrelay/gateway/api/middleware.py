"""
Middleware components for the mailrelay gateway API.

This module provides rate limiting, request ID tracking, request timing and
logging, and security response headers.
"""

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from functools import wraps
from threading import Lock
from typing import Any, Callable, Optional, TypeVar, Union

from flask import Flask, Response, abort, g, request

from ..config import GatewaySettings
from ..context import get_relay_context

# Configure module logger
logger = logging.getLogger(__name__)

# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., Any])

API_LIMITER = "api"
SEND_LIMITER = "send"

API_PATH_PREFIX = "/api/"


# =============================================================================
# Rate Limiting
# =============================================================================


@dataclass
class RateLimitEntry:
    """Entry for tracking rate limit state."""

    count: int = 0
    window_start: float = field(default_factory=time.time)
    lock: Lock = field(default_factory=Lock)


def client_key() -> str:
    """
    Identify the client for rate limiting.

    Uses the peer address. Forwarded headers are only honoured through
    ``ProxyFix`` when the gateway is configured to trust a proxy.
    """
    return f"ip:{request.remote_addr or 'unknown'}"


class InMemoryRateLimiter:
    """
    In-memory fixed-window rate limiter.

    Counts requests per client key within a window and resets the count when
    the window expires. Thread-safe for use with multi-threaded Flask
    applications.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 60,
        name: str = API_LIMITER,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            max_requests: Maximum number of requests per window.
            window_seconds: Window size in seconds.
            name: Limiter name, used in log messages.
            clock: Time source returning seconds.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._buckets: dict[str, RateLimitEntry] = defaultdict(
            lambda: RateLimitEntry(window_start=self._clock()))
        self._buckets_lock = Lock()
        self._last_cleanup = clock()
        self._cleanup_interval = 300  # 5 minutes

    def _cleanup_old_entries(self, current_time: float) -> None:
        """Remove expired rate limit entries."""
        if current_time - self._last_cleanup < self._cleanup_interval:
            return

        with self._buckets_lock:
            if current_time - self._last_cleanup < self._cleanup_interval:
                return

            expired_keys = [
                key for key, entry in self._buckets.items()
                if current_time - entry.window_start > self.window_seconds * 2
            ]
            for key in expired_keys:
                del self._buckets[key]

            self._last_cleanup = current_time

        if expired_keys:
            logger.debug(
                "Cleaned up %d expired %s rate limit entries",
                len(expired_keys),
                self.name,
            )

    def is_allowed(self, key: Optional[str] = None) -> tuple[bool, dict[str, Any]]:
        """
        Check if a request is allowed under rate limiting.

        Args:
            key: Optional custom key. If not provided, the client key is used.

        Returns:
            Tuple of (is_allowed, rate_limit_info).
        """
        current_time = self._clock()
        self._cleanup_old_entries(current_time)

        if key is None:
            key = client_key()

        with self._buckets_lock:
            entry = self._buckets[key]

        with entry.lock:
            # Reset window if expired
            if current_time - entry.window_start >= self.window_seconds:
                entry.count = 0
                entry.window_start = current_time

            entry.count += 1
            remaining = max(0, self.max_requests - entry.count)
            reset_time = entry.window_start + self.window_seconds

            rate_limit_info = {
                "limit": self.max_requests,
                "remaining": remaining,
                "reset": int(reset_time),
                "reset_after": max(0, int(reset_time - current_time)),
            }

            return entry.count <= self.max_requests, rate_limit_info

    def reset(self, key: Optional[str] = None) -> None:
        """
        Reset rate limit for a key.

        Args:
            key: Key to reset. If not provided, the client key is used.
        """
        if key is None:
            key = client_key()

        with self._buckets_lock:
            self._buckets.pop(key, None)


class RedisRateLimiter:
    """
    Redis-backed rate limiter for multi-process deployments.

    Uses Redis INCR and EXPIRE for atomic rate limit tracking.
    """

    def __init__(
        self,
        redis_url: str,
        max_requests: int = 100,
        window_seconds: int = 60,
        name: str = API_LIMITER,
        key_prefix: str = "mailrelay:ratelimit:",
        client: Optional[Any] = None,
    ) -> None:
        """
        Initialize the Redis rate limiter.

        Args:
            redis_url: Redis connection URL.
            max_requests: Maximum number of requests per window.
            window_seconds: Window size in seconds.
            name: Limiter name; part of every key.
            key_prefix: Prefix for Redis keys.
            client: Optional ready-made Redis client.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self.key_prefix = f"{key_prefix}{name}:"
        self._redis: Optional[Any] = client
        self._redis_url = redis_url

    @property
    def redis(self) -> Any:
        """Lazy-load Redis connection."""
        if self._redis is None:
            try:
                import redis
            except ImportError:
                raise RuntimeError(
                    "redis package is required for Redis rate limiting "
                    "(pip install mailrelay[redis])"
                )
            self._redis = redis.from_url(self._redis_url)
        return self._redis

    def is_allowed(self, key: Optional[str] = None) -> tuple[bool, dict[str, Any]]:
        """
        Check if a request is allowed under rate limiting.

        Args:
            key: Optional custom key.

        Returns:
            Tuple of (is_allowed, rate_limit_info).
        """
        from redis.exceptions import RedisError

        redis_key = f"{self.key_prefix}{key or client_key()}"
        current_time = time.time()

        try:
            pipe = self.redis.pipeline()
            pipe.incr(redis_key)
            pipe.ttl(redis_key)
            count, ttl = pipe.execute()

            # Set expiration if this is a new key
            if ttl == -1:
                self.redis.expire(redis_key, self.window_seconds)
                ttl = self.window_seconds
        except RedisError as e:
            logger.error("Redis rate limiter error: %s", e)
            # Fail open - allow request if Redis is unavailable
            return True, {
                "limit": self.max_requests,
                "remaining": self.max_requests,
                "reset": int(current_time + self.window_seconds),
                "reset_after": self.window_seconds,
            }

        rate_limit_info = {
            "limit": self.max_requests,
            "remaining": max(0, self.max_requests - count),
            "reset": int(current_time + ttl),
            "reset_after": max(0, ttl),
        }
        return count <= self.max_requests, rate_limit_info

    def reset(self, key: Optional[str] = None) -> None:
        """Reset rate limit for a key."""
        from redis.exceptions import RedisError

        try:
            self.redis.delete(f"{self.key_prefix}{key or client_key()}")
        except RedisError as e:
            logger.error("Redis rate limiter reset error: %s", e)


RateLimiter = Union[InMemoryRateLimiter, RedisRateLimiter]


def create_rate_limiter(
    settings: GatewaySettings,
    name: str,
    max_requests: int,
    window_seconds: int,
) -> RateLimiter:
    """
    Create a rate limiter using the configured storage backend.

    Args:
        settings: Gateway settings.
        name: Limiter name.
        max_requests: Maximum number of requests per window.
        window_seconds: Window size in seconds.

    Returns:
        Rate limiter instance.
    """
    if settings.rate_limit_storage == "redis" and settings.redis_url:
        return RedisRateLimiter(
            redis_url=settings.redis_url,
            max_requests=max_requests,
            window_seconds=window_seconds,
            name=name,
        )
    return InMemoryRateLimiter(
        max_requests=max_requests,
        window_seconds=window_seconds,
        name=name,
    )


def create_rate_limiters(settings: GatewaySettings) -> dict[str, RateLimiter]:
    """Build the global API limiter and the stricter send limiter."""
    return {
        API_LIMITER: create_rate_limiter(
            settings,
            API_LIMITER,
            settings.rate_limit_requests,
            settings.rate_limit_window,
        ),
        SEND_LIMITER: create_rate_limiter(
            settings,
            SEND_LIMITER,
            settings.send_rate_limit_requests,
            settings.send_rate_limit_window,
        ),
    }


def check_rate_limit(name: str) -> None:
    """
    Count the current request against the named limiter.

    Aborts with 429 when the limit is exceeded.
    """
    context = get_relay_context()
    if not context.gateway_settings.rate_limit_enabled:
        return

    limiter = context.limiters.get(name)
    if limiter is None:
        return

    is_allowed, info = limiter.is_allowed()

    # Exposed through the X-RateLimit-* response headers
    g.rate_limit_info = info

    if not is_allowed:
        logger.warning(
            "Rate limit exceeded",
            extra={
                "request_id": getattr(g, "request_id", None),
                "limiter": name,
                "client_key": client_key(),
                "limit": info["limit"],
            },
        )
        abort(429, description="Too many requests, please try again later.")


def rate_limit(name: str = SEND_LIMITER) -> Callable[[F], F]:
    """
    Rate limiting decorator for Flask routes.

    Args:
        name: Name of the limiter to count against.

    Returns:
        Decorated function.
    """
    def decorator(f: F) -> F:
        @wraps(f)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            check_rate_limit(name)
            return f(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


def api_rate_limit_middleware(app: Flask) -> None:
    """
    Register the global rate limit for every ``/api/`` route.

    Args:
        app: Flask application instance.
    """

    @app.before_request
    def limit_api_requests() -> None:
        if request.method == "OPTIONS":
            return
        if request.path.startswith(API_PATH_PREFIX):
            check_rate_limit(API_LIMITER)


def add_rate_limit_headers(response: Response) -> Response:
    """
    Add rate limit headers to response.

    Args:
        response: Flask response object.

    Returns:
        Response with rate limit headers.
    """
    info = getattr(g, "rate_limit_info", None)
    if info:
        response.headers["X-RateLimit-Limit"] = str(info["limit"])
        response.headers["X-RateLimit-Remaining"] = str(info["remaining"])
        response.headers["X-RateLimit-Reset"] = str(info["reset"])
        if response.status_code == 429:
            response.headers["Retry-After"] = str(info["reset_after"])

    return response


# =============================================================================
# Request ID Tracking
# =============================================================================


def request_id_middleware(app: Flask) -> None:
    """
    Register request ID tracking middleware.

    Args:
        app: Flask application instance.
    """

    @app.before_request
    def add_request_id() -> None:
        """Add request ID to the request context."""
        # Use existing request ID from header or generate new one
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    @app.after_request
    def add_request_id_header(response: Response) -> Response:
        """Add request ID to response headers."""
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response


# =============================================================================
# Timing and Request Logging
# =============================================================================


def timing_middleware(app: Flask, settings: GatewaySettings) -> None:
    """
    Register timing and request logging middleware.

    Args:
        app: Flask application instance.
        settings: Gateway settings.
    """

    @app.before_request
    def start_timer() -> None:
        """Record request start time."""
        g.request_start_time = time.perf_counter()

        if settings.log_requests:
            logger.info(
                "Request received",
                extra={
                    "request_id": getattr(g, "request_id", None),
                    "method": request.method,
                    "path": request.path,
                    "remote_addr": request.remote_addr,
                    "user_agent": request.headers.get("User-Agent"),
                },
            )

    @app.after_request
    def record_timing(response: Response) -> Response:
        """Add the timing header and log the response."""
        start_time = getattr(g, "request_start_time", None)
        if start_time is None:
            return response

        response_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Response-Time"] = f"{response_time_ms:.2f}ms"

        if settings.log_requests:
            log_data = {
                "request_id": getattr(g, "request_id", None),
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "response_time_ms": round(response_time_ms, 2),
                "content_length": response.content_length,
            }

            # Use appropriate log level based on status code
            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

        return response


# =============================================================================
# Security Headers
# =============================================================================


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

HSTS_HEADER = "max-age=15552000; includeSubDomains"


def security_headers_middleware(app: Flask) -> None:
    """
    Register security response headers.

    Args:
        app: Flask application instance.
    """

    @app.after_request
    def add_security_headers(response: Response) -> Response:
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        response.headers.setdefault("Strict-Transport-Security", HSTS_HEADER)
        return response


def register_middleware(app: Flask, settings: GatewaySettings) -> None:
    """
    Register all middleware with the Flask application.

    Args:
        app: Flask application instance.
        settings: Gateway settings.
    """
    request_id_middleware(app)
    timing_middleware(app, settings)
    api_rate_limit_middleware(app)
    security_headers_middleware(app)

    # Add rate limit headers to all responses
    app.after_request(add_rate_limit_headers)

    logger.debug("Middleware registered")


# Export public components
__all__ = [
    # Rate limiting
    "API_LIMITER",
    "SEND_LIMITER",
    "InMemoryRateLimiter",
    "RateLimiter",
    "RedisRateLimiter",
    "check_rate_limit",
    "client_key",
    "create_rate_limiter",
    "create_rate_limiters",
    "rate_limit",
    # Request ID
    "request_id_middleware",
    # Timing
    "timing_middleware",
    # Security headers
    "SECURITY_HEADERS",
    "security_headers_middleware",
    # Registration
    "register_middleware",
]
