"""
HTTP API for the mailrelay gateway.

This package provides the route blueprints, request schemas and the
security pipeline (API key, anti-forgery tokens, rate limiting).
"""

from .auth import API_KEY_HEADER, generate_api_key, require_api_key
from .csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, require_csrf
from .middleware import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    create_rate_limiters,
    rate_limit,
    register_middleware,
)
from .routes import register_blueprints

__all__ = [
    "API_KEY_HEADER",
    "CSRF_COOKIE_NAME",
    "CSRF_HEADER_NAME",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "create_rate_limiters",
    "generate_api_key",
    "rate_limit",
    "register_blueprints",
    "register_middleware",
    "require_api_key",
    "require_csrf",
]
