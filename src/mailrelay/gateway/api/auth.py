"""
API key authentication for the mailrelay gateway.

Clients present the shared key in the ``X-API-Key`` header. When no key is
configured the check is disabled, which is only meant for local
development.
"""

import hmac
import logging
import secrets
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from flask import g, request

from ...common.exceptions import AuthenticationError
from ..context import get_relay_context

# Configure module logger
logger = logging.getLogger(__name__)

# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., Any])

API_KEY_HEADER = "X-API-Key"


def generate_api_key(num_bytes: int = 32) -> str:
    """Generate a random hex API key."""
    return secrets.token_hex(num_bytes)


def verify_api_key(provided: Optional[str], expected: str) -> bool:
    """Compare keys in constant time."""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_api_key(f: F) -> F:
    """
    Decorator to require a valid API key for a route.

    CORS preflight requests pass through unchecked.

    Args:
        f: Function to decorate.

    Returns:
        Decorated function.

    Raises:
        AuthenticationError: If the key is missing or wrong.
    """
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if request.method == "OPTIONS":
            return f(*args, **kwargs)

        expected = get_relay_context().gateway_settings.api_key
        if expected is None:
            return f(*args, **kwargs)

        provided = request.headers.get(API_KEY_HEADER)
        if not provided:
            logger.warning(
                "Request without API key",
                extra={
                    "request_id": getattr(g, "request_id", None),
                    "path": request.path,
                    "remote_addr": request.remote_addr,
                },
            )
            raise AuthenticationError("API key is required")

        if not verify_api_key(provided, expected.get_secret_value()):
            logger.warning(
                "Invalid API key",
                extra={
                    "request_id": getattr(g, "request_id", None),
                    "path": request.path,
                    "remote_addr": request.remote_addr,
                },
            )
            raise AuthenticationError("Invalid API key")

        g.api_key_verified = True
        return f(*args, **kwargs)

    return decorated  # type: ignore
