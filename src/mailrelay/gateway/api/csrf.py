"""
Anti-forgery tokens for state-changing gateway routes.

A token is issued by ``GET /api/csrf-token`` both in the response body and in
the ``XSRF-TOKEN`` cookie. Protected requests must echo it in the
``X-CSRF-Token`` header; the header and the cookie have to match.
"""

import hmac
import logging
import secrets
from functools import wraps
from typing import Any, Callable, TypeVar

from flask import Response, g, request

from ...common.exceptions import CsrfError
from ..context import get_relay_context

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

CSRF_COOKIE_NAME = "XSRF-TOKEN"
CSRF_HEADER_NAME = "X-CSRF-Token"
TOKEN_BYTES = 32

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def set_token_cookie(response: Response, token: str) -> Response:
    """Attach the token cookie using the configured cookie flags."""
    context = get_relay_context()
    settings = context.gateway_settings
    response.set_cookie(
        CSRF_COOKIE_NAME,
        token,
        max_age=settings.csrf_cookie_max_age,
        httponly=True,
        secure=settings.cookie_secure and context.settings.is_production,
        samesite=settings.cookie_samesite,
    )
    return response


def tokens_match(header_token: str, cookie_token: str) -> bool:
    if not header_token or not cookie_token:
        return False
    return hmac.compare_digest(
        header_token.encode("utf-8"), cookie_token.encode("utf-8"))


def require_csrf(f: F) -> F:
    """
    Decorator to require a matching anti-forgery token.

    Safe methods and disabled CSRF protection pass through.

    Raises:
        CsrfError: If the header is missing or does not match the cookie.
    """
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if request.method in SAFE_METHODS:
            return f(*args, **kwargs)

        if not get_relay_context().gateway_settings.csrf_enabled:
            return f(*args, **kwargs)

        header_token = request.headers.get(CSRF_HEADER_NAME, "")
        cookie_token = request.cookies.get(CSRF_COOKIE_NAME, "")

        if not tokens_match(header_token, cookie_token):
            logger.warning(
                "CSRF token validation failed",
                extra={
                    "request_id": getattr(g, "request_id", None),
                    "path": request.path,
                    "has_header": bool(header_token),
                    "has_cookie": bool(cookie_token),
                },
            )
            raise CsrfError()

        return f(*args, **kwargs)

    return decorated  # type: ignore
