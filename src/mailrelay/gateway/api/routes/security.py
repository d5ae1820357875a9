"""
Security routes for the mailrelay gateway API.
"""

import logging

from flask import Blueprint, Response, g, jsonify

from ..csrf import generate_token, set_token_cookie
from ..schemas import CsrfTokenResponse

logger = logging.getLogger(__name__)


def create_security_blueprint() -> Blueprint:
    """
    Create the security blueprint.

    Returns:
        Blueprint for anti-forgery token routes.
    """
    bp = Blueprint("security", __name__)

    @bp.route("/csrf-token", methods=["GET"])
    def csrf_token() -> Response:
        """
        Issue an anti-forgery token.

        The token is returned in the body and set as the ``XSRF-TOKEN``
        cookie; clients echo it in ``X-CSRF-Token``. The route needs
        no API key.
        """
        token = generate_token()
        response = jsonify(CsrfTokenResponse(token=token).to_response())
        set_token_cookie(response, token)
        logger.debug(
            "CSRF token issued",
            extra={"request_id": getattr(g, "request_id", None)},
        )
        return response

    return bp
