"""
Blueprint registration for mailrelay gateway API routes.

This module provides the central registration point for all API blueprints.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, Flask, jsonify

from .mail import create_mail_blueprint, run_async
from .security import create_security_blueprint

# Configure module logger
logger = logging.getLogger(__name__)

# API prefix
API_PREFIX = "/api"


def create_api_blueprint() -> Blueprint:
    """
    Create the main API blueprint.

    Returns:
        Blueprint for API routes.
    """
    bp = Blueprint("api", __name__, url_prefix=API_PREFIX)

    @bp.route("/", methods=["GET"])
    def api_root():
        """API root endpoint."""
        return jsonify({
            "api": "mailrelay",
            "status": "operational",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": {
                "send": f"{API_PREFIX}/mail/send",
                "status": f"{API_PREFIX}/mail/status",
                "config": f"{API_PREFIX}/mail/config",
                "csrf_token": f"{API_PREFIX}/csrf-token",
            },
        })

    return bp


def register_blueprints(app: Flask) -> None:
    """
    Register all blueprints with the Flask application.

    Args:
        app: Flask application instance.
    """
    api = create_api_blueprint()

    api.register_blueprint(create_mail_blueprint())
    api.register_blueprint(create_security_blueprint())

    app.register_blueprint(api)

    logger.info(
        "Blueprints registered",
        extra={"blueprints": ["api", "mail", "security"]},
    )


# Export public functions and components
__all__ = [
    "API_PREFIX",
    "create_api_blueprint",
    "create_mail_blueprint",
    "create_security_blueprint",
    "register_blueprints",
    "run_async",
]
