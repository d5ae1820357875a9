"""
Flask application factory for the mailrelay gateway.

This module provides the main application factory for creating and configuring
the Flask application with all necessary components, extensions, blueprints,
and middleware.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import sentry_sdk
from flask import Flask, Response, g, jsonify
from flask_cors import CORS
from sentry_sdk.integrations.flask import FlaskIntegration
from werkzeug.exceptions import HTTPException
from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.middleware.proxy_fix import ProxyFix

from ..__version__ import __version__
from ..common.config import Settings, get_settings
from ..common.exceptions import MailRelayError
from .api.auth import API_KEY_HEADER
from .api.csrf import CSRF_HEADER_NAME
from .api.middleware import create_rate_limiters, register_middleware
from .api.routes import register_blueprints
from .api.schemas import ErrorResponse, HealthResponse
from .config import GatewaySettings, get_gateway_settings
from .context import RelayContext, get_relay_context, init_relay_context
from .pipeline import SendPipeline
from .screening.attachments import UploadStore
from .screening.scanner import MalwareScanner, create_malware_scanner
from .smtp.dispatcher import MailDispatcher, TransportState

# Configure module logger
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    gateway_settings: Optional[GatewaySettings] = None,
    dispatcher: Optional[MailDispatcher] = None,
    scanner: Optional[MalwareScanner] = None,
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        settings: Application settings. Loaded from the environment if not
            provided.
        gateway_settings: Gateway settings. Loaded from the environment if
            not provided.
        dispatcher: Mail dispatcher. Built from the SMTP settings if not
            provided.
        scanner: Malware scanner. Built from the scan settings if not
            provided; absent when scanning is inactive.

    Returns:
        Configured Flask application instance.

    Raises:
        ConfigurationError: If the transport configuration is incomplete
            or diagnostic mode is requested in production.
    """
    if settings is None:
        settings = get_settings()
    if gateway_settings is None:
        gateway_settings = get_gateway_settings()

    _init_sentry(settings)

    # Create Flask application
    app = Flask(__name__)

    _configure_app(app, settings, gateway_settings)
    _init_extensions(app, gateway_settings)
    _init_components(app, settings, gateway_settings, dispatcher, scanner)

    register_blueprints(app)
    _register_error_handlers(app, settings, gateway_settings)
    register_middleware(app, gateway_settings)
    _register_health_check(app)

    logger.info(
        "Gateway application created",
        extra={
            "host": gateway_settings.host,
            "port": gateway_settings.port,
            "environment": settings.environment,
            "debug": gateway_settings.debug,
        },
    )

    return app


def _init_sentry(settings: Settings) -> None:
    """Initialize error reporting when a DSN is configured."""
    if not settings.sentry_dsn:
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[FlaskIntegration()],
        environment=settings.environment,
        release=f"mailrelay@{__version__}",
        traces_sample_rate=0.0,
        send_default_pii=False,
    )
    logger.info("Sentry error reporting enabled")


def _configure_app(
    app: Flask, settings: Settings, gateway_settings: GatewaySettings
) -> None:
    """
    Configure Flask application settings.

    Args:
        app: Flask application instance.
        settings: Application settings.
        gateway_settings: Gateway settings.
    """
    app.config["DEBUG"] = gateway_settings.debug
    app.config["SECRET_KEY"] = gateway_settings.secret_key
    app.config["MAX_CONTENT_LENGTH"] = gateway_settings.max_content_length

    # Store settings in app config for access in routes
    app.config["GATEWAY_SETTINGS"] = gateway_settings

    # Configure JSON settings
    app.json.sort_keys = False
    app.json.ensure_ascii = False

    if gateway_settings.trust_proxy:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)  # type: ignore[method-assign]


def _init_extensions(app: Flask, gateway_settings: GatewaySettings) -> None:
    """
    Initialize Flask extensions.

    Args:
        app: Flask application instance.
        gateway_settings: Gateway settings.
    """
    if gateway_settings.cors_enabled:
        CORS(
            app,
            origins=gateway_settings.cors_origins,
            supports_credentials=gateway_settings.cors_allow_credentials,
            max_age=gateway_settings.cors_max_age,
            allow_headers=[
                "Content-Type",
                "X-Request-ID",
                API_KEY_HEADER,
                CSRF_HEADER_NAME,
            ],
            expose_headers=["X-Request-ID", "X-Response-Time"],
        )
        logger.debug(
            "CORS initialized",
            extra={"origins": gateway_settings.cors_origins},
        )


def _init_components(
    app: Flask,
    settings: Settings,
    gateway_settings: GatewaySettings,
    dispatcher: Optional[MailDispatcher],
    scanner: Optional[MalwareScanner],
) -> None:
    """Build the dispatcher, scanner and send pipeline for this app."""
    if dispatcher is None:
        settings.validate_required()
        dispatcher = MailDispatcher.from_settings(settings.smtp)

    if scanner is None:
        scanner = create_malware_scanner(settings.scan)

    store = UploadStore(settings.upload_dir)
    pipeline = SendPipeline(
        dispatcher=dispatcher,
        store=store,
        scanner=scanner,
        block_on_scan_timeout=settings.scan.timeout_policy == "block",
        alert_recipient=settings.scan.alert_recipient,
    )

    init_relay_context(app, RelayContext(
        settings=settings,
        gateway_settings=gateway_settings,
        dispatcher=dispatcher,
        store=store,
        pipeline=pipeline,
        scanner=scanner,
        limiters=create_rate_limiters(gateway_settings),
    ))

    logger.info(
        "Relay components initialized",
        extra={
            "mode": dispatcher.mode.value,
            "scanning": scanner is not None,
            "upload_dir": str(store.upload_dir),
        },
    )


def _error_response(
    code: int,
    message: str,
    details: Optional[dict] = None,
) -> tuple[Response, int]:
    body = ErrorResponse.create(
        code=code,
        name=HTTP_STATUS_CODES.get(code, "Unknown Error"),
        message=message,
        request_id=getattr(g, "request_id", None),
        details=details,
    )
    return jsonify(body.model_dump(mode="json")), code


def _register_error_handlers(
    app: Flask, settings: Settings, gateway_settings: GatewaySettings
) -> None:
    """
    Register error handlers for the application.

    Args:
        app: Flask application instance.
        settings: Application settings.
        gateway_settings: Gateway settings.
    """
    expose_internals = gateway_settings.debug or settings.debug

    @app.errorhandler(MailRelayError)
    def handle_relay_error(error: MailRelayError) -> tuple[Response, int]:
        """Translate service errors using their HTTP status."""
        status = error.http_status
        log_data = {
            "request_id": getattr(g, "request_id", None),
            "error_type": type(error).__name__,
            "status_code": status,
        }

        if status >= 500:
            logger.error("Request failed: %s", error, extra=log_data)
            sentry_sdk.capture_exception(error)
            if not expose_internals:
                return _error_response(status, error.message)
        else:
            logger.warning("Request refused: %s", error.message, extra=log_data)

        return _error_response(status, error.message, error.details or None)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException) -> tuple[Response, int]:
        """Handle HTTP exceptions and return JSON response."""
        code = error.code or 500
        return _error_response(
            code, error.description or HTTP_STATUS_CODES.get(code, ""))

    @app.errorhandler(Exception)
    def handle_generic_exception(error: Exception) -> tuple[Response, int]:
        """Handle unhandled exceptions and return JSON response."""
        logger.exception(
            "Unhandled exception",
            extra={
                "request_id": getattr(g, "request_id", None),
                "error": str(error),
            },
        )
        sentry_sdk.capture_exception(error)

        # Don't expose internal error details in production
        if expose_internals:
            message = str(error)
        else:
            message = "An internal server error occurred"

        return _error_response(500, message)

    logger.debug("Error handlers registered")


def _register_health_check(app: Flask) -> None:
    """
    Register the banner and health check endpoints.

    Args:
        app: Flask application instance.
    """

    @app.route("/", methods=["GET"])
    def index() -> tuple[Response, int]:
        return jsonify({"message": "Welcome to the mailrelay API"}), 200

    @app.route("/health", methods=["GET"])
    def health_check() -> tuple[Response, int]:
        """
        Health check endpoint.

        Returns basic health status of the gateway service.
        """
        response = HealthResponse(status="ok", version=__version__)
        return jsonify(response.model_dump(mode="json", exclude_none=True)), 200

    @app.route("/health/ready", methods=["GET"])
    def readiness_check() -> tuple[Response, int]:
        """
        Readiness check endpoint.

        Reports the transport lifecycle state without contacting the relay.
        A failed transport makes the service not ready.
        """
        context = get_relay_context()
        state = context.dispatcher.state
        checks = {
            "transport": state.value,
            "scanner": "enabled" if context.scanner is not None else "disabled",
        }

        ready = state != TransportState.FAILED
        response = HealthResponse(
            status="ready" if ready else "not_ready",
            version=__version__,
            checks=checks,
        )
        return jsonify(response.model_dump(mode="json")), 200 if ready else 503

    @app.route("/health/live", methods=["GET"])
    def liveness_check() -> tuple[Response, int]:
        """
        Liveness check endpoint.

        Returns whether the service is alive and should not be restarted.
        """
        response = {
            "status": "alive",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return jsonify(response), 200

    logger.debug("Health check endpoints registered")
