"""
Mail routes for the mailrelay gateway API.

This module provides the send endpoint and the SMTP transport status and
configuration endpoints.
"""

import asyncio
import logging
from typing import Any

from flask import Blueprint, Response, current_app, g, jsonify, request
from pydantic import ValidationError as SchemaValidationError
from werkzeug.exceptions import RequestEntityTooLarge

from ....common.exceptions import AttachmentRejectedError, DispatchError, ValidationError
from ...context import get_relay_context
from ...screening.attachments import RejectionReason
from ...smtp.sender import TransportConfig
from ..auth import require_api_key
from ..csrf import require_csrf
from ..middleware import SEND_LIMITER, rate_limit
from ..schemas import (
    ConfigUpdateRequest,
    SendMailResponse,
    StatusResponse,
    TransportConfigResponse,
)

# Configure module logger
logger = logging.getLogger(__name__)

SEND_FIELDS = ("from", "to", "subject", "text")


# =============================================================================
# Helper Functions
# =============================================================================


def run_async(coro):
    """Run an async coroutine synchronously."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def read_send_fields() -> dict[str, Any]:
    """
    Collect the send fields from a JSON or form-encoded body.

    Raises:
        ValidationError: If a JSON body is not an object.
    """
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("body", "must be a JSON object")
        return {name: data.get(name) for name in SEND_FIELDS}
    return {name: request.form.get(name) for name in SEND_FIELDS}


def merge_transport_config(
    current: TransportConfig, update: ConfigUpdateRequest
) -> TransportConfig:
    """
    Build the candidate config; omitted fields keep their current value.

    Stored credentials are only kept while the relay host and port stay the
    same. A different relay gets the credentials given in the update, or none.
    """
    fields = update.model_dump(exclude_none=True)
    host = fields.get("host", current.host)
    port = fields.get("port", current.port)

    if (host, port) == (current.host, current.port):
        username = fields.get("username", current.username)
        password = fields.get("password", current.password)
    else:
        username = fields.get("username")
        password = fields.get("password")

    return TransportConfig(
        host=host,
        port=port,
        secure=fields.get("secure", current.secure),
        username=username,
        password=password,
        sender_address=fields.get("sender_address", current.sender_address),
        timeout=current.timeout,
        verify_ssl=current.verify_ssl,
    )


# =============================================================================
# Blueprint and Routes
# =============================================================================


def create_mail_blueprint() -> Blueprint:
    """
    Create the mail blueprint.

    Returns:
        Blueprint for mail-related routes.
    """
    bp = Blueprint("mail", __name__, url_prefix="/mail")

    @bp.route("/send", methods=["POST"])
    @require_api_key
    @require_csrf
    @rate_limit(SEND_LIMITER)
    def send_mail() -> tuple[Response, int]:
        """
        Relay one message.

        Accepts multipart form data (``from``, ``to``, ``subject``, ``text``
        and an optional ``file``) or a JSON object with the same text fields.

        Returns:
            The relayed message's ID and, in diagnostic mode, a preview link.
        """
        context = get_relay_context()
        try:
            fields = read_send_fields()
            upload = request.files.get("file")
        except RequestEntityTooLarge:
            raise AttachmentRejectedError(
                "file",
                RejectionReason.TOO_LARGE.value,
                {"max_request_size": current_app.config["MAX_CONTENT_LENGTH"]},
            )

        attachment = None
        if upload is not None and upload.filename:
            attachment = context.store.save(upload)

        result = run_async(context.pipeline.process(fields, attachment))

        logger.info(
            "Send request completed",
            extra={
                "request_id": getattr(g, "request_id", None),
                "message_id": result.message_id,
                "has_attachment": attachment is not None,
            },
        )
        return jsonify(SendMailResponse.model_validate(result).to_response()), 200

    @bp.route("/status", methods=["GET"])
    @require_api_key
    def mail_status() -> tuple[Response, int]:
        """
        Verify the SMTP transport.

        Returns:
            ``operational`` with the transport mode, or 500 with ``error``.
        """
        dispatcher = get_relay_context().dispatcher
        try:
            status = run_async(dispatcher.get_status())
        except DispatchError as e:
            logger.error(
                "Transport status check failed: %s",
                e,
                extra={"request_id": getattr(g, "request_id", None)},
            )
            body = StatusResponse(
                status="error",
                message="Email service is not operational",
            )
            return jsonify(body.to_response()), 500

        return jsonify(StatusResponse(**status).to_response()), 200

    @bp.route("/config", methods=["GET"])
    @require_api_key
    def get_mail_config() -> tuple[Response, int]:
        """Return the non-secret SMTP connection parameters."""
        config = get_relay_context().dispatcher.get_config()
        return jsonify(TransportConfigResponse(**config).to_response()), 200

    @bp.route("/config", methods=["PUT"])
    @require_api_key
    @require_csrf
    def update_mail_config() -> tuple[Response, int]:
        """
        Replace the SMTP relay configuration.

        The new relay is verified before it replaces the current one.

        Returns:
            The new non-secret connection parameters.
        """
        dispatcher = get_relay_context().dispatcher

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("body", "must be a JSON object")

        try:
            update = ConfigUpdateRequest.model_validate(data)
        except SchemaValidationError as e:
            raise ValidationError(
                "config",
                "invalid transport configuration",
                {"errors": e.errors(
                    include_url=False, include_context=False, include_input=False)},
            )

        current = dispatcher.current_config
        if current is None:
            # Diagnostic mode; the dispatcher refuses the update
            candidate = TransportConfig(
                host=update.host or "",
                port=update.port or 587,
                secure=bool(update.secure),
                username=update.username,
                password=update.password,
                sender_address=update.sender_address or "",
            )
        else:
            candidate = merge_transport_config(current, update)

        config = run_async(dispatcher.update_config(candidate))

        logger.info(
            "SMTP configuration updated",
            extra={
                "request_id": getattr(g, "request_id", None),
                "host": candidate.host,
                "port": candidate.port,
            },
        )
        return jsonify({
            "message": "SMTP configuration updated",
            "config": TransportConfigResponse(**config).to_response(),
        }), 200

    return bp
