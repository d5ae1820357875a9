"""
Per-application component registry for the gateway.

``create_app`` builds one ``RelayContext`` and stores it in
``app.extensions["mailrelay"]``; routes and middleware reach it through
``get_relay_context``.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from flask import Flask, current_app

from ..common.config import Settings
from .config import GatewaySettings
from .pipeline import SendPipeline
from .screening.attachments import UploadStore
from .screening.scanner import MalwareScanner
from .smtp.dispatcher import MailDispatcher

EXTENSION_KEY = "mailrelay"


@dataclass
class RelayContext:
    """Components shared by all requests of one application."""

    settings: Settings
    gateway_settings: GatewaySettings
    dispatcher: MailDispatcher
    store: UploadStore
    pipeline: SendPipeline
    scanner: Optional[MalwareScanner] = None
    limiters: dict[str, Any] = field(default_factory=dict)


def init_relay_context(app: Flask, context: RelayContext) -> None:
    app.extensions[EXTENSION_KEY] = context


def get_relay_context(app: Optional[Flask] = None) -> RelayContext:
    """Return the components of ``app`` (default: the current app)."""
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
