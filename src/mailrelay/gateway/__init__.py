"""
mailrelay gateway.

The HTTP gateway screens send requests (validation, attachment gate, malware
scanning) and relays them to an SMTP provider.
"""

from .app import create_app
from .config import GatewaySettings, get_gateway_settings, reload_gateway_settings

__all__ = [
    "GatewaySettings",
    "create_app",
    "get_gateway_settings",
    "reload_gateway_settings",
]
