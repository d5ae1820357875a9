"""
Outbound SMTP for mailrelay.

This package composes relayed messages, hands them to an SMTP relay and
manages the relay connection settings.
"""

from .composer import ComposedEmail, EmailComposer, MailAttachment
from .dispatcher import (
    DispatchResult,
    MailDispatcher,
    TransportHandle,
    TransportMode,
    TransportState,
    transport_config_from_settings,
)
from .sender import (
    EtherealAccount,
    SMTPTransport,
    TransportConfig,
    TransportReceipt,
    create_test_account,
)

__all__ = [
    # Composer
    "ComposedEmail",
    "EmailComposer",
    "MailAttachment",
    # Dispatcher
    "DispatchResult",
    "MailDispatcher",
    "TransportHandle",
    "TransportMode",
    "TransportState",
    "transport_config_from_settings",
    # Transport
    "EtherealAccount",
    "SMTPTransport",
    "TransportConfig",
    "TransportReceipt",
    "create_test_account",
]
