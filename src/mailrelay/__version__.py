"""Version information for mailrelay."""

__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Release information
__title__ = "mailrelay"
__description__ = "Authenticated HTTP to SMTP relay with attachment screening"
__author__ = "mailrelay Team"
__license__ = "MIT"
__copyright__ = "Copyright 2025-2026 mailrelay Team"


def get_version() -> str:
    """Return the current version string."""
    return __version__


def get_version_info() -> tuple[int, ...]:
    """Return the version as a tuple of integers."""
    return __version_info__
