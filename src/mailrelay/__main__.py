#!/usr/bin/env python3
"""
Allow running mailrelay as a module: python -m mailrelay

This enables the following usage:
    python -m mailrelay serve [OPTIONS]

Which is equivalent to:
    mailrelay serve [OPTIONS]
"""

from mailrelay.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
