"""
Shared configuration and exception types for mailrelay.
"""
