"""
Package: event_delivery
Description: Reliable multi-channel event delivery for the messaging gateway.
"""

__version__ = "0.1.0"
