"""
Package: delivery
Description: Multi-channel event delivery.

Provides the delivery manager, its channel adapters (user webhook,
global webhook, broker), result aggregation and the retry scheduler.
"""

from .manager import DeliveryManager, EventNotFound, PendingListing, build_delivery_manager

__all__ = [
    "DeliveryManager",
    "EventNotFound",
    "PendingListing",
    "build_delivery_manager",
]
