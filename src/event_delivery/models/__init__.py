"""
Module: models
Description: Package initialization for Pydantic data models.

This package contains all data models used by the delivery service:
- DeliveryEvent / DeliveryResult: Core delivery domain models
- SubmitEventRequest: API request model for event submission
- Response models for the ingestion and admin endpoints
"""

from .event import Channel, DeliveryEvent, DeliveryResult, DeliveryStatus
from .request import SubmitEventRequest
from .response import (
    EventStatusResponse,
    FailedEventsResponse,
    ManagerStatusResponse,
    PendingEventsResponse,
    RetryResponse,
    SubmitEventResponse,
)

__all__ = [
    "Channel",
    "DeliveryEvent",
    "DeliveryResult",
    "DeliveryStatus",
    "SubmitEventRequest",
    "EventStatusResponse",
    "FailedEventsResponse",
    "ManagerStatusResponse",
    "PendingEventsResponse",
    "RetryResponse",
    "SubmitEventResponse",
]
