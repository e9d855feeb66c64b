"""
Module: response.py
Description: API response models for the delivery service.

Defines response models for outgoing API calls. These models structure
the JSON responses returned by the ingestion and admin endpoints.

Key Components:
- EventStatusResponse: Snapshot of a tracked event
- SubmitEventResponse: Acknowledgement of an accepted event
- ManagerStatusResponse: Delivery manager configuration and load
- PendingEventsResponse: Filtered/limited listing of pending events
- RetryResponse: Acknowledgement of a force-retry trigger

Dependencies: pydantic, datetime, typing
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .event import Channel, DeliveryEvent, DeliveryStatus


class EventStatusResponse(BaseModel):
    """
    Snapshot of a tracked delivery event.

    The serialized body is not echoed back; the structured payload is.
    """

    id: str = Field(..., description="Unique event identifier")
    tenant_id: str = Field(..., description="Owning tenant identifier")
    event_type: str = Field(..., description="Event type identifier")
    payload: dict = Field(default_factory=dict, description="Event payload data")
    file_path: Optional[str] = Field(default=None, description="Attachment path")
    created_at: Optional[datetime] = Field(default=None, description="Submission timestamp")
    attempt_count: int = Field(..., description="Failed fan-out cycles so far")
    status: DeliveryStatus = Field(..., description="Event delivery status")
    last_error: Optional[str] = Field(default=None, description="Most recent channel error")
    delivered_channels: List[Channel] = Field(
        default_factory=list,
        description="Channels already delivered"
    )
    last_attempt_at: Optional[datetime] = Field(
        default=None,
        description="Completion time of the last cycle"
    )

    @classmethod
    def from_event(cls, event: DeliveryEvent) -> "EventStatusResponse":
        """Build a response from a delivery record snapshot."""
        return cls(
            id=event.id,
            tenant_id=event.tenant_id,
            event_type=event.event_type,
            payload=event.payload,
            file_path=event.file_path,
            created_at=event.created_at,
            attempt_count=event.attempt_count,
            status=event.status,
            last_error=event.last_error,
            delivered_channels=event.delivered_channels,
            last_attempt_at=event.last_attempt_at,
        )


class SubmitEventResponse(BaseModel):
    """Acknowledgement returned after an event was accepted."""

    id: str = Field(..., description="Assigned event identifier")
    status: DeliveryStatus = Field(..., description="Status at acceptance")
    message: str = Field(..., description="Human-readable status message")


class ManagerStatusResponse(BaseModel):
    """Overall delivery manager status."""

    status: str = Field(..., description="Manager state (running/stopped)")
    pending_events: int = Field(..., description="Events awaiting delivery")
    max_retries: int = Field(..., description="Configured maximum cycles")
    timeout_ms: int = Field(..., description="Shared attempt deadline in ms")
    retry_backoff_ms: int = Field(..., description="Retry sweep interval in ms")


class PendingEventsResponse(BaseModel):
    """Filtered and limited listing of pending events."""

    total_pending: int = Field(..., description="All pending events")
    filtered_count: int = Field(..., description="Pending events matching the filter")
    shown_count: int = Field(..., description="Events in this response")
    events: List[EventStatusResponse] = Field(default_factory=list)


class FailedEventsResponse(BaseModel):
    """Listing of retained failed events."""

    total_failed: int = Field(..., description="Failed events retained")
    shown_count: int = Field(..., description="Events in this response")
    events: List[EventStatusResponse] = Field(default_factory=list)


class RetryResponse(BaseModel):
    """Acknowledgement of a force-retry trigger."""

    message: str = Field(..., description="Human-readable status message")
    event_id: Optional[str] = Field(default=None, description="Retried event, if any")
    scheduled: int = Field(..., description="Fan-outs scheduled by this trigger")
