"""
Module: event.py
Description: Delivery data models for the event delivery service.

Defines the DeliveryEvent record tracked by the delivery manager and the
ephemeral DeliveryResult produced by a single channel attempt.

Key Components:
- DeliveryStatus: Enum for event delivery states
- Channel: Enum for destination channel types
- DeliveryEvent: Event record with full attempt tracking
- DeliveryResult: Outcome of one (event, channel) attempt

Dependencies: pydantic, datetime, enum, typing
"""

import copy
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeliveryStatus(str, Enum):
    """Lifecycle states of a delivery event."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class Channel(str, Enum):
    """Destination channel types."""

    WEBHOOK = "webhook"
    GLOBAL_WEBHOOK = "global_webhook"
    BROKER = "broker"


class DeliveryEvent(BaseModel):
    """
    Event record tracked until it reaches a terminal state.

    The payload and json_data fields are captured once at submission and
    are never mutated afterwards. Only the delivery manager changes the
    tracking fields (status, attempt_count, last_error, delivered_channels).

    Attributes:
        id: Unique event identifier, generated as <tenant_id>_<nanos> if absent
        tenant_id: Owning tenant/instance identifier
        token: Opaque token used to resolve tenant destinations
        event_type: Domain event name (e.g. 'Message', 'ReadReceipt')
        payload: Structured event content
        json_data: Serialized event content sent to every channel
        file_path: Optional attachment delivered with the user webhook
        created_at: Submission timestamp
        attempt_count: Completed fan-out cycles that did not fully succeed
        status: Delivery status (pending, delivered, failed)
        last_error: Most recent channel error
        delivered_channels: Channels that succeeded in an earlier cycle
        last_attempt_at: When the last fan-out cycle finished
        generation: Incremented by every manual reset
    """

    model_config = ConfigDict(validate_assignment=True)

    id: Optional[str] = Field(default=None, description="Unique event identifier")
    tenant_id: str = Field(
        ...,
        min_length=1,
        description="Owning tenant identifier"
    )
    token: str = Field(default="", description="Tenant auth token")
    event_type: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Event type identifier"
    )
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="Structured event payload"
    )
    json_data: bytes = Field(
        default=b"",
        description="Serialized event payload"
    )
    file_path: Optional[str] = Field(
        default=None,
        description="Attachment path for channels that support files"
    )
    created_at: Optional[datetime] = Field(
        default=None,
        description="Submission timestamp"
    )
    attempt_count: int = Field(
        default=0,
        ge=0,
        description="Number of fan-out cycles that failed"
    )
    status: DeliveryStatus = Field(
        default=DeliveryStatus.PENDING,
        description="Event delivery status"
    )
    last_error: Optional[str] = Field(
        default=None,
        description="Most recent channel error"
    )
    delivered_channels: List[Channel] = Field(
        default_factory=list,
        description="Channels already delivered successfully"
    )
    last_attempt_at: Optional[datetime] = Field(
        default=None,
        description="Completion time of the last fan-out cycle"
    )
    generation: int = Field(
        default=0,
        ge=0,
        description="Reset counter; results of cycles started earlier are discarded"
    )

    @field_validator('tenant_id', 'event_type')
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only identifiers."""
        if not v.strip():
            raise ValueError("value cannot be blank")
        return v.strip()

    def freeze_payload(self) -> None:
        """
        Capture the immutable content snapshot.

        Deep-copies the structured payload so later changes by the producer
        are not observed, and serializes it into json_data unless the
        producer already supplied a serialized body.
        """
        self.payload = copy.deepcopy(self.payload)
        if not self.json_data:
            self.json_data = json.dumps(self.payload, default=str).encode('utf-8')

    def elapsed_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since submission, 0 when the event was never submitted."""
        if self.created_at is None:
            return 0.0
        now = now or datetime.now(timezone.utc)
        return (now - self.created_at).total_seconds()

    def mark_delivered(self) -> None:
        """Mark the event as delivered to every enabled channel."""
        self.status = DeliveryStatus.DELIVERED
        self.last_attempt_at = datetime.now(timezone.utc)

    def record_failed_attempt(self, error: Optional[str], max_retries: int) -> bool:
        """
        Count a failed fan-out cycle.

        Args:
            error: Most recent failing channel error
            max_retries: Cycles allowed before the event is failed

        Returns:
            True when the event reached the terminal failed state
        """
        self.attempt_count += 1
        self.last_error = error
        self.last_attempt_at = datetime.now(timezone.utc)
        if self.attempt_count >= max_retries:
            self.status = DeliveryStatus.FAILED
            return True
        return False

    def reset_attempts(self) -> None:
        """Reset tracking for a manual retry of every channel."""
        self.generation += 1
        self.attempt_count = 0
        self.status = DeliveryStatus.PENDING
        self.delivered_channels = []


class DeliveryResult(BaseModel):
    """
    Outcome of one delivery attempt to one channel.

    Results are ephemeral: they only feed the aggregation step of the
    fan-out cycle that produced them.
    """

    channel: Channel = Field(..., description="Destination channel")
    success: bool = Field(..., description="Whether the attempt succeeded")
    error: Optional[str] = Field(default=None, description="Failure reason")
    duration_ms: int = Field(default=0, ge=0, description="Attempt duration")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Attempt start time"
    )
