"""
Module: request.py
Description: API request models for the delivery service.

Defines request models for incoming API calls. These models handle
input validation and transformation for API endpoints.

Key Components:
- SubmitEventRequest: Model for POST /events requests

Dependencies: pydantic, typing
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .event import DeliveryEvent
from .event_types import is_valid_event_type


class SubmitEventRequest(BaseModel):
    """
    Request model for submitting an event for delivery.

    Attributes:
        id: Optional caller-supplied event id
        tenant_id: Owning tenant/instance identifier (required)
        token: Tenant token used to resolve its webhook (required)
        event_type: Gateway event type from the supported catalog
        payload: Event data payload (flexible JSON)
        file_path: Optional attachment path
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    id: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Optional caller-supplied event id"
    )
    tenant_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Owning tenant identifier"
    )
    token: str = Field(
        ...,
        min_length=1,
        description="Tenant token"
    )
    event_type: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Event type identifier"
    )
    payload: Dict[str, Any] = Field(
        ...,
        description="Event payload data"
    )
    file_path: Optional[str] = Field(
        default=None,
        description="Attachment path for the user webhook"
    )

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: Optional[str]) -> Optional[str]:
        """Validate caller-supplied id format if provided."""
        if v is None:
            return v
        if not re.match(r'^[a-zA-Z0-9._:-]+$', v):
            raise ValueError(
                "id must contain only letters, numbers, dots, underscores, hyphens, and colons"
            )
        return v

    @field_validator('event_type')
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        """Validate event type against the supported catalog."""
        if not is_valid_event_type(v):
            raise ValueError(f"unsupported event_type: {v}")
        return v

    def to_event(self) -> DeliveryEvent:
        """Build the delivery record for this request."""
        return DeliveryEvent(
            id=self.id,
            tenant_id=self.tenant_id,
            token=self.token,
            event_type=self.event_type,
            payload=self.payload,
            file_path=self.file_path,
        )
