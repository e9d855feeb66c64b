"""
Module: settings.py
Description: Application configuration using pydantic-settings.

Configures the delivery service from environment variables with
validation and defaults. Supports .env files for local development.
"""

from typing import Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    app_name: str = Field(default="Event Delivery Service", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    log_level: str = Field(default="INFO", description="Logging level")
    stage: str = Field(default="dev", description="Deployment stage")

    # AWS settings
    aws_region: str = Field(default="us-east-1", description="AWS region")
    aws_endpoint_url: Optional[str] = Field(
        default=None,
        description="Endpoint override for SQS/CloudWatch (e.g. localstack)"
    )

    # Delivery settings
    max_retries: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Fan-out cycles before an event is marked failed"
    )
    delivery_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Shared deadline in seconds for one fan-out cycle"
    )
    channel_timeout: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Per-call timeout in seconds for a single channel"
    )
    retry_interval: float = Field(
        default=2.0,
        gt=0,
        description="Retry sweep interval in seconds"
    )
    max_concurrent_deliveries: int = Field(
        default=100,
        ge=1,
        description="Maximum fan-outs running at the same time"
    )
    failed_history_size: int = Field(
        default=1000,
        ge=0,
        description="Failed events kept for manual retry"
    )
    skip_delivered_channels: bool = Field(
        default=False,
        description="Skip channels that already succeeded when retrying"
    )

    # Webhook settings
    global_webhook_url: str = Field(
        default="",
        description="Process-wide webhook URL, empty disables the channel"
    )
    webhook_format: str = Field(
        default="form",
        description="Webhook body format: form or json"
    )
    tenant_webhooks: Dict[str, str] = Field(
        default_factory=dict,
        description="Static token to webhook URL mapping"
    )
    tenant_names: Dict[str, str] = Field(
        default_factory=dict,
        description="Static token to instance name mapping"
    )

    # Broker settings
    broker_enabled: bool = Field(default=False, description="Publish events to SQS")
    broker_queue: str = Field(default="events", description="Default broker queue")
    broker_queue_prefix: str = Field(default="gateway", description="Broker queue prefix")
    broker_specific_events: str = Field(
        default="",
        description="Comma-separated event types routed to dedicated queues"
    )
    broker_publish_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Publish attempts for transient broker errors"
    )

    # Metrics settings
    metrics_enabled: bool = Field(default=False, description="Publish CloudWatch metrics")
    metrics_namespace: str = Field(default="EventDelivery", description="CloudWatch namespace")

    # Security settings
    admin_api_key: Optional[str] = Field(
        default=None,
        description="API key required by the delivery admin endpoints"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator('webhook_format')
    @classmethod
    def validate_webhook_format(cls, v: str) -> str:
        """Validate webhook body format."""
        if v.lower() not in ('form', 'json'):
            raise ValueError("webhook_format must be 'form' or 'json'")
        return v.lower()

    @field_validator('global_webhook_url')
    @classmethod
    def validate_global_webhook_url(cls, v: str) -> str:
        """Allow an empty URL (channel disabled) or an HTTP/HTTPS URL."""
        v = v.strip()
        if v and not v.startswith(('http://', 'https://')):
            raise ValueError("global_webhook_url must be a valid HTTP/HTTPS URL")
        return v

    @model_validator(mode='after')
    def validate_timeouts(self) -> 'Settings':
        """The per-channel timeout is nested within the shared deadline."""
        if self.channel_timeout > self.delivery_timeout:
            raise ValueError("channel_timeout cannot exceed delivery_timeout")
        return self

    @property
    def specific_event_types(self) -> List[str]:
        """Event types listed in broker_specific_events."""
        return [
            item.strip()
            for item in self.broker_specific_events.split(',')
            if item.strip()
        ]


# Global settings instance
settings = Settings()
