"""
Module: channels.py
Description: Channel adapters for event fan-out.

Each adapter delivers one immutable event snapshot to one destination
type and reports a DeliveryResult. Adapters never raise for delivery
failures and never touch the delivery manager's state.

Key Components:
- ChannelAdapter: Shared timing, deadline and error-to-result handling
- WebhookAdapter: Webhook posting bounded by the shared deadline
- UserWebhookAdapter: Per-tenant webhook, supports file attachments
- GlobalWebhookAdapter: Process-wide webhook with tenant traceability
- BrokerAdapter: Message broker publishing

Dependencies: asyncio, webhook client, broker publisher, tenant directory
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

from event_delivery.broker.sqs import BrokerPublisher
from event_delivery.delivery.context import DeliveryContext
from event_delivery.delivery.errors import (
    ConfigurationError,
    ContextExpired,
    DeliveryError,
    TransportError,
)
from event_delivery.delivery.webhook import WebhookClient
from event_delivery.models.event import Channel, DeliveryEvent, DeliveryResult
from event_delivery.tenants.directory import TenantDirectory
from event_delivery.utils.logger import get_logger

logger = get_logger(__name__)


class ChannelAdapter(ABC):
    """Base class for delivery channels."""

    channel: Channel

    def __init__(self, timeout: float = 5.0):
        """
        Args:
            timeout: Per-call timeout in seconds, nested within the shared deadline
        """
        self.timeout = timeout

    @abstractmethod
    def target(self, event: DeliveryEvent) -> str:
        """
        Resolve the destination for an event.

        Raises:
            ConfigurationError: If the channel has no destination, in which
                case it is skipped for this event
        """

    @abstractmethod
    async def send(self, event: DeliveryEvent, target: str, ctx: DeliveryContext) -> None:
        """Perform the delivery. Raises DeliveryError on failure."""

    async def deliver(
        self,
        event: DeliveryEvent,
        target: str,
        ctx: DeliveryContext
    ) -> DeliveryResult:
        """
        Perform one delivery attempt and report its outcome.

        Args:
            event: Immutable event snapshot
            target: Destination resolved by target()
            ctx: Shared attempt deadline

        Returns:
            DeliveryResult for this channel
        """
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        error = None

        try:
            if ctx.expired():
                raise ContextExpired(self.channel.value)
            await self.send(event, target, ctx)

        except DeliveryError as e:
            error = str(e)

        except Exception as e:
            logger.error(
                "Unexpected channel error",
                event_id=event.id,
                channel=self.channel.value,
                error=str(e),
                error_type=type(e).__name__
            )
            error = f"{type(e).__name__}: {e}"

        duration_ms = int((time.monotonic() - started) * 1000)

        if error is None:
            logger.debug(
                "Channel delivered",
                event_id=event.id,
                channel=self.channel.value,
                duration_ms=duration_ms
            )
        else:
            logger.warning(
                "Channel delivery failed",
                event_id=event.id,
                channel=self.channel.value,
                duration_ms=duration_ms,
                error=error
            )

        return DeliveryResult(
            channel=self.channel,
            success=error is None,
            error=error,
            duration_ms=duration_ms,
            timestamp=started_at
        )


class WebhookAdapter(ChannelAdapter):
    """Shared posting for the webhook channels."""

    def __init__(self, tenants: TenantDirectory, client: WebhookClient, timeout: float = 5.0):
        super().__init__(timeout)
        self.tenants = tenants
        self.client = client

    async def post(
        self,
        target: str,
        payload: Dict[str, str],
        ctx: DeliveryContext,
        file_path: Optional[str] = None
    ) -> None:
        """
        POST within the shared deadline.

        Raises:
            ContextExpired: If the deadline elapsed before or during the request
            TransportError: On any other webhook failure
        """
        if ctx.expired():
            raise ContextExpired(self.channel.value)

        try:
            await self.client.post(
                target,
                payload,
                channel=self.channel.value,
                file_path=file_path,
                timeout=ctx.bound(self.timeout)
            )
        except TransportError as e:
            # The request timeout was clamped to the remaining deadline
            if e.status_code is None and ctx.expired():
                raise ContextExpired(self.channel.value) from e
            raise


class UserWebhookAdapter(WebhookAdapter):
    """Delivers to the webhook configured for the event's tenant."""

    channel = Channel.WEBHOOK

    def target(self, event: DeliveryEvent) -> str:
        url = self.tenants.resolve_webhook_url(event.token)
        if not url:
            raise ConfigurationError(self.channel.value)
        return url

    def build_payload(self, event: DeliveryEvent) -> Dict[str, str]:
        return {
            'jsonData': event.json_data.decode('utf-8'),
            'token': event.token,
            'instanceName': self.tenants.resolve_instance_name(event.token),
        }

    async def send(self, event: DeliveryEvent, target: str, ctx: DeliveryContext) -> None:
        await self.post(target, self.build_payload(event), ctx, file_path=event.file_path)


class GlobalWebhookAdapter(WebhookAdapter):
    """Delivers every tenant's events to one process-wide webhook."""

    channel = Channel.GLOBAL_WEBHOOK

    def __init__(
        self,
        url: str,
        tenants: TenantDirectory,
        client: WebhookClient,
        timeout: float = 5.0
    ):
        super().__init__(tenants, client, timeout)
        self.url = url

    def target(self, event: DeliveryEvent) -> str:
        if not self.url:
            raise ConfigurationError(self.channel.value)
        return self.url

    def build_payload(self, event: DeliveryEvent) -> Dict[str, str]:
        return {
            'jsonData': event.json_data.decode('utf-8'),
            'token': event.token,
            'userID': event.tenant_id,
            'instanceName': self.tenants.resolve_instance_name(event.token),
        }

    async def send(self, event: DeliveryEvent, target: str, ctx: DeliveryContext) -> None:
        await self.post(target, self.build_payload(event), ctx)


class BrokerAdapter(ChannelAdapter):
    """Publishes events through the broker collaborator."""

    channel = Channel.BROKER

    def __init__(self, publisher: BrokerPublisher, timeout: float = 5.0):
        super().__init__(timeout)
        self.publisher = publisher

    def target(self, event: DeliveryEvent) -> str:
        if not self.publisher.enabled:
            raise ConfigurationError(self.channel.value, "broker publishing disabled")
        return self.channel.value

    async def send(self, event: DeliveryEvent, target: str, ctx: DeliveryContext) -> None:
        if ctx.expired():
            raise ContextExpired(self.channel.value)

        try:
            await asyncio.wait_for(
                self.publisher.publish(
                    event.json_data,
                    event.event_type,
                    event.tenant_id,
                    event.token
                ),
                timeout=ctx.bound(self.timeout)
            )
        except asyncio.TimeoutError:
            if ctx.expired():
                raise ContextExpired(self.channel.value)
            raise TransportError(self.channel.value, f"publish timeout after {self.timeout:.1f}s")
        except DeliveryError:
            raise
        except Exception as e:
            raise TransportError(self.channel.value, f"{type(e).__name__}: {e}")
