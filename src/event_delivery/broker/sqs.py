"""
Module: sqs.py
Description: SQS-backed message broker publisher.

Publishes delivery events to SQS queues chosen by event type, wrapping
each event in an envelope with instance information. Queues are declared
idempotently before first use and their URLs cached.
"""

import json
from typing import Any, Dict, Iterable, Optional, Protocol

from aioboto3 import Session
from botocore.exceptions import ClientError, EndpointConnectionError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from event_delivery.tenants.directory import TenantDirectory
from event_delivery.utils.logger import get_logger

logger = get_logger(__name__)

_TRANSIENT_ERROR_CODES = {
    'Throttling',
    'ThrottlingException',
    'RequestThrottled',
    'ServiceUnavailable',
    'InternalError',
    'InternalFailure',
}


class BrokerPublisher(Protocol):
    """Broker collaborator consumed by the broker channel adapter."""

    @property
    def enabled(self) -> bool:
        ...

    async def publish(
        self,
        json_data: bytes,
        event_type: str,
        tenant_id: str,
        token: str
    ) -> None:
        ...


def _is_transient(exc: BaseException) -> bool:
    """Whether an SQS error is worth another immediate attempt."""
    if isinstance(exc, EndpointConnectionError):
        return True
    if isinstance(exc, ClientError):
        return exc.response.get('Error', {}).get('Code') in _TRANSIENT_ERROR_CODES
    return False


def _log_publish_retry(retry_state) -> None:
    logger.warning(
        "Broker publish failed, retrying",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception())
    )


class SQSBrokerPublisher:
    """
    SQS publisher for delivery events.

    Routing: event types listed in specific_events get their own queue
    named <prefix>_<event type lowercased>; everything else goes to
    <prefix>_<default_queue>.
    """

    def __init__(
        self,
        tenants: TenantDirectory,
        default_queue: str = "events",
        queue_prefix: str = "gateway",
        specific_events: Optional[Iterable[str]] = None,
        enabled: bool = True,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        publish_attempts: int = 3,
        session: Optional[Session] = None
    ):
        """
        Initialize SQS broker publisher.

        Args:
            tenants: Directory used to enrich envelopes with instance info
            default_queue: Queue for event types without a dedicated queue
            queue_prefix: Prefix applied to every queue name
            specific_events: Event types routed to dedicated queues
            enabled: Whether publishing is switched on
            region_name: AWS region
            endpoint_url: Optional SQS endpoint override
            publish_attempts: Attempts for transient SQS errors
            session: Optional aioboto3 session (tests)

        Raises:
            ValueError: If default_queue or queue_prefix is empty
        """
        if not default_queue or not queue_prefix:
            raise ValueError("default_queue and queue_prefix must be non-empty strings")

        self.tenants = tenants
        self.default_queue = default_queue
        self.queue_prefix = queue_prefix
        self.specific_events = set(specific_events or ())
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.session = session or Session()
        self._enabled = enabled
        self._queue_urls: Dict[str, str] = {}
        self._send = retry(
            stop=stop_after_attempt(publish_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
            retry=retry_if_exception(_is_transient),
            before_sleep=_log_publish_retry,
            reraise=True
        )(self._send_once)

        logger.info(
            "SQS broker publisher initialized",
            enabled=enabled,
            prefix=queue_prefix,
            default_queue=default_queue,
            specific_events=sorted(self.specific_events)
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def queue_name(self, event_type: str) -> str:
        """Queue an event type is routed to."""
        if event_type in self.specific_events:
            return f"{self.queue_prefix}_{event_type.lower()}"
        return f"{self.queue_prefix}_{self.default_queue}"

    def build_envelope(
        self,
        json_data: bytes,
        tenant_id: str,
        token: str
    ) -> Dict[str, Any]:
        """
        Wrap the serialized event with instance information.

        Raises:
            ValueError: If json_data is not valid JSON
        """
        return {
            'event': json.loads(json_data),
            'instanceId': tenant_id,
            'instanceName': self.tenants.resolve_instance_name(token),
            'token': token,
            'ownerId': self.tenants.resolve_owner_id(token),
        }

    async def publish(
        self,
        json_data: bytes,
        event_type: str,
        tenant_id: str,
        token: str
    ) -> None:
        """
        Publish one event to its queue.

        Args:
            json_data: Serialized event body
            event_type: Event type used for routing
            tenant_id: Owning tenant
            token: Tenant token

        Raises:
            RuntimeError: If publishing is disabled
            ValueError: If json_data is not valid JSON
            ClientError: If SQS rejects the message
        """
        if not self._enabled:
            raise RuntimeError("broker publishing is disabled")

        envelope = self.build_envelope(json_data, tenant_id, token)
        queue_name = self.queue_name(event_type)
        await self._send(queue_name, json.dumps(envelope), event_type)

    async def _send_once(self, queue_name: str, body: str, event_type: str) -> str:
        async with self.session.client(
            'sqs',
            region_name=self.region_name,
            endpoint_url=self.endpoint_url
        ) as sqs:
            queue_url = self._queue_urls.get(queue_name)
            if queue_url is None:
                # create_queue is idempotent for identical attributes
                created = await sqs.create_queue(QueueName=queue_name)
                queue_url = created['QueueUrl']
                self._queue_urls[queue_name] = queue_url

            try:
                response = await sqs.send_message(
                    QueueUrl=queue_url,
                    MessageBody=body,
                    MessageAttributes={
                        'EventType': {
                            'StringValue': event_type,
                            'DataType': 'String'
                        }
                    }
                )
            except ClientError as e:
                logger.error(
                    "Failed to publish to SQS",
                    queue=queue_name,
                    error_code=e.response.get('Error', {}).get('Code'),
                    error_message=e.response.get('Error', {}).get('Message')
                )
                raise

        logger.debug(
            "Published event to SQS",
            queue=queue_name,
            event_type=event_type,
            message_id=response['MessageId']
        )
        return response['MessageId']
