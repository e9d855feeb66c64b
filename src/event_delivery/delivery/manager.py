"""
Module: manager.py
Description: Delivery manager for multi-channel event delivery.

Owns the lifecycle of every submitted event: fans each event out to its
enabled channels concurrently, aggregates the channel results, tracks
status, and retries partial failures through the retry scheduler.

Key Components:
- DeliveryManager: Pending-event map, fan-out, status queries, force retry
- PendingListing: Result of a filtered/limited pending listing
- build_delivery_manager(): Wires adapters and collaborators from settings

Concurrency:
- One task per event fan-out, one task per channel within a fan-out
- At most max_concurrent fan-outs run at once; the rest queue for a slot
- At most one fan-out per event is in flight; triggers arriving meanwhile
  are coalesced into one follow-up cycle
- Every access to the pending map happens under one lock, and no code
  awaits while holding it

Dependencies: asyncio, threading, pydantic models, channel adapters
"""

import asyncio
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set

from event_delivery.broker.sqs import BrokerPublisher, SQSBrokerPublisher
from event_delivery.config.settings import Settings
from event_delivery.delivery.aggregator import ResultAggregator
from event_delivery.delivery.channels import (
    BrokerAdapter,
    ChannelAdapter,
    GlobalWebhookAdapter,
    UserWebhookAdapter,
)
from event_delivery.delivery.context import DeliveryContext
from event_delivery.delivery.errors import (
    ConfigurationError,
    DeliveryError,
    ExhaustedRetries,
)
from event_delivery.delivery.scheduler import RetryScheduler
from event_delivery.delivery.webhook import WebhookClient
from event_delivery.models.event import (
    Channel,
    DeliveryEvent,
    DeliveryResult,
    DeliveryStatus,
)
from event_delivery.tenants.directory import TenantDirectory
from event_delivery.utils.logger import get_logger
from event_delivery.utils.metrics import MetricsClient

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 50


class EventNotFound(DeliveryError):
    """No pending or retained failed event has the given id."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"event {event_id} not found")


@dataclass
class PendingListing:
    """Pending events matching a filter, capped at a limit."""

    total_pending: int
    filtered_count: int
    events: List[DeliveryEvent] = field(default_factory=list)

    @property
    def shown_count(self) -> int:
        return len(self.events)


class DeliveryManager:
    """
    Reliable multi-channel event delivery.

    submit() never blocks and never raises; delivery outcomes are only
    observable through get_status(), count_pending() and list_pending().
    Events leave pending tracking once delivered or failed.
    """

    def __init__(
        self,
        channels: Sequence[ChannelAdapter],
        max_retries: int = 3,
        timeout: float = 10.0,
        retry_interval: float = 2.0,
        max_concurrent: int = 100,
        failed_history_size: int = 1000,
        skip_delivered_channels: bool = False,
        metrics: Optional[MetricsClient] = None
    ):
        """
        Initialize delivery manager.

        Args:
            channels: Channel adapters, dispatched in this order
            max_retries: Fan-out cycles before an event is failed
            timeout: Shared deadline in seconds for one fan-out cycle
            retry_interval: Retry sweep interval in seconds
            max_concurrent: Fan-outs allowed to run at the same time
            failed_history_size: Failed events retained for force retry
            skip_delivered_channels: Retry only channels that have not succeeded
            metrics: Optional CloudWatch metrics client

        Raises:
            ValueError: If a numeric limit is out of range
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.channels = list(channels)
        self.max_retries = max_retries
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.max_concurrent = max_concurrent
        self.failed_history_size = failed_history_size
        self.skip_delivered_channels = skip_delivered_channels
        self.metrics = metrics

        self._lock = threading.Lock()
        self._pending: Dict[str, DeliveryEvent] = {}
        self._failed: "OrderedDict[str, DeliveryEvent]" = OrderedDict()
        self._in_flight: Set[str] = set()
        self._rerun: Set[str] = set()
        self._last_id_nanos = 0

        self._slots = asyncio.Semaphore(max_concurrent)
        self._tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closing = False
        self.scheduler = RetryScheduler(self.retry_eligible, interval=retry_interval)

        logger.info(
            "Delivery manager initialized",
            channels=[adapter.channel.value for adapter in self.channels],
            max_retries=max_retries,
            timeout_seconds=timeout,
            retry_interval_seconds=retry_interval,
            max_concurrent=max_concurrent
        )

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._loop is not None and not self._closing

    async def start(self) -> None:
        """Bind to the running event loop and start the retry sweep."""
        self._loop = asyncio.get_running_loop()
        self._closing = False
        self.scheduler.start()
        logger.info("Delivery manager started")

    async def stop(self, drain_timeout: Optional[float] = None) -> None:
        """
        Stop the retry sweep and drain in-flight fan-outs.

        Fan-outs still running after drain_timeout (default: the attempt
        timeout) are cancelled; their events stay pending in memory.
        """
        self._closing = True
        await self.scheduler.stop()

        tasks = set(self._tasks)
        if tasks:
            _, still_running = await asyncio.wait(
                tasks,
                timeout=self.timeout if drain_timeout is None else drain_timeout
            )
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        with self._lock:
            pending = len(self._pending)

        self._loop = None
        logger.info("Delivery manager stopped", pending_events=pending)

    # Submission

    def submit(self, event: DeliveryEvent) -> str:
        """
        Accept an event for delivery and trigger its first fan-out.

        The manager keeps its own copy of the event; later changes to the
        caller's object are not observed.

        Args:
            event: Event to deliver; id is generated when missing

        Returns:
            The event id
        """
        record = event.model_copy(deep=True)
        record.freeze_payload()

        with self._lock:
            if not record.id:
                record.id = self._generate_id(record.tenant_id)
            record.created_at = datetime.now(timezone.utc)
            record.status = DeliveryStatus.PENDING
            record.attempt_count = 0
            record.last_error = None
            record.delivered_channels = []
            replaced = record.id in self._pending
            self._pending[record.id] = record
            self._failed.pop(record.id, None)

        if replaced:
            logger.warning("Replacing pending event with same id", event_id=record.id)

        logger.info(
            "Starting parallel delivery",
            event_id=record.id,
            tenant_id=record.tenant_id,
            event_type=record.event_type
        )

        self._schedule(record.id)
        return record.id

    def _generate_id(self, tenant_id: str) -> str:
        # Caller holds the lock; nanos are strictly increasing per manager
        nanos = time.time_ns()
        if nanos <= self._last_id_nanos:
            nanos = self._last_id_nanos + 1
        self._last_id_nanos = nanos
        return f"{tenant_id}_{nanos}"

    def _schedule(self, event_id: str) -> bool:
        """Trigger a fan-out from any thread."""
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is not None and (self._loop is None or running_loop is self._loop):
            return self._spawn(event_id)

        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._spawn, event_id)
            return True

        logger.warning(
            "No event loop available, delivery deferred to retry sweep",
            event_id=event_id
        )
        return False

    def _spawn(self, event_id: str) -> bool:
        if self._closing:
            logger.warning(
                "Delivery manager stopped, event left pending without delivery",
                event_id=event_id
            )
            return False

        with self._lock:
            if event_id not in self._pending:
                return False
            if event_id in self._in_flight:
                self._rerun.add(event_id)
                return False
            self._in_flight.add(event_id)

        task = asyncio.get_running_loop().create_task(self._process_delivery(event_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    # Fan-out

    async def _process_delivery(self, event_id: str) -> None:
        try:
            async with self._slots:
                with self._lock:
                    record = self._pending.get(event_id)
                    if record is None:
                        return
                    snapshot = record.model_copy()
                    generation = record.generation
                    skip = set(record.delivered_channels) if self.skip_delivered_channels else set()

                aggregator = await self._fan_out(snapshot, skip)

                for result in aggregator.results:
                    logger.debug(
                        "Channel delivery result",
                        event_id=event_id,
                        channel=result.channel.value,
                        success=result.success,
                        duration_ms=result.duration_ms,
                        error=result.error
                    )

                outcome = self._apply_results(event_id, record, generation, aggregator)

            await self._record_metrics(snapshot, aggregator, outcome)

        finally:
            with self._lock:
                self._in_flight.discard(event_id)
                rerun = event_id in self._rerun
                self._rerun.discard(event_id)
            if rerun:
                self._spawn(event_id)

    async def _fan_out(self, event: DeliveryEvent, skip: Set[Channel]) -> ResultAggregator:
        """Dispatch every enabled channel concurrently under one deadline."""
        dispatch = []
        for adapter in self.channels:
            if adapter.channel in skip:
                continue
            try:
                target = adapter.target(event)
            except ConfigurationError as e:
                logger.debug("Channel skipped", event_id=event.id, reason=str(e))
                continue
            dispatch.append((adapter, target))

        aggregator = ResultAggregator(expected=len(dispatch))
        if not dispatch:
            return aggregator

        ctx = DeliveryContext.with_timeout(self.timeout)
        tasks = {
            asyncio.create_task(adapter.deliver(event, target, ctx)): adapter
            for adapter, target in dispatch
        }

        try:
            _, expired = await asyncio.wait(tasks, timeout=self.timeout)
        finally:
            ctx.cancel()
            leftovers = [task for task in tasks if not task.done()]
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

        for task, adapter in tasks.items():
            if task in expired or task.cancelled():
                aggregator.add(DeliveryResult(
                    channel=adapter.channel,
                    success=False,
                    error="Context timeout",
                    duration_ms=int(self.timeout * 1000)
                ))
            elif task.exception() is not None:
                exc = task.exception()
                aggregator.add(DeliveryResult(
                    channel=adapter.channel,
                    success=False,
                    error=f"{type(exc).__name__}: {exc}"
                ))
            else:
                aggregator.add(task.result())

        return aggregator

    def _apply_results(
        self,
        event_id: str,
        record: DeliveryEvent,
        generation: int,
        aggregator: ResultAggregator
    ) -> Optional[DeliveryStatus]:
        """
        Fold one cycle's results into the event record.

        Results are dropped when the record was replaced, became terminal or
        was reset by force_retry() after the cycle started.

        Returns:
            The terminal status reached, None if the event stays pending
        """
        with self._lock:
            stale = (
                self._pending.get(event_id) is not record
                or record.generation != generation
            )
            if not stale:
                outcome = self._fold(event_id, record, aggregator)
                attempts = record.attempt_count

        if stale:
            logger.info(
                "Discarding results of superseded delivery cycle",
                event_id=event_id,
                generation=generation
            )
            return None

        if outcome is DeliveryStatus.DELIVERED:
            logger.info(
                "Event successfully delivered to all channels",
                event_id=event_id,
                channels_delivered=len(aggregator.results)
            )
        elif outcome is DeliveryStatus.FAILED:
            error = ExhaustedRetries(event_id, attempts, record.last_error)
            logger.error(
                "Event delivery failed permanently",
                event_id=event_id,
                attempt_count=attempts,
                error=str(error)
            )
        else:
            logger.warning(
                "Event delivery partially failed, will retry",
                event_id=event_id,
                attempt_count=attempts,
                max_retries=self.max_retries,
                last_error=aggregator.last_error
            )
        return outcome

    def _fold(
        self,
        event_id: str,
        record: DeliveryEvent,
        aggregator: ResultAggregator
    ) -> Optional[DeliveryStatus]:
        # Caller holds the lock
        if aggregator.delivered_channels:
            merged = set(record.delivered_channels) | set(aggregator.delivered_channels)
            record.delivered_channels = [c for c in Channel if c in merged]

        if aggregator.success:
            record.mark_delivered()
            del self._pending[event_id]
            return DeliveryStatus.DELIVERED
        if record.record_failed_attempt(aggregator.last_error, self.max_retries):
            del self._pending[event_id]
            self._remember_failed(record)
            return DeliveryStatus.FAILED
        return None

    def _remember_failed(self, record: DeliveryEvent) -> None:
        # Caller holds the lock
        if self.failed_history_size <= 0:
            return
        self._failed[record.id] = record
        self._failed.move_to_end(record.id)
        while len(self._failed) > self.failed_history_size:
            self._failed.popitem(last=False)

    async def _record_metrics(
        self,
        event: DeliveryEvent,
        aggregator: ResultAggregator,
        outcome: Optional[DeliveryStatus]
    ) -> None:
        if self.metrics is None:
            return
        for failure in aggregator.failures:
            await asyncio.to_thread(
                self.metrics.put_metric,
                "DeliveryAttemptFailed",
                1.0,
                'Count',
                {'Channel': failure.channel.value}
            )
        if outcome is DeliveryStatus.DELIVERED:
            await asyncio.to_thread(self.metrics.put_metric, "EventsDelivered")
        elif outcome is DeliveryStatus.FAILED:
            await asyncio.to_thread(self.metrics.put_metric, "EventsFailed")

    # Retries

    def retry_eligible(self) -> int:
        """
        Run one retry sweep.

        Selects pending events below max_retries that are older than the
        sweep interval and have no fan-out in flight, then re-dispatches
        every enabled channel for each of them.

        Returns:
            Number of fan-outs scheduled
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            candidates = [
                event_id
                for event_id, event in self._pending.items()
                if event.status == DeliveryStatus.PENDING
                and event.attempt_count < self.max_retries
                and event.elapsed_seconds(now) > self.retry_interval
                and event_id not in self._in_flight
            ]

        scheduled = 0
        for event_id in candidates:
            with self._lock:
                attempts = self._pending[event_id].attempt_count if event_id in self._pending else None
            if attempts is None:
                continue
            logger.info("Retrying failed event delivery", event_id=event_id, attempt_count=attempts)
            if self._schedule(event_id):
                scheduled += 1
        return scheduled

    def force_retry(self, event_id: Optional[str] = None) -> int:
        """
        Manually trigger delivery.

        With an id, resets the event's attempt count and re-dispatches every
        enabled channel immediately; retained failed events are moved back
        into pending tracking. Without an id, runs a retry sweep.

        Returns:
            Number of fan-outs triggered

        Raises:
            EventNotFound: If the id is neither pending nor a retained failure
        """
        if event_id is None:
            return self.retry_eligible()

        with self._lock:
            record = self._pending.get(event_id)
            if record is None:
                record = self._failed.pop(event_id, None)
                if record is None:
                    raise EventNotFound(event_id)
                self._pending[event_id] = record
            record.reset_attempts()

        logger.info("Manual retry triggered for event", event_id=event_id)

        if self._schedule(event_id):
            return 1
        with self._lock:
            coalesced = event_id in self._rerun
        return 1 if coalesced else 0

    # Queries

    def get_status(self, event_id: str) -> Optional[DeliveryEvent]:
        """Snapshot of a pending event, None once terminal or unknown."""
        with self._lock:
            record = self._pending.get(event_id)
            return record.model_copy(deep=True) if record is not None else None

    def count_pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def list_pending(
        self,
        tenant_id: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT
    ) -> PendingListing:
        """
        List pending events, oldest first.

        Args:
            tenant_id: Only include this tenant's events when given
            limit: Maximum events returned; non-positive means the default

        Returns:
            PendingListing with total, filtered count and the events
        """
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT

        with self._lock:
            total = len(self._pending)
            matching = [
                event
                for event in self._pending.values()
                if not tenant_id or event.tenant_id == tenant_id
            ]
            matching.sort(key=lambda e: e.created_at or datetime.min.replace(tzinfo=timezone.utc))
            events = [event.model_copy(deep=True) for event in matching[:limit]]

        return PendingListing(total_pending=total, filtered_count=len(matching), events=events)

    def list_failed(self, limit: int = DEFAULT_LIST_LIMIT) -> List[DeliveryEvent]:
        """Retained failed events, most recent first."""
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        with self._lock:
            records = list(reversed(self._failed.values()))[:limit]
            return [record.model_copy(deep=True) for record in records]

    def count_failed(self) -> int:
        with self._lock:
            return len(self._failed)


def build_delivery_manager(
    settings: Settings,
    tenants: TenantDirectory,
    broker: Optional[BrokerPublisher] = None,
    metrics: Optional[MetricsClient] = None
) -> DeliveryManager:
    """
    Wire a delivery manager from settings.

    Args:
        settings: Application settings
        tenants: Tenant directory for webhook and instance lookups
        broker: Broker publisher; an SQS publisher is built when omitted
        metrics: Optional metrics client

    Returns:
        Configured (not yet started) DeliveryManager
    """
    client = WebhookClient(
        body_format=settings.webhook_format,
        default_timeout=settings.channel_timeout
    )

    if broker is None:
        broker = SQSBrokerPublisher(
            tenants=tenants,
            default_queue=settings.broker_queue,
            queue_prefix=settings.broker_queue_prefix,
            specific_events=settings.specific_event_types,
            enabled=settings.broker_enabled,
            region_name=settings.aws_region,
            endpoint_url=settings.aws_endpoint_url,
            publish_attempts=settings.broker_publish_attempts
        )

    channels = [
        UserWebhookAdapter(tenants, client, timeout=settings.channel_timeout),
        GlobalWebhookAdapter(
            settings.global_webhook_url,
            tenants,
            client,
            timeout=settings.channel_timeout
        ),
        BrokerAdapter(broker, timeout=settings.channel_timeout),
    ]

    return DeliveryManager(
        channels=channels,
        max_retries=settings.max_retries,
        timeout=settings.delivery_timeout,
        retry_interval=settings.retry_interval,
        max_concurrent=settings.max_concurrent_deliveries,
        failed_history_size=settings.failed_history_size,
        skip_delivered_channels=settings.skip_delivered_channels,
        metrics=metrics
    )
