"""
Module: test_manager.py
Description: Unit tests for the delivery manager.

Drives the manager with scriptable fake channels to cover fan-out,
aggregation, attempt counting, terminal eviction, retry sweeps, force
retry, bounded concurrency, deadlines and shutdown.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from event_delivery.delivery.manager import DeliveryManager, EventNotFound
from event_delivery.models.event import Channel, DeliveryEvent, DeliveryStatus


def make_manager(channels, **kwargs):
    options = dict(max_retries=3, timeout=1.0, retry_interval=0.05)
    options.update(kwargs)
    return DeliveryManager(channels=channels, **options)


def failed_record(manager, event_id):
    return next((e for e in manager.list_failed() if e.id == event_id), None)


class TestSubmit:
    """Submission, id generation and snapshots."""

    @pytest.mark.asyncio
    async def test_no_enabled_channel_is_delivered(self, fake_channel, sample_event, wait_until):
        """An event with no enabled channel is delivered on the first fan-out."""
        disabled = fake_channel(Channel.WEBHOOK, enabled=False)
        manager = make_manager([disabled])

        event_id = manager.submit(sample_event)

        assert await wait_until(lambda: manager.count_pending() == 0)
        assert manager.get_status(event_id) is None
        assert disabled.calls == 0

    @pytest.mark.asyncio
    async def test_all_channels_succeed(self, fake_channel, sample_event, wait_until):
        """Delivered events are evicted from pending tracking."""
        webhook = fake_channel(Channel.WEBHOOK)
        broker = fake_channel(Channel.BROKER)
        manager = make_manager([webhook, broker])

        event_id = manager.submit(sample_event)
        assert manager.get_status(event_id).status == DeliveryStatus.PENDING

        assert await wait_until(lambda: manager.get_status(event_id) is None)
        assert webhook.calls == 1
        assert broker.calls == 1
        assert manager.count_pending() == 0

    @pytest.mark.asyncio
    async def test_generated_id_uses_tenant_prefix(self, fake_channel, sample_event):
        manager = make_manager([fake_channel(Channel.WEBHOOK, delay=0.5)])

        event_id = manager.submit(sample_event)

        tenant, nanos = event_id.rsplit("_", 1)
        assert tenant == "t1"
        assert nanos.isdigit()
        await manager.stop(drain_timeout=0.01)

    @pytest.mark.asyncio
    async def test_caller_supplied_id_is_kept(self, fake_channel, sample_event):
        manager = make_manager([fake_channel(Channel.WEBHOOK, delay=0.5)])
        sample_event.id = "msg-3EB0"

        assert manager.submit(sample_event) == "msg-3EB0"
        assert manager.get_status("msg-3EB0") is not None
        await manager.stop(drain_timeout=0.01)

    def test_generated_ids_unique_under_concurrent_submits(self, sample_event):
        """Concurrent submits for one tenant never share an id."""
        manager = make_manager([])

        def submit_many(_):
            return [manager.submit(sample_event) for _ in range(100)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            batches = list(pool.map(submit_many, range(8)))

        ids = [event_id for batch in batches for event_id in batch]
        assert len(ids) == 800
        assert len(set(ids)) == 800
        assert manager.count_pending() == 800

    @pytest.mark.asyncio
    async def test_payload_snapshot_is_immutable(self, fake_channel, sample_event, wait_until):
        """Changes made by the producer after submit are not delivered."""
        webhook = fake_channel(Channel.WEBHOOK, delay=0.05)
        manager = make_manager([webhook])

        event_id = manager.submit(sample_event)
        sample_event.payload["event"]["Info"]["ID"] = "CHANGED"

        snapshot = manager.get_status(event_id)
        assert snapshot.payload["event"]["Info"]["ID"] == "3EB0C767D097B7C7C030"
        assert b"3EB0C767D097B7C7C030" in snapshot.json_data

        assert await wait_until(lambda: webhook.calls == 1)
        assert b"CHANGED" not in webhook.events[0].json_data

    @pytest.mark.asyncio
    async def test_supplied_serialized_body_is_kept(self, fake_channel, sample_event):
        manager = make_manager([fake_channel(Channel.WEBHOOK, delay=0.5)])
        sample_event.json_data = b'{"raw": true}'

        event_id = manager.submit(sample_event)

        assert manager.get_status(event_id).json_data == b'{"raw": true}'
        await manager.stop(drain_timeout=0.01)


class TestFanOut:
    """Aggregation, attempt counting and terminal states."""

    @pytest.mark.asyncio
    async def test_partial_failure_stays_pending(self, fake_channel, sample_event, wait_until):
        webhook = fake_channel(Channel.WEBHOOK)
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([webhook, broker], retry_interval=60.0)

        event_id = manager.submit(sample_event)

        assert await wait_until(lambda: manager.get_status(event_id).attempt_count == 1)
        status = manager.get_status(event_id)
        assert status.status == DeliveryStatus.PENDING
        assert status.last_error == "broker: broker unavailable"
        assert status.delivered_channels == [Channel.WEBHOOK]

    @pytest.mark.asyncio
    async def test_attempt_count_increments_once_per_cycle(self, fake_channel, sample_event, wait_until):
        """attempt_count grows by one per cycle and stops at max_retries."""
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([broker], retry_interval=0.01)

        event_id = manager.submit(sample_event)

        for expected in (1, 2):
            assert await wait_until(lambda: broker.calls == expected and manager.get_status(event_id).attempt_count == expected)
            status = manager.get_status(event_id)
            assert status.attempt_count == expected
            assert status.status == DeliveryStatus.PENDING
            await asyncio.sleep(0.02)
            assert manager.force_retry() == 1

        assert await wait_until(lambda: manager.get_status(event_id) is None)
        record = failed_record(manager, event_id)
        assert record.status == DeliveryStatus.FAILED
        assert record.attempt_count == 3
        assert broker.calls == 3

        # Terminal events are not picked up by later sweeps
        await asyncio.sleep(0.02)
        assert manager.force_retry() == 0
        assert broker.calls == 3

    @pytest.mark.asyncio
    async def test_one_channel_always_failing_ends_failed(self, fake_channel, sample_event, wait_until):
        webhook = fake_channel(Channel.WEBHOOK)
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([webhook, broker])
        await manager.start()
        try:
            event_id = manager.submit(sample_event)

            assert await wait_until(lambda: failed_record(manager, event_id) is not None)
            record = failed_record(manager, event_id)
            assert record.status == DeliveryStatus.FAILED
            assert record.attempt_count == 3
            assert "broker" in record.last_error
            assert manager.get_status(event_id) is None
            assert webhook.calls == 3
            assert broker.calls == 3
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_failing_user_webhook_decrements_pending(self, fake_channel, sample_event, wait_until):
        """Only the user webhook configured, failing every attempt."""
        webhook = fake_channel(Channel.WEBHOOK, healthy=False)
        global_webhook = fake_channel(Channel.GLOBAL_WEBHOOK, enabled=False)
        manager = make_manager([webhook, global_webhook])
        await manager.start()
        try:
            event_id = manager.submit(sample_event)
            assert manager.count_pending() == 1

            assert await wait_until(lambda: manager.get_status(event_id) is None)
            assert manager.count_pending() == 0
            assert failed_record(manager, event_id).last_error.startswith("webhook:")
            assert webhook.calls == 3
            assert global_webhook.calls == 0
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_deadline_fails_slow_channel_only(self, fake_channel, sample_event, wait_until):
        """The shared deadline cancels slow channels; fast siblings still succeed."""
        fast = fake_channel(Channel.WEBHOOK)
        slow = fake_channel(Channel.GLOBAL_WEBHOOK, delay=5.0)
        manager = make_manager([fast, slow], timeout=0.1, retry_interval=60.0)

        event_id = manager.submit(sample_event)

        assert await wait_until(lambda: manager.get_status(event_id).attempt_count == 1)
        status = manager.get_status(event_id)
        assert status.last_error == "global_webhook: Context timeout"
        assert status.delivered_channels == [Channel.WEBHOOK]
        assert slow.active == 0

    @pytest.mark.asyncio
    async def test_unexpected_adapter_error_counts_as_failure(self, fake_channel, sample_event, wait_until):
        broken = fake_channel(Channel.BROKER)

        async def explode(event, target, ctx):
            raise RuntimeError("boom")

        broken.send = explode
        manager = make_manager([broken], retry_interval=60.0)

        event_id = manager.submit(sample_event)

        assert await wait_until(lambda: manager.get_status(event_id).attempt_count == 1)
        assert manager.get_status(event_id).last_error == "broker: RuntimeError: boom"


class TestRetries:
    """Retry sweep, force retry and channel skipping."""

    @pytest.mark.asyncio
    async def test_sweep_redelivers_after_broker_recovers(self, fake_channel, sample_event, wait_until):
        """Webhook ok and broker down, then the sweep re-dispatches both."""
        webhook = fake_channel(Channel.WEBHOOK)
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([webhook, broker], retry_interval=0.2)

        event_id = manager.submit(sample_event)
        assert await wait_until(lambda: manager.get_status(event_id).attempt_count == 1)
        status = manager.get_status(event_id)
        assert status.status == DeliveryStatus.PENDING

        broker.healthy = True
        await manager.start()
        try:
            assert await wait_until(lambda: manager.get_status(event_id) is None)
        finally:
            await manager.stop()

        assert webhook.calls == 2
        assert broker.calls == 2
        assert manager.count_pending() == 0
        assert failed_record(manager, event_id) is None

    @pytest.mark.asyncio
    async def test_sweep_waits_for_retry_interval(self, fake_channel, sample_event, wait_until):
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([broker], retry_interval=60.0)

        event_id = manager.submit(sample_event)
        assert await wait_until(lambda: manager.get_status(event_id).attempt_count == 1)

        assert manager.force_retry() == 0
        assert broker.calls == 1

    @pytest.mark.asyncio
    async def test_force_retry_revives_failed_event(self, fake_channel, sample_event, wait_until):
        """Force retry resets attempts and re-dispatches every channel."""
        webhook = fake_channel(Channel.WEBHOOK)
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([webhook, broker], max_retries=1, skip_delivered_channels=True)

        event_id = manager.submit(sample_event)
        assert await wait_until(lambda: failed_record(manager, event_id) is not None)
        assert manager.get_status(event_id) is None

        broker.healthy = True
        assert manager.force_retry(event_id) == 1

        status = manager.get_status(event_id)
        assert status.attempt_count == 0
        assert status.status == DeliveryStatus.PENDING
        assert status.delivered_channels == []

        assert await wait_until(lambda: manager.get_status(event_id) is None)
        assert webhook.calls == 2
        assert broker.calls == 2
        assert failed_record(manager, event_id) is None

    @pytest.mark.asyncio
    async def test_force_retry_unknown_event(self, fake_channel):
        manager = make_manager([fake_channel(Channel.WEBHOOK)])

        with pytest.raises(EventNotFound):
            manager.force_retry("missing")

    @pytest.mark.asyncio
    async def test_retry_skips_delivered_channels_when_enabled(self, fake_channel, sample_event, wait_until):
        webhook = fake_channel(Channel.WEBHOOK)
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([webhook, broker], retry_interval=0.01, skip_delivered_channels=True)

        event_id = manager.submit(sample_event)
        assert await wait_until(lambda: manager.get_status(event_id).attempt_count == 1)

        broker.healthy = True
        await asyncio.sleep(0.02)
        manager.force_retry()

        assert await wait_until(lambda: manager.get_status(event_id) is None)
        assert webhook.calls == 1
        assert broker.calls == 2

    @pytest.mark.asyncio
    async def test_force_retry_mid_flight_runs_fresh_cycle(self, fake_channel, sample_event, wait_until):
        """A cycle started before force_retry() does not count against the reset event."""
        broker = fake_channel(Channel.BROKER, healthy=False, delay=0.1)
        manager = make_manager([broker], max_retries=1, retry_interval=60.0)

        event_id = manager.submit(sample_event)
        await asyncio.sleep(0.02)
        assert manager.force_retry(event_id) == 1

        assert await wait_until(lambda: broker.calls == 2)
        broker.healthy = True

        assert await wait_until(lambda: manager.get_status(event_id) is None)
        assert broker.calls == 2
        assert manager.count_failed() == 0

    @pytest.mark.asyncio
    async def test_force_retry_mid_flight_dispatches_every_channel(
        self, fake_channel, sample_event, wait_until
    ):
        webhook = fake_channel(Channel.WEBHOOK, delay=0.1)
        broker = fake_channel(Channel.BROKER, healthy=False, delay=0.1)
        manager = make_manager([webhook, broker], retry_interval=60.0, skip_delivered_channels=True)

        event_id = manager.submit(sample_event)
        await asyncio.sleep(0.02)
        assert manager.force_retry(event_id) == 1

        assert await wait_until(
            lambda: broker.calls == 2 and manager.get_status(event_id).attempt_count == 1
        )
        status = manager.get_status(event_id)
        assert webhook.calls == 2
        assert status.attempt_count == 1
        assert status.delivered_channels == [Channel.WEBHOOK]

    @pytest.mark.asyncio
    async def test_trigger_during_flight_is_coalesced(self, fake_channel, sample_event, wait_until):
        """A retry requested mid-flight runs once, after the current cycle."""
        broker = fake_channel(Channel.BROKER, healthy=False, delay=0.1)
        manager = make_manager([broker], retry_interval=60.0)

        event_id = manager.submit(sample_event)
        await asyncio.sleep(0.02)
        assert manager.force_retry(event_id) == 1
        assert manager.force_retry(event_id) == 1

        assert await wait_until(lambda: broker.calls == 2)
        await asyncio.sleep(0.3)
        assert broker.calls == 2
        assert broker.max_active == 1


class TestQueriesAndLifecycle:
    """Listing, bounded concurrency and shutdown."""

    @pytest.mark.asyncio
    async def test_list_pending_filters_and_limits(self, fake_channel):
        manager = make_manager([fake_channel(Channel.WEBHOOK, delay=5.0)], timeout=10.0)
        first = manager.submit(DeliveryEvent(tenant_id="t1", event_type="Message", payload={"n": 1}))
        manager.submit(DeliveryEvent(tenant_id="t2", event_type="Message", payload={"n": 2}))
        manager.submit(DeliveryEvent(tenant_id="t1", event_type="Message", payload={"n": 3}))

        listing = manager.list_pending(tenant_id="t1", limit=1)
        assert listing.total_pending == 3
        assert listing.filtered_count == 2
        assert listing.shown_count == 1
        assert listing.events[0].id == first

        everything = manager.list_pending()
        assert everything.filtered_count == 3
        assert everything.shown_count == 3

        assert manager.list_pending(limit=0).shown_count == 3

        await manager.stop(drain_timeout=0.01)

    @pytest.mark.asyncio
    async def test_concurrent_fan_outs_are_bounded(self, fake_channel, wait_until):
        webhook = fake_channel(Channel.WEBHOOK, delay=0.05)
        manager = make_manager([webhook], max_concurrent=2)

        for n in range(6):
            manager.submit(DeliveryEvent(tenant_id="t1", event_type="Message", payload={"n": n}))

        assert await wait_until(lambda: manager.count_pending() == 0)
        assert webhook.calls == 6
        assert webhook.max_active == 2

    @pytest.mark.asyncio
    async def test_stop_halts_scheduler_and_new_dispatch(self, fake_channel, sample_event, capsys):
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([broker])
        await manager.start()
        assert manager.running
        assert manager.scheduler.running

        await manager.stop()

        assert not manager.running
        assert not manager.scheduler.running

        capsys.readouterr()
        event_id = manager.submit(sample_event)
        await asyncio.sleep(0.1)
        assert broker.calls == 0
        assert manager.get_status(event_id).attempt_count == 0

        output = capsys.readouterr().out
        assert "event left pending without delivery" in output
        assert event_id in output

    @pytest.mark.asyncio
    async def test_failed_history_is_bounded(self, fake_channel, wait_until):
        broker = fake_channel(Channel.BROKER, healthy=False)
        manager = make_manager([broker], max_retries=1, failed_history_size=2)

        for n in range(3):
            manager.submit(DeliveryEvent(tenant_id="t1", event_type="Message", payload={"n": n}))

        assert await wait_until(lambda: manager.count_pending() == 0)
        assert manager.count_failed() == 2
