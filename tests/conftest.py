"""
Module: conftest.py
Description: Shared pytest fixtures for delivery service tests.

Provides test settings, a tenant directory, scriptable fake channels for
driving the delivery manager, and polling helpers for background work.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from event_delivery.config.settings import Settings
from event_delivery.delivery.channels import ChannelAdapter
from event_delivery.delivery.errors import ConfigurationError, TransportError
from event_delivery.main import create_app
from event_delivery.models.event import Channel, DeliveryEvent
from event_delivery.tenants.directory import InMemoryTenantDirectory


class FakeChannel(ChannelAdapter):
    """
    Scriptable channel adapter.

    Fails while healthy is False, records every call, and tracks how many
    sends run at the same time.
    """

    def __init__(self, channel: Channel, healthy: bool = True, enabled: bool = True,
                 delay: float = 0.0):
        super().__init__(timeout=5.0)
        self.channel = channel
        self.healthy = healthy
        self.enabled = enabled
        self.delay = delay
        self.calls = 0
        self.events = []
        self.active = 0
        self.max_active = 0

    def target(self, event):
        if not self.enabled:
            raise ConfigurationError(self.channel.value)
        return f"fake://{self.channel.value}"

    async def send(self, event, target, ctx):
        self.calls += 1
        self.events.append(event)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if not self.healthy:
                raise TransportError(self.channel.value, f"{self.channel.value} unavailable")
        finally:
            self.active -= 1


@pytest.fixture
def fake_channel():
    """Factory for FakeChannel instances."""
    return FakeChannel


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 clients never reach real accounts."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def test_settings():
    """
    Provide test configuration settings.

    Disables .env loading and uses a long retry interval so tests decide
    when sweeps happen.
    """
    return Settings(
        _env_file=None,
        app_name="Event Delivery Test",
        app_version="0.1.0-test",
        log_level="DEBUG",
        stage="test",
        max_retries=3,
        delivery_timeout=2.0,
        channel_timeout=1.0,
        retry_interval=60.0,
        broker_enabled=False,
        global_webhook_url="",
        admin_api_key=None,
    )


@pytest.fixture
def tenants():
    """Tenant directory with one tenant that has a webhook configured."""
    directory = InMemoryTenantDirectory()
    directory.register(
        "tok_t1",
        webhook_url="https://hooks.example.com/t1",
        instance_name="Instance One",
        owner_id="5511999999999@s.whatsapp.net"
    )
    return directory


@pytest.fixture
def sample_event():
    """A message receipt event for tenant t1."""
    return DeliveryEvent(
        tenant_id="t1",
        token="tok_t1",
        event_type="Message",
        payload={
            "type": "Message",
            "event": {"Info": {"ID": "3EB0C767D097B7C7C030", "Chat": "5511888888888@s.whatsapp.net"}}
        }
    )


async def _wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def _wait_until_sync(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    """Async polling helper: await wait_until(lambda: condition)."""
    return _wait_until


@pytest.fixture
def wait_until_sync():
    """Blocking polling helper for tests driving a TestClient."""
    return _wait_until_sync


@pytest.fixture
def client(test_settings, tenants):
    """
    TestClient with the application lifespan running.

    The delivery manager is started on the client's event loop; tests
    swap manager.channels for fake channels to script outcomes.
    """
    app = create_app(settings=test_settings, tenants=tenants)
    with TestClient(app) as test_client:
        yield test_client
