"""
Module: directory.py
Description: Tenant destination lookup.

The delivery core only needs three answers per tenant token: its webhook
URL, its instance name and its owner id. TenantDirectory describes that
contract; InMemoryTenantDirectory is the static implementation used by the
service and the tests.
"""

import threading
from typing import Dict, Optional, Protocol

from event_delivery.utils.logger import get_logger

logger = get_logger(__name__)


class TenantDirectory(Protocol):
    """Read-only tenant lookups consumed by the channel adapters."""

    def resolve_webhook_url(self, token: str) -> str:
        """Return the tenant webhook URL, empty when none is configured."""
        ...

    def resolve_instance_name(self, token: str) -> str:
        """Return the instance name, empty on miss."""
        ...

    def resolve_owner_id(self, token: str) -> str:
        """Return the owner id, empty on miss."""
        ...


class InMemoryTenantDirectory:
    """Thread-safe token keyed tenant directory."""

    def __init__(
        self,
        webhooks: Optional[Dict[str, str]] = None,
        names: Optional[Dict[str, str]] = None,
        owners: Optional[Dict[str, str]] = None
    ):
        self._lock = threading.Lock()
        self._webhooks: Dict[str, str] = dict(webhooks or {})
        self._names: Dict[str, str] = dict(names or {})
        self._owners: Dict[str, str] = dict(owners or {})

    def register(
        self,
        token: str,
        webhook_url: str = "",
        instance_name: str = "",
        owner_id: str = ""
    ) -> None:
        """
        Register or replace a tenant's destinations.

        Raises:
            ValueError: If token is empty or webhook_url is not HTTP/HTTPS
        """
        if not token:
            raise ValueError("token must be a non-empty string")
        if webhook_url and not webhook_url.startswith(('http://', 'https://')):
            raise ValueError("webhook_url must be a valid HTTP/HTTPS URL")

        with self._lock:
            self._webhooks[token] = webhook_url
            self._names[token] = instance_name
            self._owners[token] = owner_id

        logger.info(
            "Tenant registered",
            instance_name=instance_name,
            has_webhook=bool(webhook_url)
        )

    def unregister(self, token: str) -> None:
        with self._lock:
            self._webhooks.pop(token, None)
            self._names.pop(token, None)
            self._owners.pop(token, None)

    def resolve_webhook_url(self, token: str) -> str:
        with self._lock:
            return self._webhooks.get(token, "")

    def resolve_instance_name(self, token: str) -> str:
        with self._lock:
            return self._names.get(token, "")

    def resolve_owner_id(self, token: str) -> str:
        with self._lock:
            return self._owners.get(token, "")
