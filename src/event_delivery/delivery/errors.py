"""
Module: delivery/errors.py
Description: Delivery error taxonomy.

- ConfigurationError: channel has no destination, it is skipped
- TransportError: network, timeout or non-2xx failure of a channel call
- ContextExpired: the shared attempt deadline elapsed
- ExhaustedRetries: event reached max_retries and is marked failed
"""

from typing import Optional


class DeliveryError(Exception):
    """Base class for delivery errors."""


class ConfigurationError(DeliveryError):
    """No destination configured for a channel. Not a delivery failure."""

    def __init__(self, channel: str, reason: str = "no destination configured"):
        self.channel = channel
        super().__init__(f"{channel}: {reason}")


class TransportError(DeliveryError):
    """A channel call failed on the wire."""

    def __init__(self, channel: str, message: str, status_code: Optional[int] = None):
        self.channel = channel
        self.status_code = status_code
        super().__init__(message)


class ContextExpired(DeliveryError):
    """The shared attempt deadline elapsed before the channel finished."""

    def __init__(self, channel: str, message: str = "Context timeout"):
        self.channel = channel
        super().__init__(message)


class ExhaustedRetries(DeliveryError):
    """An event failed on every allowed fan-out cycle."""

    def __init__(self, event_id: str, attempts: int, last_error: Optional[str]):
        self.event_id = event_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"event {event_id} failed after {attempts} attempts: {last_error}"
        )
