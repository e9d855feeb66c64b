"""
Module: aggregator.py
Description: Per-event aggregation of concurrent channel results.
"""

from typing import List, Optional

from event_delivery.models.event import Channel, DeliveryResult


class ResultAggregator:
    """
    Collects the results of one fan-out cycle.

    Sized to the number of dispatched channels; an event with no dispatched
    channel is a vacuous success.
    """

    def __init__(self, expected: int):
        if expected < 0:
            raise ValueError("expected must be non-negative")
        self.expected = expected
        self.results: List[DeliveryResult] = []

    def add(self, result: DeliveryResult) -> None:
        """
        Record one channel result.

        Raises:
            ValueError: If more results arrive than channels were dispatched
        """
        if len(self.results) >= self.expected:
            raise ValueError(
                f"received more than {self.expected} results for one fan-out"
            )
        self.results.append(result)

    @property
    def complete(self) -> bool:
        return len(self.results) == self.expected

    @property
    def success(self) -> bool:
        """True when every dispatched channel reported success."""
        return self.complete and all(r.success for r in self.results)

    @property
    def failures(self) -> List[DeliveryResult]:
        return [r for r in self.results if not r.success]

    @property
    def delivered_channels(self) -> List[Channel]:
        return [r.channel for r in self.results if r.success]

    @property
    def last_error(self) -> Optional[str]:
        """Error of the most recent failing result as '<channel>: <error>'."""
        failures = self.failures
        if not failures:
            return None
        # Ordered by completion time
        latest = max(
            failures,
            key=lambda r: r.timestamp.timestamp() + r.duration_ms / 1000.0
        )
        return f"{latest.channel.value}: {latest.error}"
