"""
Module: delivery/context.py
Description: Shared attempt deadline for one fan-out cycle.
"""

import asyncio
import time
from dataclasses import dataclass, field


@dataclass
class DeliveryContext:
    """
    Deadline shared by every channel of one fan-out cycle.

    Uses the monotonic clock so wall-clock changes cannot stretch or
    shrink an attempt.
    """

    deadline: float
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    @classmethod
    def with_timeout(cls, seconds: float) -> "DeliveryContext":
        return cls(deadline=time.monotonic() + seconds)

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return self.cancelled.is_set() or time.monotonic() >= self.deadline

    def cancel(self) -> None:
        self.cancelled.set()

    def bound(self, timeout: float) -> float:
        """Clamp a per-call timeout to the time left in the cycle."""
        return min(timeout, self.remaining())
