"""Canonical time-of-day slots for a business day."""

from collections.abc import Iterator
from datetime import time

from slotbook.config import settings


class SlotGenerator:
    """
    Restartable sequence of slots from ``open_hour`` to ``close_hour`` inclusive.

    Iterating twice yields the same values; the generator holds no state
    beyond its three inputs.
    """

    def __init__(self, open_hour: int, close_hour: int, step_minutes: int = 30):
        """Validate bounds; ``close_hour < open_hour`` is allowed and yields nothing."""
        if step_minutes <= 0:
            raise ValueError("step_minutes must be positive")
        if not (0 <= open_hour <= 23 and 0 <= close_hour <= 23):
            raise ValueError("hours must be between 0 and 23")
        self.open_hour = open_hour
        self.close_hour = close_hour
        self.step_minutes = step_minutes

    @classmethod
    def from_settings(cls) -> "SlotGenerator":
        """Generator for the configured business hours."""
        return cls(
            settings.business_open_hour,
            settings.business_close_hour,
            settings.slot_interval_minutes,
        )

    def __iter__(self) -> Iterator[time]:
        minutes = self.open_hour * 60
        last = self.close_hour * 60
        while minutes <= last:
            yield time(minutes // 60, minutes % 60)
            minutes += self.step_minutes

    def __len__(self) -> int:
        if self.close_hour < self.open_hour:
            return 0
        return (self.close_hour - self.open_hour) * 60 // self.step_minutes + 1

    def __contains__(self, slot: object) -> bool:
        return slot in tuple(self)

    def within_hours(self, slot: time) -> bool:
        """True when ``slot`` lies between opening and closing time inclusive."""
        return time(self.open_hour) <= slot <= time(self.close_hour)


def generate_slots(open_hour: int, close_hour: int, step_minutes: int = 30) -> list[time]:
    """Ordered slots from open to close inclusive; empty when close < open."""
    return list(SlotGenerator(open_hour, close_hour, step_minutes))
