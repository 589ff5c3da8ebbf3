"""Availability filtering for a provider's business day."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo

import structlog

from slotbook.core.timeutils import combine_local, localize, parse_day
from slotbook.schemas.appointments import AppointmentResponse
from slotbook.schemas.catalog import WEEKDAYS, ProviderResponse

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DayAvailability:
    """Remaining slots for a day; distinguishes "fully booked" from "no date"."""

    day: date | None
    slots: list[time] = field(default_factory=list)

    @property
    def no_date_selected(self) -> bool:
        """No (valid) date has been chosen yet."""
        return self.day is None

    @property
    def fully_booked(self) -> bool:
        """A date is selected and nothing is left to book."""
        return self.day is not None and not self.slots


def occupied_times(
    snapshot: Iterable[AppointmentResponse],
    day: date,
    provider_id: int | None,
    tz: tzinfo,
) -> set[time]:
    """
    Collect the wall-clock times already taken on ``day``.

    Cancelled appointments free their slot. With ``provider_id`` set to
    ``None`` every provider's bookings count, which is only meaningful for
    display.
    """
    taken: set[time] = set()
    for appointment in snapshot:
        if not appointment.is_active:
            continue
        if provider_id is not None and appointment.provider_id != provider_id:
            continue
        local = appointment.scheduled_at.astimezone(tz)
        if local.date() != day:
            continue
        taken.add(local.time().replace(second=0, microsecond=0))
    return taken


def filter_available_slots(
    slots: Iterable[time],
    day: date | str | None,
    provider_id: int | None,
    snapshot: Iterable[AppointmentResponse],
    now: datetime,
    lead_time: timedelta,
    tz: tzinfo,
) -> list[time]:
    """
    Remove occupied slots and slots earlier than ``now + lead_time``.

    Args:
        slots: Candidate slots in ascending order
        day: Target calendar date (``YYYY-MM-DD`` strings are accepted)
        provider_id: Target provider, or ``None`` for any provider
        snapshot: Current appointments
        now: Current wall-clock instant (naive values are business time)
        lead_time: Minimum distance between now and a bookable slot
        tz: Business timezone

    Returns:
        Remaining slots, ascending and without duplicates. An unparseable
        day yields no slots rather than an error.
    """
    target = parse_day(day)
    if target is None:
        logger.debug("availability_unparseable_day", day=str(day))
        return []

    taken = occupied_times(snapshot, target, provider_id, tz)
    earliest = localize(now, tz) + lead_time

    available: list[time] = []
    seen: set[time] = set()
    for slot in slots:
        if slot in seen or slot in taken:
            continue
        if combine_local(target, slot, tz) < earliest:
            continue
        seen.add(slot)
        available.append(slot)
    return sorted(available)


def apply_provider_schedule(
    slots: Iterable[time],
    provider: ProviderResponse | None,
    day: date | None,
) -> list[time]:
    """Drop slots outside the provider's working window or on their days off."""
    slots = list(slots)
    if provider is None:
        return slots
    if day is not None and WEEKDAYS[day.weekday()] in provider.days_off:
        return []
    if provider.work_start is not None:
        slots = [slot for slot in slots if slot >= provider.work_start]
    if provider.work_end is not None:
        slots = [slot for slot in slots if slot <= provider.work_end]
    return slots


def day_availability(
    slots: Iterable[time],
    day: date | str | None,
    provider: ProviderResponse | None,
    provider_id: int | None,
    snapshot: Iterable[AppointmentResponse],
    now: datetime,
    lead_time: timedelta,
    tz: tzinfo,
) -> DayAvailability:
    """Full availability pipeline for one provider and day."""
    target = parse_day(day)
    if target is None:
        return DayAvailability(day=None)
    candidates = apply_provider_schedule(slots, provider, target)
    remaining = filter_available_slots(
        candidates, target, provider_id, snapshot, now, lead_time, tz
    )
    return DayAvailability(day=target, slots=remaining)
