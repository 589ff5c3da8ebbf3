"""Summary figures for the staff dashboard."""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from slotbook.config import settings
from slotbook.core.timeutils import as_utc
from slotbook.schemas.appointments import AppointmentResponse, AppointmentStatus


def status_counts(appointments: Iterable[AppointmentResponse]) -> dict[AppointmentStatus, int]:
    """Number of appointments per status, every status present."""
    counts = Counter(appointment.status for appointment in appointments)
    return {status: counts.get(status, 0) for status in AppointmentStatus}


def upcoming(
    appointments: Iterable[AppointmentResponse],
    now: datetime,
    limit: int | None = None,
    default_minutes: int | None = None,
) -> list[AppointmentResponse]:
    """Active appointments that have not finished by ``now``, soonest first."""
    now = as_utc(now)
    minutes = default_minutes or settings.default_appointment_duration_minutes
    items = sorted(
        (
            a
            for a in appointments
            if a.status in (AppointmentStatus.PENDING, AppointmentStatus.PAID)
            and a.ends_at(minutes) > now
        ),
        key=lambda a: a.scheduled_at,
    )
    return items[:limit] if limit is not None else items


def next_reservation(
    appointments: Iterable[AppointmentResponse], now: datetime
) -> AppointmentResponse | None:
    """The soonest upcoming appointment."""
    items = upcoming(appointments, now, limit=1)
    return items[0] if items else None


def projected_revenue(appointments: Iterable[AppointmentResponse]) -> Decimal:
    """Sum of service prices over non-cancelled appointments with a known service."""
    total = Decimal("0")
    for appointment in appointments:
        service = appointment.service_record
        if appointment.is_active and service is not None:
            total += service.price
    return total


@dataclass(frozen=True)
class DashboardSummary:
    """Figures shown at the top of the staff dashboard."""

    counts: dict[AppointmentStatus, int]
    upcoming: list[AppointmentResponse]
    next_reservation: AppointmentResponse | None
    projected_revenue: Decimal


def summarize(
    appointments: Iterable[AppointmentResponse], now: datetime, limit: int | None = None
) -> DashboardSummary:
    """All dashboard figures for one appointment collection."""
    items = list(appointments)
    soon = upcoming(items, now, limit=limit)
    return DashboardSummary(
        counts=status_counts(items),
        upcoming=soon,
        next_reservation=soon[0] if soon else None,
        projected_revenue=projected_revenue(items),
    )
