"""Tests for dashboard summary helpers."""

from datetime import timedelta
from decimal import Decimal

import pytest
from conftest import CONSULTATION, FIXED_NOW, HAIRCUT, make_appointment

from slotbook.booking.dashboard import (
    next_reservation,
    projected_revenue,
    status_counts,
    upcoming,
)
from slotbook.schemas.appointments import AppointmentStatus


def sample():
    return [
        make_appointment(1, FIXED_NOW - timedelta(days=1), status=AppointmentStatus.COMPLETED),
        make_appointment(2, FIXED_NOW + timedelta(hours=3), status=AppointmentStatus.PAID),
        make_appointment(3, FIXED_NOW + timedelta(hours=1)),
        make_appointment(4, FIXED_NOW + timedelta(hours=2), status=AppointmentStatus.CANCELLED),
        make_appointment(5, FIXED_NOW + timedelta(days=2), service=CONSULTATION),
        make_appointment(6, FIXED_NOW + timedelta(days=3), service={"id": 99}),
    ]


def test_status_counts_include_every_status():
    counts = status_counts(sample())

    assert counts == {
        AppointmentStatus.PENDING: 3,
        AppointmentStatus.PAID: 1,
        AppointmentStatus.COMPLETED: 1,
        AppointmentStatus.CANCELLED: 1,
    }
    assert status_counts([])[AppointmentStatus.PAID] == 0


def test_upcoming_skips_past_and_closed_appointments():
    items = upcoming(sample(), FIXED_NOW)

    assert [a.id for a in items] == [3, 2, 5, 6]
    assert [a.id for a in upcoming(sample(), FIXED_NOW, limit=2)] == [3, 2]


def test_next_reservation():
    assert next_reservation(sample(), FIXED_NOW).id == 3
    assert next_reservation([], FIXED_NOW) is None


def test_projected_revenue_sums_known_active_services():
    # Completed + Paid + Pending haircuts, a free consultation, an unknown service
    assert projected_revenue(sample()) == HAIRCUT.price * 3 + Decimal("0.00")


def test_in_progress_appointment_is_still_upcoming():
    started = make_appointment(7, FIXED_NOW - timedelta(minutes=20))
    unknown_service = make_appointment(8, FIXED_NOW - timedelta(minutes=50), service={"id": 99})
    finished = make_appointment(9, FIXED_NOW - timedelta(minutes=40))

    items = upcoming([started, unknown_service, finished], FIXED_NOW, default_minutes=60)

    # Haircuts last 30 minutes; the unknown service falls back to 60
    assert [a.id for a in items] == [8, 7]


@pytest.mark.asyncio
async def test_session_dashboard_reads_the_snapshot(booking_session, backend):
    for appointment in sample():
        backend.add(appointment)
    await booking_session.refresher.refresh(force=True)

    summary = booking_session.dashboard(limit=2)

    assert summary.counts[AppointmentStatus.PENDING] == 3
    assert [a.id for a in summary.upcoming] == [3, 2]
    assert summary.next_reservation.id == 3
    assert summary.projected_revenue == HAIRCUT.price * 3
