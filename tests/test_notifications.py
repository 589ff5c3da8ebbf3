"""Tests for deduplicated notifications and snapshot change detection."""

import json
from datetime import timedelta
from unittest.mock import MagicMock

from conftest import FIXED_NOW, RecordingSink, make_appointment

from slotbook.booking.notifications import (
    PROCESSED_CACHE_KEY,
    AppointmentChangeDetector,
    LoggingNotificationSink,
    NotificationKind,
    Notifier,
    dedupe_key,
)
from slotbook.schemas.appointments import AppointmentStatus

START = FIXED_NOW + timedelta(days=1)


class MutableClock:
    def __init__(self) -> None:
        self.now = FIXED_NOW

    def __call__(self):
        return self.now


def test_dedupe_key_format():
    assert dedupe_key(NotificationKind.APPOINTMENT_CANCELLED, 42) == "appointment_cancelled-42"


def test_same_event_is_sent_once():
    sink = RecordingSink()
    notifier = Notifier(sink, clock=MutableClock())

    assert notifier.notify(NotificationKind.NEW_APPOINTMENT, 1, "New appointment") is True
    assert notifier.notify(NotificationKind.NEW_APPOINTMENT, 1, "New appointment") is False
    assert notifier.notify(NotificationKind.APPOINTMENT_CANCELLED, 1, "Cancelled") is True

    assert sink.keys == ["new_appointment-1", "appointment_cancelled-1"]
    assert "new_appointment-1" in notifier


def test_keys_expire_after_retention():
    sink = RecordingSink()
    clock = MutableClock()
    notifier = Notifier(sink, retention=timedelta(hours=24), clock=clock)

    notifier.notify(NotificationKind.NEW_APPOINTMENT, 1, "New appointment")
    clock.now += timedelta(hours=25)
    notifier.notify(NotificationKind.NEW_APPOINTMENT, 1, "New appointment")

    assert len(sink.sent) == 2


def test_sink_failure_never_raises():
    sink = MagicMock()
    sink.notify.side_effect = RuntimeError("channel down")
    notifier = Notifier(sink, clock=MutableClock())

    assert notifier.notify(NotificationKind.PAYMENT_CONFIRMED, 3, "Paid") is True
    assert notifier.notify(NotificationKind.PAYMENT_CONFIRMED, 3, "Paid") is False


def test_logging_sink_accepts_notifications():
    LoggingNotificationSink().notify(NotificationKind.NEW_APPOINTMENT, "hello", "new_appointment-1")


def test_processed_keys_survive_a_restart(cache_manager):
    clock = MutableClock()
    first = Notifier(RecordingSink(), cache=cache_manager, clock=clock)
    first.notify(NotificationKind.APPOINTMENT_COMPLETED, 9, "Completed")
    first.save()

    stored = json.loads(cache_manager.redis.store[PROCESSED_CACHE_KEY])
    assert list(stored) == ["appointment_completed-9"]

    sink = RecordingSink()
    second = Notifier(sink, cache=cache_manager, clock=clock)
    second.load()

    assert second.notify(NotificationKind.APPOINTMENT_COMPLETED, 9, "Completed") is False
    assert sink.sent == []


def test_load_ignores_garbage(cache_manager):
    cache_manager.redis.store[PROCESSED_CACHE_KEY] = json.dumps({"new_appointment-1": "soon"})
    notifier = Notifier(RecordingSink(), cache=cache_manager, clock=MutableClock())

    notifier.load()

    assert "new_appointment-1" not in notifier


def test_first_load_is_only_a_baseline():
    sink = RecordingSink()
    detector = AppointmentChangeDetector(Notifier(sink, clock=MutableClock()), started_at=FIXED_NOW)

    detector([], [make_appointment(1, START, created_at=FIXED_NOW + timedelta(minutes=5))])

    assert sink.sent == []


def test_new_appointments_after_start_are_announced():
    sink = RecordingSink()
    detector = AppointmentChangeDetector(Notifier(sink, clock=MutableClock()), started_at=FIXED_NOW)
    detector([], [])

    old = make_appointment(1, START, created_at=FIXED_NOW - timedelta(hours=2))
    new = make_appointment(2, START, created_at=FIXED_NOW + timedelta(minutes=5))
    detector([], [old, new])

    assert sink.keys == ["new_appointment-2"]


def test_status_changes_are_announced_once():
    sink = RecordingSink()
    detector = AppointmentChangeDetector(Notifier(sink, clock=MutableClock()), started_at=FIXED_NOW)
    pending = make_appointment(1, START)
    paid = make_appointment(2, START, status=AppointmentStatus.PAID)
    detector([], [pending, paid])

    cancelled = make_appointment(1, START, status=AppointmentStatus.CANCELLED)
    completed = make_appointment(2, START, status=AppointmentStatus.COMPLETED)
    detector([pending, paid], [cancelled, completed])
    detector([pending, paid], [cancelled, completed])

    assert sink.keys == ["appointment_cancelled-1", "appointment_completed-2"]


def test_payment_status_change_is_not_announced_by_detector():
    sink = RecordingSink()
    detector = AppointmentChangeDetector(Notifier(sink, clock=MutableClock()), started_at=FIXED_NOW)
    pending = make_appointment(1, START)
    detector([], [pending])

    detector([pending], [make_appointment(1, START, status=AppointmentStatus.PAID)])

    assert sink.sent == []
