"""Operator-facing notifications with per-event deduplication."""

from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

import structlog

from slotbook.core.redis_client import CacheManager
from slotbook.core.timeutils import as_utc, utcnow
from slotbook.schemas.appointments import AppointmentResponse, AppointmentStatus

logger = structlog.get_logger(__name__)

PROCESSED_CACHE_KEY = "slotbook:notifications:processed"


class NotificationKind(str, Enum):
    """Events announced to staff."""

    NEW_APPOINTMENT = "new_appointment"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_PAID = "appointment_paid"
    PAYMENT_CONFIRMED = "payment_confirmed"
    RECONCILIATION_REQUIRED = "reconciliation_required"


class NotificationSink(Protocol):
    """Delivery channel; delivery itself is somebody else's problem."""

    def notify(self, kind: NotificationKind, message: str, dedupe_key: str) -> None:
        """Deliver one notification."""
        ...


class LoggingNotificationSink:
    """Sink that writes notifications to the structured log."""

    def notify(self, kind: NotificationKind, message: str, dedupe_key: str) -> None:
        logger.info("notification", kind=kind.value, message=message, dedupe_key=dedupe_key)


def dedupe_key(kind: NotificationKind, appointment_id: int) -> str:
    """Key identifying one event for one appointment."""
    return f"{kind.value}-{appointment_id}"


class Notifier:
    """
    Sends each (kind, appointment) event at most once.

    The processed-key set belongs to the owning session. With a cache
    manager it survives restarts; entries older than ``retention`` are
    forgotten. ``notify`` never raises.
    """

    def __init__(
        self,
        sink: NotificationSink,
        cache: CacheManager | None = None,
        retention: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
        cache_key: str = PROCESSED_CACHE_KEY,
    ):
        self.sink = sink
        self.cache = cache
        self.retention = retention
        self.clock = clock
        self.cache_key = cache_key
        self._processed: dict[str, datetime] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._processed

    def load(self) -> None:
        """Restore processed keys from the cache."""
        if self.cache is None:
            return
        stored = self.cache.get_json(self.cache_key)
        if not isinstance(stored, dict):
            return
        for key, seen_at in stored.items():
            try:
                self._processed[key] = as_utc(datetime.fromisoformat(seen_at))
            except (TypeError, ValueError):
                continue
        self.prune()

    def save(self) -> None:
        """Persist processed keys to the cache."""
        if self.cache is None:
            return
        self.prune()
        payload = {key: seen_at.isoformat() for key, seen_at in self._processed.items()}
        ttl = int(self.retention.total_seconds())
        if not self.cache.set_json(self.cache_key, payload, ttl=ttl):
            logger.warning("notification_keys_not_persisted", count=len(payload))

    def prune(self) -> None:
        """Forget keys older than the retention window."""
        cutoff = self.clock() - self.retention
        self._processed = {k: v for k, v in self._processed.items() if v >= cutoff}

    def notify(self, kind: NotificationKind, appointment_id: int, message: str) -> bool:
        """
        Announce an event unless it was already announced.

        Args:
            kind: Event type
            appointment_id: Appointment the event concerns
            message: Human-readable text

        Returns:
            True when the event was handed to the sink
        """
        key = dedupe_key(kind, appointment_id)
        self.prune()
        if key in self._processed:
            logger.debug("notification_duplicate", dedupe_key=key)
            return False
        self._processed[key] = self.clock()
        try:
            self.sink.notify(kind, message, key)
        except Exception as e:
            logger.warning("notification_sink_failed", dedupe_key=key, error=str(e))
        return True


class AppointmentChangeDetector:
    """
    Turns consecutive snapshots into notifications.

    The first load only establishes a baseline. New appointments are
    announced only when created after the detector started.
    """

    def __init__(self, notifier: Notifier, started_at: datetime | None = None):
        self.notifier = notifier
        self.started_at = as_utc(started_at) if started_at else utcnow()
        self._baseline_loaded = False

    def __call__(
        self,
        previous: list[AppointmentResponse],
        current: list[AppointmentResponse],
    ) -> None:
        if not self._baseline_loaded:
            self._baseline_loaded = True
            return

        before = {appointment.id: appointment for appointment in previous}
        for appointment in current:
            old = before.get(appointment.id)
            if old is None:
                if appointment.created_at and appointment.created_at > self.started_at:
                    self.notifier.notify(
                        NotificationKind.NEW_APPOINTMENT,
                        appointment.id,
                        f"New appointment for {appointment.client_name}",
                    )
                continue
            if old.status == appointment.status:
                continue
            if appointment.status == AppointmentStatus.CANCELLED:
                self.notifier.notify(
                    NotificationKind.APPOINTMENT_CANCELLED,
                    appointment.id,
                    f"Appointment for {appointment.client_name} was cancelled",
                )
            elif appointment.status == AppointmentStatus.COMPLETED:
                self.notifier.notify(
                    NotificationKind.APPOINTMENT_COMPLETED,
                    appointment.id,
                    f"Appointment for {appointment.client_name} was completed",
                )
