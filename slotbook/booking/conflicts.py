"""Last-moment booking conflict checks against the live snapshot."""

import asyncio
import contextlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from enum import Enum

import structlog

from slotbook.booking.snapshot import AppointmentSnapshot, SnapshotRefresher
from slotbook.config import settings
from slotbook.core.exceptions import AppException, ErrorKind
from slotbook.core.timeutils import combine_local, parse_day, parse_slot
from slotbook.schemas.appointments import AppointmentResponse

logger = structlog.get_logger(__name__)


class ConflictStatus(str, Enum):
    """Outcome of a conflict check."""

    AVAILABLE = "available"
    CONFLICT = "conflict"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class BookingCandidate:
    """Provider, date and time the client is about to book."""

    provider_id: int
    day: date | str | None
    slot: time | str | None

    def instant(self, tz: tzinfo) -> datetime | None:
        """Absolute start, or ``None`` when date or time cannot be parsed."""
        day = parse_day(self.day)
        slot = parse_slot(self.slot)
        if day is None or slot is None:
            return None
        return combine_local(day, slot, tz)


@dataclass(frozen=True)
class ConflictResult:
    """Result of checking one candidate."""

    status: ConflictStatus
    message: str | None = None
    conflicting_id: int | None = None

    @property
    def blocking(self) -> bool:
        """Only a definite conflict blocks submission."""
        return self.status == ConflictStatus.CONFLICT


AVAILABLE = ConflictResult(ConflictStatus.AVAILABLE)


class ConflictValidator:
    """
    Checks a candidate booking against the appointment snapshot.

    ``check`` is a pure comparison with whatever the snapshot holds;
    ``verify`` first forces a reload so the comparison uses fresh data.
    """

    def __init__(
        self,
        snapshot: AppointmentSnapshot,
        refresher: SnapshotRefresher | None = None,
        tz: tzinfo | None = None,
    ):
        self.snapshot = snapshot
        self.refresher = refresher
        self.tz = tz or settings.tz

    def check(
        self,
        candidate: BookingCandidate,
        appointments: Iterable[AppointmentResponse] | None = None,
    ) -> ConflictResult:
        """Compare the candidate's exact instant with active appointments of the same provider."""
        instant = self.instant_or_none(candidate)
        if instant is None:
            return ConflictResult(ConflictStatus.CONFLICT, "Select a valid date and time")

        for appointment in appointments if appointments is not None else self.snapshot:
            if not appointment.is_active or appointment.provider_id != candidate.provider_id:
                continue
            if appointment.scheduled_at == instant:
                return ConflictResult(
                    ConflictStatus.CONFLICT,
                    "That time was just booked. Please choose another time.",
                    conflicting_id=appointment.id,
                )
        return AVAILABLE

    def instant_or_none(self, candidate: BookingCandidate) -> datetime | None:
        """Candidate start, or ``None`` when it is malformed."""
        return candidate.instant(self.tz)

    async def verify(self, candidate: BookingCandidate) -> ConflictResult:
        """
        Reload the snapshot, then check the candidate.

        Args:
            candidate: Booking about to be committed

        Returns:
            ``conflict`` when the slot is taken (even by stale data),
            ``indeterminate`` when the reload failed and stale data shows
            no conflict, ``available`` otherwise
        """
        if self.refresher is not None:
            try:
                await self.refresher.refresh(force=True)
            except AppException as e:
                result = self.check(candidate)
                if result.blocking:
                    return result
                logger.warning(
                    "conflict_check_indeterminate",
                    provider_id=candidate.provider_id,
                    kind=e.kind.value,
                    error=e.message,
                )
                message = (
                    "Could not confirm availability right now; the time may already be taken."
                    if e.kind == ErrorKind.NETWORK
                    else e.message
                )
                return ConflictResult(ConflictStatus.INDETERMINATE, message)

        result = self.check(candidate)
        if result.blocking:
            logger.info(
                "booking_conflict_detected",
                provider_id=candidate.provider_id,
                conflicting_id=result.conflicting_id,
            )
        return result


class DebouncedConflictCheck:
    """
    Re-runs ``verify`` a short while after the last input change.

    Every ``schedule`` invalidates earlier checks: a result whose
    generation is no longer current is dropped instead of applied.
    """

    def __init__(
        self,
        validator: ConflictValidator,
        on_result: Callable[[BookingCandidate, ConflictResult], None],
        delay: float | None = None,
    ):
        self.validator = validator
        self.on_result = on_result
        self.delay = settings.availability_debounce_seconds if delay is None else delay
        self.latest: ConflictResult | None = None
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def pending(self) -> bool:
        """Whether a check is waiting or running."""
        return self._task is not None and not self._task.done()

    def schedule(self, candidate: BookingCandidate) -> None:
        """Start a delayed check, cancelling the previous one."""
        if self._closed:
            return
        self._cancel_task()
        self._generation += 1
        self.latest = None
        self._task = asyncio.create_task(self._run(self._generation, candidate, self.delay))

    def invalidate(self) -> None:
        """Drop any pending check and its result."""
        self._cancel_task()
        self._generation += 1
        self.latest = None

    async def flush(self, candidate: BookingCandidate) -> ConflictResult:
        """Run a check immediately, superseding any pending one."""
        self._cancel_task()
        self._generation += 1
        generation = self._generation
        result = await self.validator.verify(candidate)
        self._apply(generation, candidate, result)
        return result

    async def _run(self, generation: int, candidate: BookingCandidate, delay: float) -> None:
        await asyncio.sleep(delay)
        result = await self.validator.verify(candidate)
        self._apply(generation, candidate, result)

    def _apply(self, generation: int, candidate: BookingCandidate, result: ConflictResult) -> None:
        if self._closed or generation != self._generation:
            logger.debug("conflict_check_stale", generation=generation, current=self._generation)
            return
        self.latest = result
        self.on_result(candidate, result)

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def close(self) -> None:
        """Cancel the pending check; no result is applied afterwards."""
        self._closed = True
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
