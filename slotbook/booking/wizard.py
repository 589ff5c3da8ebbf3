"""Three-step booking form state."""

from dataclasses import dataclass
from datetime import date, time, timedelta, tzinfo
from decimal import Decimal
from enum import IntEnum
from typing import TYPE_CHECKING

import structlog
from pydantic import EmailStr, TypeAdapter, ValidationError

from slotbook.booking.availability import (
    DayAvailability,
    apply_provider_schedule,
    day_availability,
    filter_available_slots,
    occupied_times,
)
from slotbook.booking.conflicts import (
    BookingCandidate,
    ConflictResult,
    ConflictStatus,
    DebouncedConflictCheck,
)
from slotbook.core.exceptions import SlotConflictException, ValidationException
from slotbook.core.timeutils import combine_local, localize, parse_day, parse_slot
from slotbook.schemas.appointments import PHONE_PATTERN, AppointmentCreate
from slotbook.schemas.catalog import ProviderResponse, ServiceResponse

if TYPE_CHECKING:
    from slotbook.booking.session import BookingSession

logger = structlog.get_logger(__name__)

EMAIL_ADAPTER = TypeAdapter(EmailStr)

NO_PROVIDER_NOTICE = (
    "No provider currently offers this service online. Please contact us to book it."
)


class WizardStep(IntEnum):
    """Wizard steps, in order."""

    SELECTION = 1
    CONTACT = 2
    REVIEW = 3


SELECTION_FIELDS = ("service_id", "provider_id", "date", "time")
CONTACT_FIELDS = ("name", "email", "phone")

STEP_FIELDS = {
    WizardStep.SELECTION: SELECTION_FIELDS,
    WizardStep.CONTACT: CONTACT_FIELDS,
    WizardStep.REVIEW: SELECTION_FIELDS + CONTACT_FIELDS,
}


@dataclass(frozen=True)
class PendingBooking:
    """Validated wizard output handed to the payment machine."""

    payload: AppointmentCreate
    amount: Decimal
    service_name: str
    provider_name: str

    def candidate(self, tz: tzinfo) -> BookingCandidate:
        """Conflict-check candidate for this booking."""
        start = self.payload.scheduled_at.astimezone(tz)
        return BookingCandidate(self.payload.provider_id, start.date(), start.time())


class BookingWizard:
    """
    Selection, contact and review steps with per-step validation.

    Field setters keep dependent state consistent: a new service
    recomputes eligible providers (auto-selecting the first), and a new
    service, provider or date recomputes available times, snapping the
    selected time to the first free one.
    """

    def __init__(self, session: "BookingSession", live_checks: bool = False):
        self.session = session
        self.live_checks = live_checks
        self._debounce: DebouncedConflictCheck | None = None
        self.session.refresher.add_listener(self._on_snapshot_changed)
        self.reset()

    def reset(self) -> None:
        """Return to an empty form on the first step with a fresh date and time."""
        self.step = WizardStep.SELECTION
        self.errors: dict[str, str] = {}
        self.warning: str | None = None
        self.service_id: int | None = None
        self.provider_id: int | None = None
        self.name = ""
        self.email = ""
        self.phone = ""
        self.notes = ""
        self.date, self.time = self.initial_date_time()
        self.availability = DayAvailability(day=self.date)
        self.available_times: list[time] = []
        if self._debounce is not None:
            self._debounce.invalidate()
        self._recompute_times(snap=False)

    def initial_date_time(self) -> tuple[date, time | None]:
        """Today and its first slot past the lead time, else tomorrow's first slot."""
        now = localize(self.session.now(), self.session.tz)
        today = now.date()
        slots = list(self.session.slot_generator)
        remaining = filter_available_slots(
            slots, today, None, [], now, self.session.lead_time, self.session.tz
        )
        if remaining:
            return today, remaining[0]
        return today + timedelta(days=1), (slots[0] if slots else None)

    @property
    def selectable_services(self) -> list[ServiceResponse]:
        """Active services, by name."""
        return self.session.catalog.active_services()

    @property
    def service(self) -> ServiceResponse | None:
        """Selected service record."""
        return self.session.catalog.service(self.service_id)

    @property
    def provider(self) -> ProviderResponse | None:
        """Selected provider record."""
        return self.session.catalog.provider(self.provider_id)

    @property
    def eligible_providers(self) -> list[ProviderResponse]:
        """Providers able to perform the selected service."""
        return self.session.catalog.eligible_providers(self.service_id)

    @property
    def notice(self) -> str | None:
        """Contact-us notice when the selected service has nobody to perform it."""
        if self.service_id is not None and not self.eligible_providers:
            return NO_PROVIDER_NOTICE
        return None

    def select_service(self, service_id: int | None) -> None:
        """Choose a service; the provider is kept only if still eligible."""
        self.service_id = service_id
        eligible = self.eligible_providers
        if self.provider_id not in {p.id for p in eligible}:
            self.provider_id = eligible[0].id if eligible else None
        self._recompute_times()
        self._touch("service_id", "provider_id")

    def select_provider(self, provider_id: int | None) -> None:
        """Choose a provider."""
        self.provider_id = provider_id
        self._recompute_times()
        self._touch("provider_id")

    def select_date(self, value: date | str | None) -> None:
        """Choose a date; unparseable input is kept as "no date"."""
        self.date = parse_day(value)
        self._recompute_times()
        self._touch("date")

    def select_time(self, value: time | str | None) -> None:
        """Choose a time slot."""
        self.time = parse_slot(value)
        self._schedule_conflict_check()
        self._touch("time")

    def set_contact(
        self,
        name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        notes: str | None = None,
    ) -> None:
        """Update contact fields; ``None`` leaves a field untouched."""
        touched = []
        if name is not None:
            self.name = name
            touched.append("name")
        if email is not None:
            self.email = email
            touched.append("email")
        if phone is not None:
            self.phone = phone
            touched.append("phone")
        if notes is not None:
            self.notes = notes
        self._touch(*touched)

    def refresh_availability(self) -> None:
        """Recompute available times against the current snapshot."""
        self._recompute_times(check=False)
        if self.errors.get("time"):
            self._touch("time")

    def _on_snapshot_changed(self, previous: object, current: object) -> None:
        self.refresh_availability()

    def _recompute_times(self, snap: bool = True, check: bool = True) -> None:
        session = self.session
        self.availability = day_availability(
            session.slot_generator,
            self.date,
            self.provider,
            self.provider_id,
            session.snapshot,
            session.now(),
            session.lead_time,
            session.tz,
        )
        self.available_times = self.availability.slots
        if snap and self.time not in self.available_times:
            self.time = self.available_times[0] if self.available_times else None
        if check:
            self._schedule_conflict_check()

    def _touch(self, *fields: str) -> None:
        for name in fields:
            message = self.validate_field(name)
            if message:
                self.errors[name] = message
            else:
                self.errors.pop(name, None)

    def validate_field(self, name: str) -> str | None:
        """Error message for one field, or ``None`` when it is valid."""
        if name == "service_id":
            service = self.service
            if service is None or not service.active:
                return "Select a service"
            return None
        if name == "provider_id":
            eligible = self.eligible_providers
            if not eligible:
                return None
            if self.provider_id not in {p.id for p in eligible}:
                return "Select a provider"
            return None
        if name == "date":
            return "Select a valid date" if self.date is None else None
        if name == "time":
            return self._validate_time()
        if name == "name":
            return "Name is required" if not self.name.strip() else None
        if name == "email":
            email = self.email.strip()
            if not email:
                return "Email is required"
            try:
                EMAIL_ADAPTER.validate_python(email)
            except ValidationError:
                return "Enter a valid email address"
            return None
        if name == "phone":
            phone = self.phone.strip()
            if phone and not PHONE_PATTERN.match(phone):
                return "Enter a valid phone number"
            return None
        return None

    def _validate_time(self) -> str | None:
        session = self.session
        if self.time is None:
            return "Select a time"
        if self.date is None:
            return "Select a valid time"
        start = combine_local(self.date, self.time, session.tz)
        if start < localize(session.now(), session.tz) + session.lead_time:
            minutes = int(session.lead_time.total_seconds() // 60)
            return f"Choose a time at least {minutes} minutes from now"
        if not session.slot_generator.within_hours(self.time):
            return "Choose a time within business hours"
        if not apply_provider_schedule([self.time], self.provider, self.date):
            return "The provider is not working at that time"
        if self.time in occupied_times(session.snapshot, self.date, self.provider_id, session.tz):
            return "That time is already booked"
        return None

    def validate(self, step: WizardStep | None = None) -> dict[str, str]:
        """Errors for every field the step declares (current step by default)."""
        errors = {}
        for name in STEP_FIELDS[step or self.step]:
            message = self.validate_field(name)
            if message:
                errors[name] = message
        return errors

    def next(self) -> bool:
        """Advance when the current step validates; otherwise record its errors."""
        errors = self.validate()
        self.errors = errors
        if errors:
            logger.debug("wizard_step_blocked", step=self.step.name, fields=sorted(errors))
            return False
        if self.step < WizardStep.REVIEW:
            self.step = WizardStep(self.step + 1)
        return True

    def previous(self) -> None:
        """Go back one step without validating."""
        if self.step > WizardStep.SELECTION:
            self.step = WizardStep(self.step - 1)
        self.errors = {}

    @property
    def can_submit(self) -> bool:
        """Review step with every field valid."""
        return self.step == WizardStep.REVIEW and not self.validate(WizardStep.REVIEW)

    def build_pending_booking(self) -> PendingBooking:
        """
        Re-validate everything and assemble the booking payload.

        Raises:
            ValidationException: A field is invalid or no provider is available
        """
        errors = self.validate(WizardStep.REVIEW)
        if errors:
            self.errors = errors
            field, message = next(iter(errors.items()))
            raise ValidationException(message, field=field)

        service = self.service
        provider = self.provider
        if service is None or self.date is None or self.time is None:
            raise ValidationException("Select a service, date and time")
        if provider is None:
            raise ValidationException(NO_PROVIDER_NOTICE, field="provider_id")

        try:
            payload = AppointmentCreate(
                scheduled_at=combine_local(self.date, self.time, self.session.tz),
                client_name=self.name,
                client_email=self.email.strip(),
                client_phone=self.phone or None,
                notes=self.notes or None,
                provider_id=provider.id,
                service_id=service.id,
            )
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error.get("loc") else None
            raise ValidationException(error["msg"], field=field) from e

        return PendingBooking(
            payload=payload,
            amount=service.price,
            service_name=service.name,
            provider_name=provider.name,
        )

    async def submit(self) -> PendingBooking:
        """
        Validate, re-check the slot against fresh data and hand off.

        Raises:
            ValidationException: A field is invalid
            SlotConflictException: The slot was taken since it was displayed
        """
        pending = self.build_pending_booking()
        candidate = BookingCandidate(pending.payload.provider_id, self.date, self.time)
        result = await self.session.conflict_validator().verify(candidate)
        self._apply_conflict(candidate, result)
        if result.blocking:
            message = result.message or "That time is already booked"
            # The reload may already have moved the selection off the taken slot
            if "time" not in self.errors:
                self.warning = message
            raise SlotConflictException(message)
        return pending

    def _schedule_conflict_check(self) -> None:
        if not self.live_checks or self.provider_id is None or self.time is None:
            return
        if self._debounce is None:
            self._debounce = DebouncedConflictCheck(
                self.session.conflict_validator(),
                self._apply_conflict,
                delay=self.session.config.availability_debounce_seconds,
            )
        self._debounce.schedule(BookingCandidate(self.provider_id, self.date, self.time))

    def _apply_conflict(self, candidate: BookingCandidate, result: ConflictResult) -> None:
        current = BookingCandidate(self.provider_id or 0, self.date, self.time)
        if candidate.instant(self.session.tz) != current.instant(self.session.tz):
            return
        if candidate.provider_id != current.provider_id:
            return
        self.warning = None
        if result.status == ConflictStatus.CONFLICT:
            message = result.message or "That time is already booked"
            self._recompute_times(check=False)
            if self.time == parse_slot(candidate.slot):
                self.errors["time"] = message
            else:
                self.errors.pop("time", None)
                self.warning = message
        elif result.status == ConflictStatus.INDETERMINATE:
            self.warning = result.message

    async def close(self) -> None:
        """Cancel pending checks and stop following snapshot reloads."""
        self.session.refresher.remove_listener(self._on_snapshot_changed)
        if self._debounce is not None:
            await self._debounce.close()
