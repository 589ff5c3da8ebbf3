"""Appointment schemas for request/response validation."""

import re
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from slotbook.core.relations import Full, Stub, full_or_none, ref_id, wrap_reference
from slotbook.core.timeutils import as_utc, localize
from slotbook.schemas.catalog import ProviderResponse, ServiceResponse
from slotbook.schemas.payments import PaymentResponse

PHONE_PATTERN = re.compile(r"^\+?[0-9\s-]{7,15}$")


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "Pending"
    PAID = "Paid"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        """Completed and cancelled appointments only accept audit notes."""
        return self in (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)


ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.PAID, AppointmentStatus.CANCELLED}),
    AppointmentStatus.PAID: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Whether ``current`` may move to ``target``."""
    return target in ALLOWED_TRANSITIONS[current]


def _clean_phone(v: str | None) -> str | None:
    if v is None or not v.strip():
        return None
    v = v.strip()
    if not PHONE_PATTERN.match(v):
        raise ValueError("Phone number must be 7-15 digits, spaces or dashes, optionally prefixed by +")
    return v


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    scheduled_at: datetime
    client_name: str = Field(..., min_length=1, max_length=100)
    client_email: EmailStr
    client_phone: str | None = Field(None, max_length=20)
    notes: str | None = Field(None, max_length=1000)
    provider_id: int = Field(..., ge=1)
    service_id: int = Field(..., ge=1)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        """Naive input is business wall-clock time; store as UTC."""
        return as_utc(localize(v))

    @field_validator("client_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Names must not be blank after trimming."""
        v = v.strip()
        if not v:
            raise ValueError("Client name is required")
        return v

    @field_validator("client_email", mode="before")
    @classmethod
    def lower_email(cls, v: Any) -> Any:
        """Emails are compared case-insensitively."""
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("client_phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        """Validate phone number format."""
        return _clean_phone(v)

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: str | None) -> str | None:
        """Blank notes become null."""
        if v is None:
            return None
        return v.strip() or None


class AppointmentUpdate(BaseModel):
    """Schema for partially updating an appointment."""

    scheduled_at: datetime | None = None
    client_name: str | None = Field(None, min_length=1, max_length=100)
    client_email: EmailStr | None = None
    client_phone: str | None = Field(None, max_length=20)
    notes: str | None = Field(None, max_length=1000)
    provider_id: int | None = Field(None, ge=1)
    service_id: int | None = Field(None, ge=1)
    status: AppointmentStatus | None = None

    @field_validator("scheduled_at")
    @classmethod
    def normalize_start(cls, v: datetime | None) -> datetime | None:
        """Naive input is business wall-clock time; store as UTC."""
        return as_utc(localize(v)) if v else None

    @field_validator("client_phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        """Validate phone number format."""
        return _clean_phone(v)

    def changed_fields(self) -> set[str]:
        """Names of the fields explicitly sent by the caller."""
        return set(self.model_dump(exclude_unset=True))

    @property
    def is_status_only(self) -> bool:
        """True when the patch only moves the status."""
        return self.changed_fields() == {"status"}


class AppointmentResponse(BaseModel):
    """
    Appointment as returned by the API and held in the booking snapshot.

    Related provider, service and payment arrive as tagged references:
    ``Full`` when the related row is available, ``Stub`` when only its id is.
    """

    id: int
    scheduled_at: datetime
    client_name: str
    client_email: str
    client_phone: str | None = None
    status: AppointmentStatus
    notes: str | None = None
    provider: Stub | Full[ProviderResponse]
    service: Stub | Full[ServiceResponse]
    payment: Stub | Full[PaymentResponse] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def tag_relations(cls, data: Any) -> Any:
        """Normalise related records into ``Stub`` / ``Full`` references."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "provider" not in data and "provider_id" in data:
            data["provider"] = data["provider_id"]
        if "service" not in data and "service_id" in data:
            data["service"] = data["service_id"]
        data["provider"] = wrap_reference(data.get("provider"), "name")
        data["service"] = wrap_reference(data.get("service"), "name")
        data["payment"] = wrap_reference(data.get("payment"), "status")
        return data

    @field_validator("scheduled_at", "created_at", "updated_at", "cancelled_at", "completed_at")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        """Stored timestamps are UTC."""
        return as_utc(v) if v else None

    @property
    def provider_id(self) -> int:
        """Identity of the assigned provider."""
        return ref_id(self.provider)  # type: ignore[return-value]

    @property
    def service_id(self) -> int:
        """Identity of the booked service."""
        return ref_id(self.service)  # type: ignore[return-value]

    @property
    def provider_record(self) -> ProviderResponse | None:
        """Populated provider, if available."""
        return full_or_none(self.provider)

    @property
    def service_record(self) -> ServiceResponse | None:
        """Populated service, if available."""
        return full_or_none(self.service)

    @property
    def payment_record(self) -> PaymentResponse | None:
        """Populated payment, if available."""
        return full_or_none(self.payment)

    @property
    def is_active(self) -> bool:
        """Active appointments hold their slot."""
        return self.status != AppointmentStatus.CANCELLED

    def ends_at(self, default_minutes: int) -> datetime:
        """Start plus the service duration, or the default when unknown."""
        service = self.service_record
        minutes = service.duration_minutes if service else default_minutes
        return self.scheduled_at + timedelta(minutes=minutes)
