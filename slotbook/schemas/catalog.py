"""Catalog schemas: services, providers and their associations."""

from datetime import datetime, time
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class ServiceResponse(BaseModel):
    """Bookable service."""

    id: int
    name: str
    price: Decimal = Field(..., ge=0)
    duration_minutes: int = Field(..., gt=0)
    description: str | None = None
    active: bool = True

    model_config = {"from_attributes": True}


class ProviderResponse(BaseModel):
    """Staff member who performs services."""

    id: int
    name: str
    photo_url: str | None = None
    specialty: str | None = None
    work_start: time | None = None
    work_end: time | None = None
    days_off: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @field_validator("days_off", mode="before")
    @classmethod
    def split_days_off(cls, v: object) -> list[str]:
        """Accept the stored comma separated form as well as a list."""
        if v is None:
            return []
        items = v.split(",") if isinstance(v, str) else list(v)  # type: ignore[call-overload]
        return [day.strip().lower() for day in items if day and day.strip().lower() in WEEKDAYS]


class ProviderServiceLink(BaseModel):
    """Association between a provider and a service they can perform."""

    provider_id: int
    service_id: int
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def active(self) -> bool:
        """Soft-deleted links no longer make the provider eligible."""
        return self.deleted_at is None
