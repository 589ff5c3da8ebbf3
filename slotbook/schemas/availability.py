"""Availability schemas."""

from datetime import date, time

from pydantic import BaseModel


class AvailabilityResponse(BaseModel):
    """Bookable slots for a provider on a given day."""

    provider_id: int | None
    date: date
    slots: list[time]
    fully_booked: bool
