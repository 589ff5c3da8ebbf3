"""Slot availability endpoint."""

from datetime import timedelta

from fastapi import APIRouter, Depends, Query, status

from slotbook.api.v1.endpoints.catalog import get_catalog_service
from slotbook.booking.availability import day_availability
from slotbook.booking.slots import SlotGenerator
from slotbook.config import settings
from slotbook.core.exceptions import NotFoundException, ValidationException
from slotbook.core.timeutils import parse_day, utcnow
from slotbook.dependencies import DatabaseSession
from slotbook.schemas.availability import AvailabilityResponse
from slotbook.services.appointment_service import AppointmentService
from slotbook.services.catalog_service import CatalogService

router = APIRouter()


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Available slots for a day",
)
async def get_availability(
    db: DatabaseSession,
    date: str = Query(..., description="Calendar date, YYYY-MM-DD"),
    provider_id: int | None = Query(None),
    catalog: CatalogService = Depends(get_catalog_service),
) -> AvailabilityResponse:
    """
    Compute the bookable slots for a provider on a day.

    Without ``provider_id`` every provider's bookings count, which is only
    useful for display.

    Args:
        db: Database session
        date: Target day
        provider_id: Target provider
        catalog: Catalog service

    Returns:
        Remaining slots in ascending order

    Raises:
        ValidationException: Unparseable date
        NotFoundException: Unknown provider
    """
    day = parse_day(date)
    if day is None:
        raise ValidationException("Select a valid date", field="date")

    provider = None
    if provider_id is not None:
        provider = await catalog.get_provider(db, provider_id)
        if provider is None:
            raise NotFoundException("Provider not found")

    appointments = await AppointmentService(db).list_appointments(provider_id=provider_id, day=day)
    result = day_availability(
        SlotGenerator.from_settings(),
        day,
        provider,
        provider_id,
        appointments,
        utcnow(),
        timedelta(minutes=settings.min_lead_time_minutes),
        settings.tz,
    )
    return AvailabilityResponse(
        provider_id=provider_id,
        date=day,
        slots=result.slots,
        fully_booked=result.fully_booked,
    )
