"""Appointment endpoints."""

from fastapi import APIRouter, Query, status

from slotbook.core.exceptions import ValidationException
from slotbook.core.timeutils import parse_day
from slotbook.dependencies import CurrentStaff, DatabaseSession, OptionalStaff
from slotbook.schemas.appointments import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
)
from slotbook.services.appointment_service import AppointmentService

router = APIRouter()


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Book a new appointment; it starts as Pending.

    Args:
        data: Appointment creation data
        db: Database session

    Returns:
        Created appointment

    Raises:
        SlotConflictException: The provider is already booked at that time
    """
    service = AppointmentService(db)
    return await service.create_appointment(data)


@router.get(
    "",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    provider_id: int | None = Query(None, ge=1),
    day: str | None = Query(None, alias="date", description="Business day, YYYY-MM-DD"),
) -> list[AppointmentResponse]:
    """
    List appointments, ordered by start, with related records embedded.

    - **status**: only appointments in this status
    - **provider_id**: only appointments with this provider
    - **date**: only appointments starting on this business day
    """
    target = None
    if day is not None:
        target = parse_day(day)
        if target is None:
            raise ValidationException("Select a valid date", field="date")

    service = AppointmentService(db)
    return await service.list_appointments(
        status=status_filter,
        provider_id=provider_id,
        day=target,
    )


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: int,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        db: Database session

    Returns:
        Appointment details
    """
    service = AppointmentService(db)
    return await service.get_appointment(appointment_id)


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Update appointment",
)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    db: DatabaseSession,
    staff: OptionalStaff,
) -> AppointmentResponse:
    """
    Partially update an appointment.

    Anonymous callers may only confirm payment (Pending to Paid); every
    other change needs a staff token.

    Args:
        appointment_id: Appointment ID
        data: Fields to change
        db: Database session
        staff: Staff token payload, if any

    Returns:
        Updated appointment
    """
    service = AppointmentService(db)
    return await service.update_appointment(appointment_id, data, is_staff=staff is not None)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: int,
    db: DatabaseSession,
    staff: CurrentStaff,
) -> None:
    """
    Soft delete an appointment (staff only).

    Args:
        appointment_id: Appointment ID
        db: Database session
        staff: Staff token payload
    """
    service = AppointmentService(db)
    await service.delete_appointment(appointment_id)
