"""Payment endpoints."""

from fastapi import APIRouter, Query, status

from slotbook.dependencies import CurrentStaff, DatabaseSession
from slotbook.schemas.payments import (
    PaymentCreate,
    PaymentFilters,
    PaymentListResponse,
    PaymentPeriod,
    PaymentResponse,
    PaymentStatus,
)
from slotbook.services.payment_service import PaymentService

router = APIRouter()


@router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a payment",
)
async def create_payment(
    data: PaymentCreate,
    db: DatabaseSession,
) -> PaymentResponse:
    """
    Record a payment against an appointment.

    Args:
        data: Payment data
        db: Database session

    Returns:
        Created payment
    """
    service = PaymentService(db)
    return await service.create_payment(data)


@router.get(
    "",
    response_model=PaymentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List payments",
)
async def list_payments(
    db: DatabaseSession,
    staff: CurrentStaff,
    search: str | None = Query(None, max_length=100),
    status_filter: PaymentStatus | None = Query(None, alias="status"),
    period: PaymentPeriod = Query(PaymentPeriod.ALL),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> PaymentListResponse:
    """
    List payments for staff, newest first.

    Args:
        db: Database session
        staff: Staff token payload
        search: Matches client name/email, transaction reference, method or id
        status_filter: Filter by status
        period: today, week, month or all
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of payments
    """
    filters = PaymentFilters(
        search=search,
        status=status_filter,
        period=period,
        page=page,
        page_size=page_size,
    )
    service = PaymentService(db)
    return await service.list_payments(filters)


@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get payment by ID",
)
async def get_payment(
    payment_id: int,
    db: DatabaseSession,
    staff: CurrentStaff,
) -> PaymentResponse:
    """Get a specific payment (staff only)."""
    service = PaymentService(db)
    return await service.get_payment(payment_id)
