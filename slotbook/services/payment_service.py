"""Payment service for business logic."""

import math
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import String, and_, cast, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.core.exceptions import ConflictException, NotFoundException, StateConflictException
from slotbook.core.timeutils import as_utc, localize, utcnow
from slotbook.models.appointments import appointments
from slotbook.models.payments import payments
from slotbook.schemas.appointments import AppointmentStatus
from slotbook.schemas.payments import (
    PaymentCreate,
    PaymentFilters,
    PaymentListResponse,
    PaymentPeriod,
    PaymentResponse,
    PaymentStatus,
)

logger = structlog.get_logger(__name__)


def period_start(period: PaymentPeriod, now: datetime) -> datetime | None:
    """
    Earliest creation instant included by a period filter.

    Args:
        period: Requested window
        now: Current instant

    Returns:
        Start of the business day for ``today``, seven or thirty days back
        for ``week`` / ``month``, None for ``all``
    """
    if period == PaymentPeriod.TODAY:
        local = localize(now)
        return as_utc(local.replace(hour=0, minute=0, second=0, microsecond=0))
    if period == PaymentPeriod.WEEK:
        return now - timedelta(days=7)
    if period == PaymentPeriod.MONTH:
        return now - timedelta(days=30)
    return None


class PaymentService:
    """Service for recording and listing payments."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def create_payment(self, data: PaymentCreate) -> PaymentResponse:
        """
        Record a payment for an appointment.

        Args:
            data: Payment data

        Returns:
            Created payment

        Raises:
            NotFoundException: Appointment does not exist
            StateConflictException: Appointment is cancelled
            ConflictException: Appointment already paid, or transaction reference reused
        """
        stmt = select(appointments.c.id, appointments.c.status).where(
            appointments.c.id == data.appointment_id,
            appointments.c.deleted_at.is_(None),
        )
        appointment = (await self.db.execute(stmt)).first()
        if not appointment:
            raise NotFoundException("Appointment not found")
        if appointment.status == AppointmentStatus.CANCELLED.value:
            raise StateConflictException("Cancelled appointments cannot receive payments")

        existing = await self.db.execute(
            select(payments.c.id).where(payments.c.appointment_id == data.appointment_id)
        )
        if existing.first():
            raise ConflictException(
                "A payment is already recorded for this appointment",
                code="payment-exists",
            )

        if data.transaction_ref:
            duplicate = await self.db.execute(
                select(payments.c.id).where(payments.c.transaction_ref == data.transaction_ref)
            )
            if duplicate.first():
                raise ConflictException(
                    "This transaction reference was already used",
                    code="duplicate-transaction",
                )

        paid_at = data.paid_at
        if paid_at is None and data.status == PaymentStatus.COMPLETED:
            paid_at = utcnow()

        values = {
            "appointment_id": data.appointment_id,
            "amount": data.amount,
            "method": data.method,
            "status": data.status.value,
            "transaction_ref": data.transaction_ref,
            "paid_at": paid_at,
        }

        try:
            result = await self.db.execute(payments.insert().values(**values).returning(payments))
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info("payment_write_conflict", error=str(e.orig))
            raise ConflictException("The payment conflicts with an existing one") from e

        row = result.mappings().first()
        logger.info(
            "payment_created",
            payment_id=row["id"],
            appointment_id=data.appointment_id,
            status=data.status.value,
        )
        return PaymentResponse.model_validate(dict(row))

    async def get_payment(self, payment_id: int) -> PaymentResponse:
        """
        Get payment by ID.

        Raises:
            NotFoundException: If payment not found
        """
        stmt = select(payments).where(
            payments.c.id == payment_id,
            payments.c.deleted_at.is_(None),
        )
        row = (await self.db.execute(stmt)).mappings().first()
        if not row:
            raise NotFoundException("Payment not found")
        return PaymentResponse.model_validate(dict(row))

    async def list_payments(self, filters: PaymentFilters) -> PaymentListResponse:
        """
        List payments, newest first, with search, status and period filters.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of payments
        """
        conditions: list[Any] = [payments.c.deleted_at.is_(None)]

        if filters.search and filters.search.strip():
            term = f"%{filters.search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(appointments.c.client_name).like(term),
                    func.lower(appointments.c.client_email).like(term),
                    func.lower(payments.c.transaction_ref).like(term),
                    func.lower(payments.c.method).like(term),
                    cast(payments.c.id, String).like(term),
                )
            )

        if filters.status:
            conditions.append(payments.c.status == filters.status.value)

        start = period_start(filters.period, utcnow())
        if start is not None:
            conditions.append(payments.c.created_at >= start)

        joined = payments.outerjoin(appointments, payments.c.appointment_id == appointments.c.id)

        count_stmt = select(func.count()).select_from(joined).where(and_(*conditions))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(payments)
            .select_from(joined)
            .where(and_(*conditions))
            .order_by(payments.c.created_at.desc(), payments.c.id.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        rows = (await self.db.execute(stmt)).mappings().all()

        total_pages = math.ceil(total / filters.page_size) if total else 0
        return PaymentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=total_pages,
            has_next_page=filters.page < total_pages,
            has_prev_page=filters.page > 1,
            items=[PaymentResponse.model_validate(dict(row)) for row in rows],
        )

