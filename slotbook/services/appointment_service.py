"""Appointment service for business logic."""

from datetime import date, datetime, time, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.core.exceptions import (
    NotFoundException,
    SlotConflictException,
    StateConflictException,
    UnauthorizedException,
    ValidationException,
)
from slotbook.core.timeutils import as_utc, combine_local, utcnow
from slotbook.models.appointments import appointments
from slotbook.models.catalog import providers, services
from slotbook.models.payments import payments
from slotbook.schemas.appointments import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
    can_transition,
)
from slotbook.services.catalog_service import CatalogService

logger = structlog.get_logger(__name__)

# Fields staff may still change on a completed or cancelled appointment
AUDIT_FIELDS = {"notes"}


class AppointmentService:
    """Service for managing appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db
        self.catalog = CatalogService()

    async def _related(self, rows: list[dict[str, Any]]) -> list[AppointmentResponse]:
        """Embed provider, service and payment records into appointment rows."""
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        provider_ids = {row["provider_id"] for row in rows}
        service_ids = {row["service_id"] for row in rows}

        provider_rows = await self.db.execute(
            select(providers).where(
                providers.c.id.in_(provider_ids),
                providers.c.deleted_at.is_(None),
            )
        )
        provider_map = {p["id"]: dict(p) for p in provider_rows.mappings().all()}

        service_rows = await self.db.execute(
            select(services).where(
                services.c.id.in_(service_ids),
                services.c.deleted_at.is_(None),
            )
        )
        service_map = {s["id"]: dict(s) for s in service_rows.mappings().all()}

        payment_rows = await self.db.execute(
            select(payments).where(
                payments.c.appointment_id.in_(ids),
                payments.c.deleted_at.is_(None),
            )
        )
        payment_map = {p["appointment_id"]: dict(p) for p in payment_rows.mappings().all()}

        items = []
        for row in rows:
            data = dict(row)
            # Soft-deleted relations degrade to an id-only stub
            data["provider"] = provider_map.get(row["provider_id"], {"id": row["provider_id"]})
            data["service"] = service_map.get(row["service_id"], {"id": row["service_id"]})
            data["payment"] = payment_map.get(row["id"])
            items.append(AppointmentResponse.model_validate(data))
        return items

    async def _get_row(self, appointment_id: int) -> dict[str, Any]:
        stmt = select(appointments).where(
            and_(
                appointments.c.id == appointment_id,
                appointments.c.deleted_at.is_(None),
            )
        )
        row = (await self.db.execute(stmt)).mappings().first()
        if not row:
            raise NotFoundException("Appointment not found")
        return dict(row)

    async def _ensure_slot_free(
        self,
        provider_id: int,
        scheduled_at: datetime,
        exclude_id: int | None = None,
    ) -> None:
        """Reject a start already held by an active appointment of the same provider."""
        conditions = [
            appointments.c.provider_id == provider_id,
            appointments.c.scheduled_at == scheduled_at,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
            appointments.c.deleted_at.is_(None),
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        existing = (await self.db.execute(select(appointments.c.id).where(and_(*conditions)))).first()
        if existing:
            logger.info(
                "appointment_slot_taken",
                provider_id=provider_id,
                scheduled_at=scheduled_at.isoformat(),
                conflicting_id=existing.id,
            )
            raise SlotConflictException()

    async def _ensure_bookable(self, provider_id: int, service_id: int) -> None:
        """Service must exist and be active; provider must exist and perform it."""
        service = await self.catalog.get_service(self.db, service_id)
        if service is None:
            raise NotFoundException("Service not found")
        if not service.active:
            raise ValidationException("This service is no longer offered", field="service_id")

        provider = await self.catalog.get_provider(self.db, provider_id)
        if provider is None:
            raise NotFoundException("Provider not found")

        if not await self.catalog.provider_performs(self.db, provider_id, service_id):
            raise ValidationException(
                "The selected provider does not perform this service",
                field="provider_id",
            )

    async def _write(self, stmt: Any) -> Any:
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info("appointment_write_conflict", error=str(e.orig))
            raise SlotConflictException() from e
        return result

    async def create_appointment(self, data: AppointmentCreate) -> AppointmentResponse:
        """
        Create a new Pending appointment.

        Args:
            data: Appointment creation data

        Returns:
            Created appointment

        Raises:
            NotFoundException: Service or provider does not exist
            ValidationException: Inactive service, unlinked provider or past start
            SlotConflictException: The provider is already booked at that start
        """
        await self._ensure_bookable(data.provider_id, data.service_id)

        if data.scheduled_at < utcnow():
            raise ValidationException("The appointment time is in the past", field="scheduled_at")

        await self._ensure_slot_free(data.provider_id, data.scheduled_at)

        values = {
            "scheduled_at": data.scheduled_at,
            "client_name": data.client_name,
            "client_email": str(data.client_email),
            "client_phone": data.client_phone,
            "notes": data.notes,
            "provider_id": data.provider_id,
            "service_id": data.service_id,
            "status": AppointmentStatus.PENDING.value,
        }

        stmt = appointments.insert().values(**values).returning(appointments.c.id)
        result = await self._write(stmt)
        appointment_id = result.scalar_one()

        logger.info(
            "appointment_created",
            appointment_id=appointment_id,
            provider_id=data.provider_id,
            service_id=data.service_id,
        )
        return await self.get_appointment(appointment_id)

    async def get_appointment(self, appointment_id: int) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        row = await self._get_row(appointment_id)
        return (await self._related([row]))[0]

    async def list_appointments(
        self,
        status: AppointmentStatus | None = None,
        provider_id: int | None = None,
        day: date | None = None,
    ) -> list[AppointmentResponse]:
        """
        List non-deleted appointments, ordered by start.

        Args:
            status: Only this status
            provider_id: Only this provider
            day: Only appointments starting on this business day

        Returns:
            Appointments with related records embedded
        """
        conditions = [appointments.c.deleted_at.is_(None)]
        if status is not None:
            conditions.append(appointments.c.status == status.value)
        if provider_id is not None:
            conditions.append(appointments.c.provider_id == provider_id)
        if day is not None:
            start = as_utc(combine_local(day, time.min))
            conditions.append(appointments.c.scheduled_at >= start)
            conditions.append(appointments.c.scheduled_at < start + timedelta(days=1))

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.scheduled_at, appointments.c.id)
        )
        rows = (await self.db.execute(stmt)).mappings().all()
        return await self._related([dict(row) for row in rows])

    async def update_appointment(
        self,
        appointment_id: int,
        data: AppointmentUpdate,
        is_staff: bool = False,
    ) -> AppointmentResponse:
        """
        Apply a partial update.

        Anonymous callers may only move a Pending appointment to Paid.
        Completed and cancelled appointments accept notes only.

        Args:
            appointment_id: Appointment ID
            data: Fields to change
            is_staff: Whether the caller holds a staff token

        Returns:
            Updated appointment

        Raises:
            NotFoundException: If appointment not found
            UnauthorizedException: Anonymous caller attempting a staff change
            StateConflictException: Status change not allowed from the current status
            SlotConflictException: Rescheduling onto an occupied slot
        """
        current = await self._get_row(appointment_id)
        current_status = AppointmentStatus(current["status"])
        changes = data.model_dump(exclude_unset=True)
        # Resending the current status is not a change
        if changes.get("status") == current_status:
            del changes["status"]

        if not changes:
            return await self.get_appointment(appointment_id)

        if not is_staff and not (
            data.is_status_only
            and current_status == AppointmentStatus.PENDING
            and data.status == AppointmentStatus.PAID
        ):
            raise UnauthorizedException("Staff authentication required")

        if current_status.is_terminal and set(changes) - AUDIT_FIELDS:
            logger.warning(
                "appointment_transition_rejected",
                appointment_id=appointment_id,
                current=current_status.value,
                fields=sorted(changes),
            )
            raise StateConflictException(
                f"A {current_status.value} appointment only accepts note changes"
            )

        now = utcnow()
        update_values: dict[str, Any] = {}

        if data.status is not None and data.status != current_status:
            if not can_transition(current_status, data.status):
                logger.warning(
                    "appointment_transition_rejected",
                    appointment_id=appointment_id,
                    current=current_status.value,
                    target=data.status.value,
                )
                raise StateConflictException(
                    f"A {current_status.value} appointment cannot become {data.status.value}"
                )
            update_values["status"] = data.status.value
            if data.status == AppointmentStatus.CANCELLED:
                update_values["cancelled_at"] = now
            elif data.status == AppointmentStatus.COMPLETED:
                update_values["completed_at"] = now

        if "notes" in changes:
            update_values["notes"] = data.notes

        for field in ("client_name", "client_email", "client_phone"):
            if field in changes and changes[field] is not None:
                update_values[field] = str(changes[field])

        provider_id = data.provider_id or current["provider_id"]
        service_id = data.service_id or current["service_id"]
        scheduled_at = data.scheduled_at or as_utc(current["scheduled_at"])
        if {"provider_id", "service_id", "scheduled_at"} & set(changes):
            await self._ensure_bookable(provider_id, service_id)
            await self._ensure_slot_free(provider_id, scheduled_at, exclude_id=appointment_id)
            update_values.update(
                provider_id=provider_id,
                service_id=service_id,
                scheduled_at=scheduled_at,
            )

        if not update_values:
            return await self.get_appointment(appointment_id)

        update_values["updated_at"] = now
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**update_values)
        )
        await self._write(stmt)

        logger.info(
            "appointment_updated",
            appointment_id=appointment_id,
            fields=sorted(update_values),
            status=update_values.get("status", current_status.value),
        )
        return await self.get_appointment(appointment_id)

    async def delete_appointment(self, appointment_id: int) -> None:
        """
        Soft delete an appointment.

        Raises:
            NotFoundException: If appointment not found
        """
        await self._get_row(appointment_id)

        now = utcnow()
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(deleted_at=now, updated_at=now)
        )
        await self.db.execute(stmt)
        await self.db.commit()
        logger.info("appointment_deleted", appointment_id=appointment_id)
