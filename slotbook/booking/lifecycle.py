"""Staff-side appointment transitions and invoicing."""

from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from slotbook.booking.invoice import Invoice, InvoiceRenderer, PdfInvoiceRenderer, build_invoice
from slotbook.booking.notifications import NotificationKind
from slotbook.core.exceptions import (
    AppException,
    DocumentRenderException,
    NotFoundException,
    StateConflictException,
)
from slotbook.schemas.appointments import (
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
    can_transition,
)

if TYPE_CHECKING:
    from slotbook.booking.session import BookingSession

logger = structlog.get_logger(__name__)

TRANSITION_NOTIFICATIONS = {
    AppointmentStatus.PAID: (NotificationKind.APPOINTMENT_PAID, "marked as paid"),
    AppointmentStatus.COMPLETED: (NotificationKind.APPOINTMENT_COMPLETED, "completed"),
    AppointmentStatus.CANCELLED: (NotificationKind.APPOINTMENT_CANCELLED, "cancelled"),
}


class AppointmentLifecycleManager:
    """
    Moves appointments through Pending -> Paid -> Completed, or to Cancelled.

    Every successful change is patched into the snapshot provisionally,
    followed by a forced reload and a deduplicated staff notification.
    Completion additionally requires the invoice document to have been
    produced during this session.
    """

    def __init__(self, session: "BookingSession", renderer: InvoiceRenderer | None = None):
        self.session = session
        self.renderer = renderer or PdfInvoiceRenderer()

    def get(self, appointment_id: int) -> AppointmentResponse:
        """Appointment from the snapshot."""
        appointment = self.session.snapshot.get(appointment_id)
        if appointment is None:
            raise NotFoundException(f"Appointment {appointment_id} not found")
        return appointment

    def _check_transition(self, appointment: AppointmentResponse, target: AppointmentStatus) -> None:
        if not can_transition(appointment.status, target):
            logger.warning(
                "appointment_transition_rejected",
                appointment_id=appointment.id,
                current=appointment.status.value,
                target=target.value,
            )
            raise StateConflictException(
                f"A {appointment.status.value} appointment cannot become {target.value}"
            )

    async def _apply(self, appointment_id: int, patch: AppointmentUpdate) -> AppointmentResponse:
        updated = await self.session.backend.update_appointment(appointment_id, patch)
        self.session.snapshot.patch(updated)
        try:
            await self.session.refresher.refresh(force=True)
        except AppException as e:
            logger.warning("post_transition_refresh_failed", appointment_id=appointment_id, error=e.message)
        return updated

    async def transition(self, appointment_id: int, target: AppointmentStatus) -> AppointmentResponse:
        """
        Move an appointment to ``target``.

        Args:
            appointment_id: Appointment to change
            target: Desired status

        Returns:
            Updated appointment

        Raises:
            NotFoundException: Appointment is not in the snapshot
            StateConflictException: ``target`` is not reachable from the current status
        """
        appointment = self.get(appointment_id)
        self._check_transition(appointment, target)
        updated = await self._apply(appointment_id, AppointmentUpdate(status=target))
        logger.info(
            "appointment_transitioned",
            appointment_id=appointment_id,
            previous=appointment.status.value,
            status=target.value,
        )
        kind, verb = TRANSITION_NOTIFICATIONS[target]
        self.session.notifier.notify(
            kind, appointment_id, f"Appointment for {updated.client_name} {verb}"
        )
        return updated

    async def mark_paid(self, appointment_id: int) -> AppointmentResponse:
        """Pending -> Paid."""
        return await self.transition(appointment_id, AppointmentStatus.PAID)

    async def mark_completed(self, appointment_id: int) -> AppointmentResponse:
        """Paid -> Completed, once the invoice document exists."""
        appointment = self.get(appointment_id)
        self._check_transition(appointment, AppointmentStatus.COMPLETED)
        if appointment_id not in self.session.invoiced_ids:
            logger.warning("appointment_completion_not_invoiced", appointment_id=appointment_id)
            raise StateConflictException("Generate the invoice document before completing")
        return await self.transition(appointment_id, AppointmentStatus.COMPLETED)

    async def cancel(self, appointment_id: int) -> AppointmentResponse:
        """Pending or Paid -> Cancelled."""
        return await self.transition(appointment_id, AppointmentStatus.CANCELLED)

    async def update_notes(self, appointment_id: int, notes: str | None) -> AppointmentResponse:
        """Edit audit notes; allowed in every status."""
        self.get(appointment_id)
        return await self._apply(appointment_id, AppointmentUpdate(notes=notes))

    def generate_invoice(self, appointment_id: int, issued_at: datetime | None = None) -> Invoice:
        """Derive the invoice for an appointment."""
        appointment = self.get(appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED:
            raise StateConflictException("Cancelled appointments are not invoiced")
        return build_invoice(
            appointment,
            issued_at or self.session.now(),
            tz=self.session.tz,
            currency=self.session.config.currency_code,
        )

    def render_invoice(self, invoice: Invoice) -> bytes:
        """
        Produce the invoice document and unlock completion.

        Raises:
            DocumentRenderException: The renderer failed; nothing else changes
        """
        try:
            document = self.renderer.render(invoice.text)
        except Exception as e:
            logger.error("invoice_render_failed", appointment_id=invoice.appointment_id, error=str(e))
            raise DocumentRenderException() from e
        self.session.invoiced_ids.add(invoice.appointment_id)
        logger.info("invoice_rendered", appointment_id=invoice.appointment_id, number=invoice.number)
        return document
