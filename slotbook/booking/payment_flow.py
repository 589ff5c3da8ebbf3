"""Payment confirmation: method choice, proof, and the three booking writes."""

import asyncio
import io
import secrets
import string
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

import qrcode
import structlog

from slotbook.booking.notifications import NotificationKind
from slotbook.booking.wizard import PendingBooking
from slotbook.core.exceptions import (
    AppException,
    ConflictException,
    ErrorKind,
    SlotConflictException,
    StateConflictException,
)
from slotbook.schemas.appointments import AppointmentResponse, AppointmentStatus, AppointmentUpdate
from slotbook.schemas.payments import PaymentCreate, PaymentResponse, PaymentStatus

if TYPE_CHECKING:
    from slotbook.booking.session import BookingSession

logger = structlog.get_logger(__name__)

SEED_ALPHABET = string.digits + string.ascii_uppercase
SEED_LENGTH = 6


class PaymentStage(str, Enum):
    """Stages of the confirmation dialog."""

    METHOD = "method"
    QR = "qr"
    CARD = "card"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class PaymentMethod(str, Enum):
    """Simulated payment channels."""

    QR = "qr"
    CARD = "card"

    @property
    def label(self) -> str:
        """Label stored on the payment record."""
        return METHOD_LABELS[self]

    @property
    def stage(self) -> PaymentStage:
        """Proof stage shown for this method."""
        return PaymentStage.QR if self is PaymentMethod.QR else PaymentStage.CARD


METHOD_LABELS = {
    PaymentMethod.QR: "QR transfer",
    PaymentMethod.CARD: "Debit card",
}


class PaymentStep(str, Enum):
    """The dependent writes, in execution order."""

    CREATE_APPOINTMENT = "create_appointment"
    CREATE_PAYMENT = "create_payment"
    MARK_PAID = "mark_paid"


STEP_DESCRIPTIONS = {
    PaymentStep.CREATE_APPOINTMENT: "Creating your appointment",
    PaymentStep.CREATE_PAYMENT: "Recording your payment",
    PaymentStep.MARK_PAID: "Confirming your appointment",
}


def generate_seed() -> str:
    """Six-character upper-case base36 token."""
    return "".join(secrets.choice(SEED_ALPHABET) for _ in range(SEED_LENGTH))


def render_qr_png(data: str) -> bytes:
    """Encode ``data`` as a QR code PNG."""
    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


class PaymentConfirmationMachine:
    """
    Drives ``method -> qr|card -> processing -> success|error``.

    Processing runs three writes in strict order: create the appointment,
    record the payment (only for a positive amount) and mark the
    appointment Paid. Each completed write is remembered, so a retry after
    a failure resumes at the failed step instead of repeating earlier
    ones. A write whose reply was lost is recognised on retry: the
    booking's own Pending appointment is adopted from the snapshot, and an
    existing payment for it counts as recorded. Nothing is rolled back:
    abandoning the dialog after the appointment was created leaves it
    Pending for staff to reconcile.
    """

    def __init__(
        self,
        session: "BookingSession",
        on_success: Callable[[AppointmentResponse], None] | None = None,
        seed_factory: Callable[[], str] = generate_seed,
    ):
        self.session = session
        self.on_success = on_success
        self.seed_factory = seed_factory
        self._clear()

    def _clear(self) -> None:
        self.stage = PaymentStage.METHOD
        self.method: PaymentMethod | None = None
        self.pending: PendingBooking | None = None
        self.seed: str | None = None
        self.appointment: AppointmentResponse | None = None
        self.payment: PaymentResponse | None = None
        self.payment_recorded = False
        self.creation_unconfirmed = False
        self.paid = False
        self.failed_step: PaymentStep | None = None
        self.error: AppException | None = None

    def open(self, pending: PendingBooking) -> None:
        """Start confirming a validated booking."""
        if self.stage == PaymentStage.PROCESSING:
            raise StateConflictException("A payment is already being processed")
        self._clear()
        self.pending = pending
        logger.info(
            "payment_dialog_opened",
            provider_id=pending.payload.provider_id,
            service_id=pending.payload.service_id,
            amount=str(pending.amount),
        )

    def select_method(self, method: PaymentMethod | str) -> None:
        """
        Choose how to pay.

        The transaction seed is generated on the first selection and kept
        for every later one.

        Raises:
            StateConflictException: Not in the method stage
        """
        if self.stage != PaymentStage.METHOD:
            raise StateConflictException("The payment method can only be chosen before confirming")
        method = PaymentMethod(method)
        if self.seed is None:
            self.seed = self.seed_factory()
        self.method = method
        self.stage = method.stage

    def change_method(self) -> None:
        """Go back to method selection from a proof stage or after an error."""
        if self.stage not in (PaymentStage.QR, PaymentStage.CARD, PaymentStage.ERROR):
            raise StateConflictException("The payment method cannot be changed now")
        self.stage = PaymentStage.METHOD

    @property
    def amount(self) -> Decimal:
        """Amount due for the pending booking."""
        return self.pending.amount if self.pending else Decimal("0")

    @property
    def transaction_reference(self) -> str:
        """``PREFIX-PRE-SEED`` before the appointment exists, ``PREFIX-ID-SEED`` after."""
        prefix = self.session.config.transaction_prefix
        if self.seed is None:
            return prefix
        if self.appointment is not None:
            return f"{prefix}-{self.appointment.id}-{self.seed}"
        return f"{prefix}-PRE-{self.seed}"

    def qr_descriptor(self) -> str:
        """Text encoded in the QR proof."""
        business = self.session.config.business_display_name.upper().replace(" ", "")
        service = self.pending.service_name if self.pending else ""
        return f"{business}-{self.transaction_reference}|SERVICE:{service}|AMOUNT:{self.amount:.2f}"

    def render_qr(self) -> bytes:
        """QR proof as a PNG image."""
        return render_qr_png(self.qr_descriptor())

    @property
    def can_retry(self) -> bool:
        """Retry is offered after an error while the booking payload survives."""
        return (
            self.stage == PaymentStage.ERROR
            and self.pending is not None
            and self.method is not None
        )

    @property
    def error_message(self) -> str | None:
        """Which stage failed and why, for the user."""
        if self.error is None:
            return None
        if self.failed_step is None:
            return self.error.message
        return f"{STEP_DESCRIPTIONS[self.failed_step]} failed: {self.error.message}"

    async def confirm(self) -> AppointmentResponse:
        """
        Run the booking writes.

        Returns:
            The appointment, now Paid

        Raises:
            StateConflictException: Not in a proof stage, or already processing
            AppException: A write failed; the machine is in ``error``
        """
        if self.stage == PaymentStage.PROCESSING:
            raise StateConflictException("The payment is already being processed")
        if self.stage not in (PaymentStage.QR, PaymentStage.CARD) or self.method is None:
            raise StateConflictException("Choose a payment method first")
        if self.pending is None:
            raise StateConflictException("There is no booking to confirm")

        self.stage = PaymentStage.PROCESSING
        self.failed_step = None
        self.error = None
        pending = self.pending
        backend = self.session.backend
        step = PaymentStep.CREATE_APPOINTMENT

        try:
            if self.appointment is None:
                candidate = pending.candidate(self.session.tz)
                result = await self.session.conflict_validator().verify(candidate)
                if result.blocking and self.creation_unconfirmed:
                    self.appointment = self._own_appointment(result.conflicting_id)
                if self.appointment is None:
                    if result.blocking:
                        raise SlotConflictException(result.message or "That time is already booked")
                    self.creation_unconfirmed = True
                    self.appointment = await backend.create_appointment(pending.payload)
                self.creation_unconfirmed = False
                logger.info("payment_step_completed", step=step.value, appointment_id=self.appointment.id)

            step = PaymentStep.CREATE_PAYMENT
            if pending.amount > 0 and not self.payment_recorded:
                try:
                    self.payment = await backend.create_payment(
                        PaymentCreate(
                            appointment_id=self.appointment.id,
                            amount=pending.amount,
                            method=self.method.label,
                            transaction_ref=self.transaction_reference,
                            status=PaymentStatus.COMPLETED,
                            paid_at=self.session.now(),
                        )
                    )
                except ConflictException as e:
                    # The appointment is ours, so its payment is the one sent earlier
                    if e.code != "payment-exists":
                        raise
                    logger.info("payment_already_recorded", appointment_id=self.appointment.id)
                self.payment_recorded = True
                logger.info(
                    "payment_step_completed",
                    step=step.value,
                    payment_id=self.payment.id if self.payment else None,
                )

            step = PaymentStep.MARK_PAID
            if not self.paid:
                self.appointment = await backend.update_appointment(
                    self.appointment.id,
                    AppointmentUpdate(status=AppointmentStatus.PAID),
                )
                self.paid = True
                logger.info("payment_step_completed", step=step.value, appointment_id=self.appointment.id)
        except asyncio.CancelledError as e:
            self._fail(step, AppException("The payment was interrupted before it finished"), e)
            raise
        except Exception as e:
            error = e if isinstance(e, AppException) else AppException("Something went wrong, please try again")
            self._fail(step, error, e)
            if error is e:
                raise
            raise error from e

        self.stage = PaymentStage.SUCCESS
        appointment = self.appointment
        try:
            await self.session.refresher.refresh(force=True)
        except AppException as e:
            logger.warning("post_payment_refresh_failed", appointment_id=appointment.id, error=e.message)
        self.session.notifier.notify(
            NotificationKind.PAYMENT_CONFIRMED,
            appointment.id,
            f"{pending.service_name} with {pending.provider_name} confirmed and paid",
        )
        self.pending = None
        if self.on_success is not None:
            self.on_success(appointment)
        return appointment

    def _fail(self, step: PaymentStep, error: AppException, cause: BaseException) -> None:
        """Park the machine in ``error`` at ``step``, keeping every completed write."""
        self.stage = PaymentStage.ERROR
        self.failed_step = step
        self.error = error
        interrupted = isinstance(cause, asyncio.CancelledError)
        # Without a reply, a sent create request may still have committed
        if not interrupted and error.kind != ErrorKind.NETWORK:
            self.creation_unconfirmed = False
        logger.warning(
            "payment_step_failed",
            step=step.value,
            appointment_id=self.appointment.id if self.appointment else None,
            kind=error.kind.value,
            interrupted=interrupted,
            error=str(cause) or error.message,
        )

    def _own_appointment(self, appointment_id: int | None) -> AppointmentResponse | None:
        """
        The snapshot entry created by an earlier unanswered request, if any.

        It must still be Pending and carry this booking's provider, service,
        start and client email.
        """
        if appointment_id is None or self.pending is None:
            return None
        found = self.session.snapshot.get(appointment_id)
        payload = self.pending.payload
        if (
            found is None
            or found.status != AppointmentStatus.PENDING
            or found.provider_id != payload.provider_id
            or found.service_id != payload.service_id
            or found.scheduled_at != payload.scheduled_at
            or found.client_email.lower() != str(payload.client_email).lower()
        ):
            return None
        logger.info("payment_appointment_adopted", appointment_id=found.id)
        return found

    async def retry(self) -> AppointmentResponse:
        """Resume processing after an error."""
        if not self.can_retry:
            raise StateConflictException("There is nothing to retry")
        self.stage = self.method.stage  # type: ignore[union-attr]
        return await self.confirm()

    def close(self) -> None:
        """
        Discard dialog state without undoing committed writes.

        An appointment created without completing payment is left Pending
        and flagged for manual reconciliation.
        """
        if self.stage == PaymentStage.PROCESSING:
            raise StateConflictException("Wait for the payment to finish processing")
        if self.appointment is not None and not self.paid:
            logger.warning(
                "payment_abandoned_after_booking",
                appointment_id=self.appointment.id,
                payment_recorded=self.payment_recorded,
            )
            self.session.notifier.notify(
                NotificationKind.RECONCILIATION_REQUIRED,
                self.appointment.id,
                f"Appointment #{self.appointment.id} is Pending without a confirmed payment",
            )
        self._clear()
