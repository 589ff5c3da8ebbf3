"""Invoice numbering, text and PDF rendering."""

import io
from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Protocol

import structlog
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from slotbook.config import settings
from slotbook.core.relations import Stub
from slotbook.core.timeutils import localize
from slotbook.schemas.appointments import AppointmentResponse

logger = structlog.get_logger(__name__)

UNASSIGNED_PROVIDER = "Unassigned"
DEFAULT_PAYMENT_METHOD = "QR transfer"
MISSING_VALUE = "-"


class InvoiceRenderer(Protocol):
    """Turns invoice text into a document."""

    def render(self, text: str) -> bytes:
        """Produce the document bytes."""
        ...


@dataclass(frozen=True)
class Invoice:
    """Invoice derived from one appointment."""

    appointment_id: int
    number: str
    issued_at: datetime
    total: Decimal
    text: str


def build_invoice_number(appointment_id: int, issued_at: datetime, prefix: str | None = None) -> str:
    """``PREFIX-YYYYMMDD-0000id`` for the given issue date."""
    return f"{prefix or settings.invoice_prefix}-{issued_at:%Y%m%d}-{appointment_id:04d}"


def provider_label(appointment: AppointmentResponse) -> str:
    """Provider name, or a fallback when only the id is known."""
    record = appointment.provider_record
    if record is not None:
        return record.name
    if isinstance(appointment.provider, Stub):
        return f"Provider #{appointment.provider.id}"
    return UNASSIGNED_PROVIDER


def service_label(appointment: AppointmentResponse) -> str:
    """Service name, or a fallback when only the id is known."""
    record = appointment.service_record
    if record is not None:
        return record.name
    return f"Service #{appointment.service_id}"


def payment_details(appointment: AppointmentResponse) -> tuple[str, str]:
    """Payment method label and transaction reference."""
    payment = appointment.payment_record
    if payment is not None:
        return payment.method or DEFAULT_PAYMENT_METHOD, payment.transaction_ref or MISSING_VALUE
    if isinstance(appointment.payment, Stub):
        return f"Payment #{appointment.payment.id}", MISSING_VALUE
    return DEFAULT_PAYMENT_METHOD, MISSING_VALUE


def invoice_total(appointment: AppointmentResponse) -> Decimal:
    """Service price, falling back to the recorded payment amount."""
    service = appointment.service_record
    if service is not None:
        return service.price
    payment = appointment.payment_record
    return payment.amount if payment is not None else Decimal("0")


def build_invoice(
    appointment: AppointmentResponse,
    issued_at: datetime,
    tz: tzinfo | None = None,
    currency: str | None = None,
) -> Invoice:
    """Assemble the invoice number and plain-text body."""
    zone = tz or settings.tz
    issued_local = localize(issued_at, zone)
    number = build_invoice_number(appointment.id, issued_local)
    total = invoice_total(appointment)
    method, reference = payment_details(appointment)
    start = appointment.scheduled_at.astimezone(zone)

    lines = [
        f"Invoice {number}",
        f"Issued: {issued_local:%Y-%m-%d %H:%M}",
        "",
        f"Client: {appointment.client_name}",
        f"Email: {appointment.client_email}",
        f"Phone: {appointment.client_phone or MISSING_VALUE}",
        "",
        f"Service: {service_label(appointment)}",
        f"Provider: {provider_label(appointment)}",
        f"Service date: {start:%Y-%m-%d %H:%M}",
        "",
        f"Payment method: {method}",
        f"Payment reference: {reference}",
        "",
        f"Total: {currency or settings.currency_code} {total:.2f}",
    ]
    if appointment.notes:
        lines += ["", f"Notes: {appointment.notes}"]

    return Invoice(
        appointment_id=appointment.id,
        number=number,
        issued_at=issued_local,
        total=total,
        text="\n".join(lines),
    )


class PdfInvoiceRenderer:
    """Single-page PDF with one line of text per invoice line."""

    def __init__(self, title: str | None = None):
        self.title = title or settings.business_display_name
        self.page_width, self.page_height = letter
        self.margin = 0.75 * inch

    def render(self, text: str) -> bytes:
        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=letter)
        pdf.setTitle(self.title)

        y = self.page_height - self.margin
        pdf.setFont("Helvetica-Bold", 16)
        pdf.drawString(self.margin, y, self.title)
        y -= 0.4 * inch

        pdf.setFont("Helvetica", 11)
        for line in text.splitlines():
            if y < self.margin:
                pdf.showPage()
                pdf.setFont("Helvetica", 11)
                y = self.page_height - self.margin
            pdf.drawString(self.margin, y, line)
            y -= 16

        pdf.showPage()
        pdf.save()
        return buffer.getvalue()
