"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    func,
    text,
)

from slotbook.models.metadata import metadata

APPOINTMENT_STATUSES = ("Pending", "Paid", "Completed", "Cancelled")

appointments = Table(
    "appointments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # Stored in UTC
    Column("scheduled_at", DateTime(timezone=True), nullable=False),
    # Client contact
    Column("client_name", String(100), nullable=False),
    Column("client_email", String(255), nullable=False),
    Column("client_phone", String(20), nullable=True),
    # Status management
    Column("status", String(20), nullable=False, server_default="Pending"),
    Column("notes", Text, nullable=True),
    # References
    Column("provider_id", Integer, ForeignKey("providers.id"), nullable=False),
    Column("service_id", Integer, ForeignKey("services.id"), nullable=False),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    CheckConstraint(
        "status IN ('Pending', 'Paid', 'Completed', 'Cancelled')",
        name="appointments_status_check",
    ),
)

Index("idx_appointments_scheduled_at", appointments.c.scheduled_at)
Index("idx_appointments_provider_scheduled", appointments.c.provider_id, appointments.c.scheduled_at)

# Only active bookings hold a slot; cancelled or deleted ones free it
_ACTIVE_BOOKING = text("status <> 'Cancelled' AND deleted_at IS NULL")

Index(
    "uq_appointments_provider_slot",
    appointments.c.provider_id,
    appointments.c.scheduled_at,
    unique=True,
    postgresql_where=_ACTIVE_BOOKING,
    sqlite_where=_ACTIVE_BOOKING,
)
