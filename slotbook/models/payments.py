"""Payments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    func,
)

from slotbook.models.metadata import metadata

payments = Table(
    "payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("amount", Numeric(10, 2), nullable=False),
    Column("method", String(50), nullable=True),
    Column("status", String(20), nullable=False, server_default="Pending"),
    Column("transaction_ref", String(255), nullable=True, unique=True),
    Column("paid_at", DateTime(timezone=True), nullable=True),
    # One payment per appointment
    Column(
        "appointment_id",
        Integer,
        ForeignKey("appointments.id"),
        nullable=False,
        unique=True,
    ),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    CheckConstraint("amount > 0", name="payments_amount_check"),
    CheckConstraint(
        "status IN ('Pending', 'Completed', 'Failed')",
        name="payments_status_check",
    ),
)
