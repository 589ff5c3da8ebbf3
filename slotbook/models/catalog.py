"""Service catalog, providers and the provider-service association."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Time,
    func,
    text,
)

from slotbook.models.metadata import metadata

services = Table(
    "services",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("duration_minutes", Integer, nullable=False),
    Column("description", Text, nullable=True),
    # Inactive services stay resolvable for historical appointments
    Column("active", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    CheckConstraint("price >= 0", name="services_price_check"),
    CheckConstraint("duration_minutes > 0", name="services_duration_check"),
)

providers = Table(
    "providers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("photo_url", String(255), nullable=True),
    Column("specialty", String(255), nullable=True),
    # Optional working-hours window; NULL means business hours apply
    Column("work_start", Time, nullable=True),
    Column("work_end", Time, nullable=True),
    # Comma separated weekday names, e.g. "sunday,monday"
    Column("days_off", String(100), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

provider_services = Table(
    "provider_services",
    metadata,
    Column(
        "provider_id",
        Integer,
        ForeignKey("providers.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "service_id",
        Integer,
        ForeignKey("services.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

Index("idx_provider_services_service_id", provider_services.c.service_id)
