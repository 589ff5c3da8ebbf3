"""Database models."""

from slotbook.models.appointments import appointments
from slotbook.models.catalog import provider_services, providers, services
from slotbook.models.metadata import metadata
from slotbook.models.payments import payments

__all__ = [
    "appointments",
    "metadata",
    "payments",
    "provider_services",
    "providers",
    "services",
]
