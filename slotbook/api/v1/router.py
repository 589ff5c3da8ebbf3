"""API v1 router configuration."""

from fastapi import APIRouter

from slotbook.api.v1.endpoints import (
    appointments,
    availability,
    catalog,
    health,
    payments,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(catalog.router, tags=["Catalog"])
api_router.include_router(availability.router, tags=["Availability"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
