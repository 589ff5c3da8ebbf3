#!/usr/bin/env python3
"""
Seed a sample service catalog.

Creates a handful of services and providers and links them, so the booking
flow has something to offer on a fresh database. Existing rows are left alone.
"""

import asyncio
from datetime import time
from decimal import Decimal

from sqlalchemy import func, select

from slotbook.database import AsyncSessionLocal, create_tables, engine
from slotbook.dependencies import get_cache_manager
from slotbook.models import provider_services, providers, services
from slotbook.services.catalog_service import CatalogService

SERVICES = [
    {"name": "Haircut", "price": Decimal("80.00"), "duration_minutes": 30},
    {"name": "Beard trim", "price": Decimal("40.00"), "duration_minutes": 30},
    {"name": "Hair colouring", "price": Decimal("250.00"), "duration_minutes": 90},
    {"name": "Consultation", "price": Decimal("0.00"), "duration_minutes": 30},
]

PROVIDERS = [
    {
        "name": "Ana Rojas",
        "specialty": "Colour specialist",
        "work_start": time(9, 0),
        "work_end": time(17, 0),
        "days_off": "sunday",
    },
    {
        "name": "Bruno Vaca",
        "specialty": "Barber",
        "work_start": None,
        "work_end": None,
        "days_off": "sunday,monday",
    },
]

# provider name -> service names
LINKS = {
    "Ana Rojas": ["Haircut", "Hair colouring", "Consultation"],
    "Bruno Vaca": ["Haircut", "Beard trim", "Consultation"],
}


async def seed() -> None:
    """Insert the sample catalog if the services table is empty."""
    await create_tables()

    async with AsyncSessionLocal() as session:
        count = (await session.execute(select(func.count()).select_from(services))).scalar()
        if count:
            print(f"Catalog already has {count} services, skipping")
            return

        service_ids = {}
        for row in SERVICES:
            result = await session.execute(services.insert().values(**row).returning(services.c.id))
            service_ids[row["name"]] = result.scalar_one()

        provider_ids = {}
        for row in PROVIDERS:
            result = await session.execute(
                providers.insert().values(**row).returning(providers.c.id)
            )
            provider_ids[row["name"]] = result.scalar_one()

        for provider_name, service_names in LINKS.items():
            for service_name in service_names:
                await session.execute(
                    provider_services.insert().values(
                        provider_id=provider_ids[provider_name],
                        service_id=service_ids[service_name],
                    )
                )

        await session.commit()
        # Drop listings cached before the seed
        CatalogService(get_cache_manager()).invalidate()
        print(f"✓ Seeded {len(service_ids)} services and {len(provider_ids)} providers")


async def main() -> None:
    try:
        await seed()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
