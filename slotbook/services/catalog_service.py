"""Catalog service: services, providers and their links."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.config import settings
from slotbook.core.redis_client import CacheManager
from slotbook.models.catalog import provider_services, providers, services
from slotbook.schemas.catalog import ProviderResponse, ProviderServiceLink, ServiceResponse


class CatalogService:
    """Read-only catalog queries with Redis caching."""

    CACHE_PREFIX = "catalog"

    def __init__(self, cache_manager: CacheManager | None = None):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager
        self.ttl = settings.catalog_cache_ttl_seconds

    def _cached(self, key: str) -> list[dict] | None:
        if not self.cache:
            return None
        cached = self.cache.get_json(f"{self.CACHE_PREFIX}:{key}")
        return cached if isinstance(cached, list) else None

    def _store(self, key: str, items: list[dict]) -> None:
        if self.cache and self.ttl:
            self.cache.set_json(f"{self.CACHE_PREFIX}:{key}", items, ttl=self.ttl)

    def invalidate(self) -> None:
        """Drop every cached catalog listing."""
        if self.cache:
            self.cache.delete_pattern(f"{self.CACHE_PREFIX}:*")

    async def list_services(
        self, db: AsyncSession, include_inactive: bool = False
    ) -> list[ServiceResponse]:
        """
        List non-deleted services by name.

        Args:
            db: Database session
            include_inactive: Also return services no longer offered

        Returns:
            Services
        """
        key = "services:all" if include_inactive else "services:active"
        cached = self._cached(key)
        if cached is not None:
            return [ServiceResponse.model_validate(item) for item in cached]

        query = select(services).where(services.c.deleted_at.is_(None))
        if not include_inactive:
            query = query.where(services.c.active.is_(True))
        result = await db.execute(query.order_by(services.c.name))
        items = [ServiceResponse.model_validate(dict(row)) for row in result.mappings().all()]

        self._store(key, [item.model_dump(mode="json") for item in items])
        return items

    async def get_service(self, db: AsyncSession, service_id: int) -> ServiceResponse | None:
        """Get a non-deleted service, active or not."""
        query = select(services).where(
            services.c.id == service_id,
            services.c.deleted_at.is_(None),
        )
        row = (await db.execute(query)).mappings().first()
        return ServiceResponse.model_validate(dict(row)) if row else None

    async def list_providers(self, db: AsyncSession) -> list[ProviderResponse]:
        """List non-deleted providers by name."""
        cached = self._cached("providers")
        if cached is not None:
            return [ProviderResponse.model_validate(item) for item in cached]

        query = select(providers).where(providers.c.deleted_at.is_(None)).order_by(providers.c.name)
        result = await db.execute(query)
        items = [ProviderResponse.model_validate(dict(row)) for row in result.mappings().all()]

        self._store("providers", [item.model_dump(mode="json") for item in items])
        return items

    async def get_provider(self, db: AsyncSession, provider_id: int) -> ProviderResponse | None:
        """Get a non-deleted provider."""
        query = select(providers).where(
            providers.c.id == provider_id,
            providers.c.deleted_at.is_(None),
        )
        row = (await db.execute(query)).mappings().first()
        return ProviderResponse.model_validate(dict(row)) if row else None

    async def list_links(self, db: AsyncSession) -> list[ProviderServiceLink]:
        """List provider/service links, soft-deleted ones included."""
        cached = self._cached("links")
        if cached is not None:
            return [ProviderServiceLink.model_validate(item) for item in cached]

        query = select(
            provider_services.c.provider_id,
            provider_services.c.service_id,
            provider_services.c.deleted_at,
        ).order_by(provider_services.c.provider_id, provider_services.c.service_id)
        result = await db.execute(query)
        items = [ProviderServiceLink.model_validate(dict(row)) for row in result.mappings().all()]

        self._store("links", [item.model_dump(mode="json") for item in items])
        return items

    async def provider_performs(self, db: AsyncSession, provider_id: int, service_id: int) -> bool:
        """Whether an active link exists between provider and service."""
        query = select(provider_services.c.provider_id).where(
            provider_services.c.provider_id == provider_id,
            provider_services.c.service_id == service_id,
            provider_services.c.deleted_at.is_(None),
        )
        return (await db.execute(query)).first() is not None
