"""Read-only catalog endpoints."""

from fastapi import APIRouter, Depends, Query, status

from slotbook.dependencies import CacheManagerDep, DatabaseSession
from slotbook.schemas.catalog import ProviderResponse, ProviderServiceLink, ServiceResponse
from slotbook.services.catalog_service import CatalogService

router = APIRouter()


def get_catalog_service(cache_manager: CacheManagerDep) -> CatalogService:
    """Get catalog service instance."""
    return CatalogService(cache_manager=cache_manager)


@router.get(
    "/services",
    response_model=list[ServiceResponse],
    status_code=status.HTTP_200_OK,
    summary="List services",
)
async def list_services(
    db: DatabaseSession,
    include_inactive: bool = Query(False),
    catalog: CatalogService = Depends(get_catalog_service),
) -> list[ServiceResponse]:
    """
    List bookable services.

    - **include_inactive**: also return services no longer offered, for
      resolving historical appointments
    """
    return await catalog.list_services(db, include_inactive=include_inactive)


@router.get(
    "/providers",
    response_model=list[ProviderResponse],
    status_code=status.HTTP_200_OK,
    summary="List providers",
)
async def list_providers(
    db: DatabaseSession,
    catalog: CatalogService = Depends(get_catalog_service),
) -> list[ProviderResponse]:
    """List providers with their working hours and days off."""
    return await catalog.list_providers(db)


@router.get(
    "/provider-services",
    response_model=list[ProviderServiceLink],
    status_code=status.HTTP_200_OK,
    summary="List provider/service links",
)
async def list_provider_services(
    db: DatabaseSession,
    catalog: CatalogService = Depends(get_catalog_service),
) -> list[ProviderServiceLink]:
    """List which provider performs which service; soft-deleted links carry ``deleted_at``."""
    return await catalog.list_links(db)
