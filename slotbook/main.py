"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from slotbook.api.v1.router import api_router
from slotbook.config import settings
from slotbook.core.exceptions import AppException
from slotbook.core.redis_client import check_redis_connection, close_redis_connection
from slotbook.database import DATABASE_URL, check_database_connection, create_tables, engine
from slotbook.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from slotbook.middleware.logging import LoggingMiddleware, configure_logging

configure_logging()
logger = structlog.get_logger()

EXCEPTION_HANDLERS = {
    AppException: app_exception_handler,
    StarletteHTTPException: http_exception_handler,
    RequestValidationError: validation_exception_handler,
    Exception: general_exception_handler,
}


async def prepare_database() -> None:
    """Create tables for local SQLite or development databases, then verify the connection."""
    if DATABASE_URL.startswith("sqlite") or settings.is_development:
        try:
            await create_tables()
            logger.info("database_tables_ready")
        except Exception as e:
            logger.error("database_table_creation_failed", error=str(e))

    if await check_database_connection():
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Redis is optional at startup: without it catalog listings are simply
    read from the database on every request.
    """
    logger.info(
        "application_startup",
        environment=settings.environment,
        timezone=settings.business_timezone,
    )
    await prepare_database()

    if await check_redis_connection():
        logger.info("redis_connected")
    else:
        logger.warning("redis_unavailable", host=settings.redis_host, port=settings.redis_port)

    yield

    logger.info("application_shutdown")
    await engine.dispose()
    close_redis_connection()
    logger.info("connections_closed")


def create_app() -> FastAPI:
    """Build the API with middleware, exception handlers, routes and metrics."""
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Appointment booking backend: catalog, availability, appointments and payments",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(LoggingMiddleware)

    for exc_class, handler in EXCEPTION_HANDLERS.items():
        application.add_exception_handler(exc_class, handler)  # type: ignore[arg-type]

    application.include_router(api_router, prefix=settings.api_v1_prefix)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/docs", "/redoc", "/openapi.json"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    ).instrument(application).expose(application, endpoint="/metrics", include_in_schema=False)

    @application.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Service name, version and where to find the docs."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "docs": "/docs",
        }

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "slotbook.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
