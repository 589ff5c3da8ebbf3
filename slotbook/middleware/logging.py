"""Logging middleware and configuration."""

import logging
import sys
import time
import uuid
from collections.abc import Callable
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from slotbook.config import settings

# Scraped or polled often; logged at debug only
QUIET_PATHS = frozenset({"/metrics", "/api/v1/ping", "/api/v1/health"})


def add_service_context(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Stamp every event with the service name and environment."""
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Args:
        level: Log level name, defaults to LOG_LEVEL
        fmt: ``json`` or ``console``, defaults to LOG_FORMAT
    """
    level = (level or settings.log_level).upper()
    fmt = fmt or settings.log_format

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service_context,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Bind a request id for the duration of each request.

    Service-level events (``appointment_created``, ``payment_created`` and
    so on) pick the id up through structlog's context variables, so one
    booking attempt can be followed across its writes.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        """
        Log the request, call the app and log the outcome.

        Args:
            request: Request object
            call_next: Next middleware in chain

        Returns:
            Response object carrying ``X-Request-ID`` and ``X-Process-Time``
        """
        logger = structlog.get_logger()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        log = logger.debug if request.url.path in QUIET_PATHS else logger.info

        started = time.perf_counter()
        log("request_started", client=request.client.host if request.client else None)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration=time.perf_counter() - started,
            )
            structlog.contextvars.clear_contextvars()
            raise

        duration = time.perf_counter() - started
        log("request_completed", status_code=response.status_code, duration=duration)
        structlog.contextvars.clear_contextvars()

        response.headers["X-Process-Time"] = f"{duration:.6f}"
        response.headers["X-Request-ID"] = request_id
        return response
