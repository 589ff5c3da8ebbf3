"""HTTP collaborator client used by the booking core."""

from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError

from slotbook.config import settings
from slotbook.core.exceptions import (
    AppException,
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NetworkException,
    NotFoundException,
    SlotConflictException,
    StateConflictException,
    UnauthorizedException,
    ValidationException,
)
from slotbook.schemas.appointments import AppointmentCreate, AppointmentResponse, AppointmentUpdate
from slotbook.schemas.catalog import ProviderResponse, ProviderServiceLink, ServiceResponse
from slotbook.schemas.payments import PaymentCreate, PaymentResponse

logger = structlog.get_logger(__name__)


class BookingBackend(Protocol):
    """Persistence and catalog operations the booking core depends on."""

    async def list_appointments(self) -> list[AppointmentResponse]: ...

    async def create_appointment(self, payload: AppointmentCreate) -> AppointmentResponse: ...

    async def update_appointment(
        self, appointment_id: int, patch: AppointmentUpdate
    ) -> AppointmentResponse: ...

    async def create_payment(self, payload: PaymentCreate) -> PaymentResponse: ...

    async def list_services(self) -> list[ServiceResponse]: ...

    async def list_providers(self) -> list[ProviderResponse]: ...

    async def list_provider_service_links(self) -> list[ProviderServiceLink]: ...


def error_from_response(response: httpx.Response) -> AppException:
    """Translate an error response into the matching application exception."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or body.get("detail")
    if not isinstance(message, str):
        message = None
    code = body.get("code")
    status = response.status_code

    if status == 401:
        return UnauthorizedException(message or "Your session is not authorized for this action")
    if status == 403:
        return ForbiddenException(message or "You are not allowed to perform this action")
    if status == 400:
        return BadRequestException(message or "The request was rejected")
    if status == 422:
        return ValidationException(message or "Some fields are invalid")
    if status == 404:
        return NotFoundException(message or "The requested record no longer exists")
    if status == 409:
        if code == "slot-taken":
            return SlotConflictException(message) if message else SlotConflictException()
        if code == "state-conflict":
            return StateConflictException(message) if message else StateConflictException()
        return ConflictException(message or "The record changed in the meantime", code=code)
    if status >= 500:
        return NetworkException("The booking service is having trouble; please try again")
    return AppException(message or f"Unexpected response ({status})", status_code=status, code=code)


class BookingApiClient:
    """
    ``BookingBackend`` over the slotbook HTTP API.

    Every failure reaches the caller as an ``AppException`` with a kind the
    booking core can act on; transport errors and timeouts become
    ``NetworkException``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.api_base_url).rstrip("/"),
            headers=headers,
            timeout=timeout or settings.api_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "BookingApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("api_request_timeout", method=method, path=path, error=str(e))
            raise NetworkException("The booking service did not answer in time") from e
        except httpx.HTTPError as e:
            logger.warning("api_request_failed", method=method, path=path, error=str(e))
            raise NetworkException() from e

        if response.is_error:
            error = error_from_response(response)
            logger.info(
                "api_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                kind=error.kind.value,
            )
            raise error

        try:
            return response.json()
        except ValueError as e:
            raise NetworkException("The booking service sent an unreadable response") from e

    async def _get_list(self, path: str, model: type[Any], **params: Any) -> list[Any]:
        data = await self._request("GET", path, params=params or None)
        try:
            return [model.model_validate(item) for item in data]
        except (TypeError, ValidationError) as e:
            raise NetworkException("The booking service sent an unreadable response") from e

    async def list_appointments(self) -> list[AppointmentResponse]:
        """Fetch all non-deleted appointments."""
        return await self._get_list("/appointments", AppointmentResponse)

    async def create_appointment(self, payload: AppointmentCreate) -> AppointmentResponse:
        """Create a Pending appointment."""
        data = await self._request("POST", "/appointments", json=payload.model_dump(mode="json"))
        return AppointmentResponse.model_validate(data)

    async def update_appointment(
        self, appointment_id: int, patch: AppointmentUpdate
    ) -> AppointmentResponse:
        """Apply a partial update."""
        data = await self._request(
            "PATCH",
            f"/appointments/{appointment_id}",
            json=patch.model_dump(mode="json", exclude_unset=True),
        )
        return AppointmentResponse.model_validate(data)

    async def create_payment(self, payload: PaymentCreate) -> PaymentResponse:
        """Record a payment."""
        data = await self._request(
            "POST", "/payments", json=payload.model_dump(mode="json", exclude_none=True)
        )
        return PaymentResponse.model_validate(data)

    async def list_services(self) -> list[ServiceResponse]:
        """Fetch the service catalog, inactive services included."""
        return await self._get_list("/services", ServiceResponse, include_inactive="true")

    async def list_providers(self) -> list[ProviderResponse]:
        """Fetch all providers."""
        return await self._get_list("/providers", ProviderResponse)

    async def list_provider_service_links(self) -> list[ProviderServiceLink]:
        """Fetch provider/service associations."""
        return await self._get_list("/provider-services", ProviderServiceLink)
