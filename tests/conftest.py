from collections import defaultdict
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from fnmatch import fnmatch
from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Load environment variables from .env file
load_dotenv()

from slotbook.booking.notifications import NotificationKind
from slotbook.booking.session import BookingSession
from slotbook.core.exceptions import ConflictException, NetworkException, SlotConflictException
from slotbook.core.redis_client import CacheManager
from slotbook.core.security import create_staff_token
from slotbook.database import get_db
from slotbook.dependencies import get_cache_manager
from slotbook.main import app
from slotbook.models import metadata, provider_services, providers, services
from slotbook.schemas.appointments import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
)
from slotbook.schemas.catalog import ProviderResponse, ProviderServiceLink, ServiceResponse
from slotbook.schemas.payments import PaymentCreate, PaymentResponse

# Tests never touch a real database: every test gets its own in-memory SQLite
TEST_DATABASE_URL = "sqlite+aiosqlite://"

# 2025-01-15 14:10 in America/La_Paz (UTC-4)
FIXED_NOW = datetime(2025, 1, 15, 18, 10, tzinfo=UTC)

HAIRCUT = ServiceResponse(id=1, name="Haircut", price=Decimal("80.00"), duration_minutes=30)
CONSULTATION = ServiceResponse(id=2, name="Consultation", price=Decimal("0.00"), duration_minutes=30)
RETIRED = ServiceResponse(
    id=3, name="Perm", price=Decimal("150.00"), duration_minutes=60, active=False
)
NOBODY = ServiceResponse(id=4, name="Massage", price=Decimal("120.00"), duration_minutes=60)

ANA = ProviderResponse(
    id=1, name="Ana Rojas", work_start=time(9, 0), work_end=time(17, 0), days_off=["sunday"]
)
BRUNO = ProviderResponse(id=2, name="Bruno Vaca")

LINKS = [
    ProviderServiceLink(provider_id=1, service_id=1),
    ProviderServiceLink(provider_id=2, service_id=1),
    ProviderServiceLink(provider_id=1, service_id=2),
    ProviderServiceLink(provider_id=2, service_id=3),
    # Bruno stopped offering massages
    ProviderServiceLink(provider_id=2, service_id=4, deleted_at=FIXED_NOW - timedelta(days=30)),
]


def make_appointment(
    appointment_id: int,
    scheduled_at: datetime,
    provider: ProviderResponse | dict | int = ANA,
    service: ServiceResponse | dict | int = HAIRCUT,
    status: AppointmentStatus = AppointmentStatus.PENDING,
    **extra: Any,
) -> AppointmentResponse:
    """Build a snapshot entry with embedded relations."""
    data = {
        "id": appointment_id,
        "scheduled_at": scheduled_at,
        "client_name": "Carla Mendez",
        "client_email": "carla@example.com",
        "status": status,
        "provider": provider.model_dump() if isinstance(provider, ProviderResponse) else provider,
        "service": service.model_dump() if isinstance(service, ServiceResponse) else service,
        "created_at": FIXED_NOW - timedelta(days=1),
    }
    data.update(extra)
    return AppointmentResponse.model_validate(data)


class FakeBackend:
    """
    In-memory collaborator for the booking core.

    Queue an exception in ``failures[method]`` to make the next call to
    that method raise it. Add a method to ``lost_replies`` to make its next
    call commit and then raise ``NetworkException``, as when a reply times out.
    """

    def __init__(self, appointments: list[AppointmentResponse] | None = None):
        self.services = [HAIRCUT, CONSULTATION, RETIRED, NOBODY]
        self.providers = [ANA, BRUNO]
        self.links = list(LINKS)
        self.appointments = {a.id: a for a in appointments or []}
        self.payments: list[PaymentResponse] = []
        self.calls: dict[str, int] = defaultdict(int)
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.lost_replies: set[str] = set()
        self._next_id = 100

    def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if self.failures[name]:
            raise self.failures[name].pop(0)

    def _reply(self, name: str, value: Any) -> Any:
        if name in self.lost_replies:
            self.lost_replies.discard(name)
            raise NetworkException()
        return value

    def add(self, appointment: AppointmentResponse) -> None:
        self.appointments[appointment.id] = appointment

    async def list_appointments(self) -> list[AppointmentResponse]:
        self._enter("list_appointments")
        return list(self.appointments.values())

    async def create_appointment(self, payload: AppointmentCreate) -> AppointmentResponse:
        self._enter("create_appointment")
        for existing in self.appointments.values():
            if (
                existing.is_active
                and existing.provider_id == payload.provider_id
                and existing.scheduled_at == payload.scheduled_at
            ):
                raise SlotConflictException()
        self._next_id += 1
        provider = next(p for p in self.providers if p.id == payload.provider_id)
        service = next(s for s in self.services if s.id == payload.service_id)
        appointment = make_appointment(
            self._next_id,
            payload.scheduled_at,
            provider=provider,
            service=service,
            client_name=payload.client_name,
            client_email=str(payload.client_email),
            client_phone=payload.client_phone,
            notes=payload.notes,
            created_at=FIXED_NOW,
        )
        self.add(appointment)
        return self._reply("create_appointment", appointment)

    async def update_appointment(
        self, appointment_id: int, patch: AppointmentUpdate
    ) -> AppointmentResponse:
        self._enter("update_appointment")
        current = self.appointments[appointment_id]
        data = current.model_dump()
        data.update(patch.model_dump(exclude_unset=True))
        updated = AppointmentResponse.model_validate(data)
        self.add(updated)
        return updated

    async def create_payment(self, payload: PaymentCreate) -> PaymentResponse:
        self._enter("create_payment")
        if any(p.appointment_id == payload.appointment_id for p in self.payments):
            raise ConflictException(
                "A payment is already recorded for this appointment", code="payment-exists"
            )
        payment = PaymentResponse(
            id=len(self.payments) + 1,
            amount=payload.amount,
            method=payload.method,
            status=payload.status,
            transaction_ref=payload.transaction_ref,
            paid_at=payload.paid_at,
            appointment_id=payload.appointment_id,
            created_at=FIXED_NOW,
        )
        self.payments.append(payment)
        current = self.appointments[payload.appointment_id]
        self.add(
            AppointmentResponse.model_validate(
                {**current.model_dump(), "payment": payment.model_dump()}
            )
        )
        return self._reply("create_payment", payment)

    async def list_services(self) -> list[ServiceResponse]:
        self._enter("list_services")
        return list(self.services)

    async def list_providers(self) -> list[ProviderResponse]:
        self._enter("list_providers")
        return list(self.providers)

    async def list_provider_service_links(self) -> list[ProviderServiceLink]:
        self._enter("list_provider_service_links")
        return list(self.links)


class RecordingSink:
    """Notification sink remembering what it was given."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationKind, str, str]] = []

    def notify(self, kind: NotificationKind, message: str, dedupe_key: str) -> None:
        self.sent.append((kind, message, dedupe_key))

    @property
    def keys(self) -> list[str]:
        return [key for _, _, key in self.sent]


@pytest.fixture
def backend() -> FakeBackend:
    """Collaborator with the sample catalog and no appointments."""
    return FakeBackend()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture
async def booking_session(
    backend: FakeBackend, sink: RecordingSink
) -> AsyncGenerator[BookingSession, None]:
    """Opened booking session pinned to FIXED_NOW."""
    session = BookingSession(backend, sink=sink, clock=lambda: FIXED_NOW)
    await session.open()
    yield session
    await session.close()


@pytest.fixture
def cache_manager() -> CacheManager:
    """Cache manager over a dict-backed fake Redis."""
    store: dict[str, str] = {}
    mock_redis = MagicMock()
    mock_redis.get.side_effect = store.get
    mock_redis.set.side_effect = lambda key, value: store.__setitem__(key, value)
    mock_redis.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    mock_redis.keys.side_effect = lambda pattern: [k for k in store if fnmatch(k, pattern)]
    mock_redis.delete.side_effect = lambda *keys: sum(store.pop(k, None) is not None for k in keys)
    mock_redis.store = store
    return CacheManager(redis_client=mock_redis)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    def override_get_cache_manager() -> CacheManager:
        # Every lookup misses, every write is accepted
        mock_redis = MagicMock()
        mock_redis.get.return_value = None
        return CacheManager(redis_client=mock_redis)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_manager] = override_get_cache_manager

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def catalog_rows(db_session: AsyncSession) -> dict[str, int]:
    """Insert services, providers and links; returns their ids by name."""
    ids: dict[str, int] = {}
    for name, price, active in (
        ("Haircut", Decimal("80.00"), True),
        ("Consultation", Decimal("0.00"), True),
        ("Perm", Decimal("150.00"), False),
    ):
        result = await db_session.execute(
            services.insert()
            .values(name=name, price=price, duration_minutes=30, active=active)
            .returning(services.c.id)
        )
        ids[name] = result.scalar_one()

    for name in ("Ana Rojas", "Bruno Vaca"):
        result = await db_session.execute(
            providers.insert().values(name=name).returning(providers.c.id)
        )
        ids[name] = result.scalar_one()

    for provider_name, service_name in (
        ("Ana Rojas", "Haircut"),
        ("Ana Rojas", "Perm"),
        ("Bruno Vaca", "Consultation"),
    ):
        await db_session.execute(
            provider_services.insert().values(
                provider_id=ids[provider_name], service_id=ids[service_name]
            )
        )

    await db_session.commit()
    return ids


@pytest.fixture
def booking_day() -> date:
    """A business day safely in the future."""
    return date.today() + timedelta(days=7)


@pytest.fixture
def appointment_payload(catalog_rows: dict[str, int], booking_day: date) -> dict:
    """Sample appointment request."""
    return {
        "scheduled_at": f"{booking_day.isoformat()}T10:00:00",
        "client_name": "Carla Mendez",
        "client_email": "carla@example.com",
        "client_phone": "+591 7000 0000",
        "notes": "First visit",
        "provider_id": catalog_rows["Ana Rojas"],
        "service_id": catalog_rows["Haircut"],
    }


@pytest.fixture
def staff_headers() -> dict:
    """Bearer header carrying a staff token."""
    token = create_staff_token("staff-1", expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}
