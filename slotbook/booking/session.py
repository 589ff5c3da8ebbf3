"""Session-scoped booking context.

Everything that used to live in ambient module-level caches (catalog,
appointment snapshot, processed notification keys, invoiced appointments)
is owned here and handed to the components that need it.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo

import structlog

from slotbook.booking.client import BookingBackend
from slotbook.booking.conflicts import ConflictValidator
from slotbook.booking.dashboard import DashboardSummary, summarize
from slotbook.booking.invoice import InvoiceRenderer
from slotbook.booking.lifecycle import AppointmentLifecycleManager
from slotbook.booking.notifications import (
    AppointmentChangeDetector,
    LoggingNotificationSink,
    NotificationSink,
    Notifier,
)
from slotbook.booking.payment_flow import PaymentConfirmationMachine
from slotbook.booking.slots import SlotGenerator
from slotbook.booking.snapshot import AppointmentSnapshot, SnapshotRefresher
from slotbook.booking.wizard import BookingWizard
from slotbook.config import Settings, settings
from slotbook.core.exceptions import AppException, ErrorKind
from slotbook.core.redis_client import CacheManager
from slotbook.core.timeutils import utcnow
from slotbook.schemas.catalog import ProviderResponse, ProviderServiceLink, ServiceResponse

logger = structlog.get_logger(__name__)


@dataclass
class Catalog:
    """Services, providers and their links, loaded once per session."""

    services: dict[int, ServiceResponse] = field(default_factory=dict)
    providers: dict[int, ProviderResponse] = field(default_factory=dict)
    links: list[ProviderServiceLink] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        services: list[ServiceResponse],
        providers: list[ProviderResponse],
        links: list[ProviderServiceLink],
    ) -> "Catalog":
        """Index the raw collaborator results by id."""
        return cls(
            services={service.id: service for service in services},
            providers={provider.id: provider for provider in providers},
            links=list(links),
        )

    def service(self, service_id: int | None) -> ServiceResponse | None:
        """Look up a service, active or not."""
        return self.services.get(service_id) if service_id is not None else None

    def provider(self, provider_id: int | None) -> ProviderResponse | None:
        """Look up a provider."""
        return self.providers.get(provider_id) if provider_id is not None else None

    def active_services(self) -> list[ServiceResponse]:
        """Services offered for new bookings, by name."""
        return sorted((s for s in self.services.values() if s.active), key=lambda s: s.name)

    def eligible_providers(self, service_id: int | None) -> list[ProviderResponse]:
        """Providers with an active link to the service, by name."""
        if service_id is None:
            return []
        ids = {
            link.provider_id
            for link in self.links
            if link.active and link.service_id == service_id
        }
        eligible = [self.providers[i] for i in ids if i in self.providers]
        return sorted(eligible, key=lambda p: (p.name, p.id))


class BookingSession:
    """
    Owns the state shared by the wizard, the payment machine and the
    staff lifecycle manager for one client or dashboard session.

    Use as an async context manager; ``close`` cancels every timer so no
    callback touches the snapshot after the session ends.
    """

    def __init__(
        self,
        backend: BookingBackend,
        *,
        sink: NotificationSink | None = None,
        cache: CacheManager | None = None,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
        slot_generator: SlotGenerator | None = None,
    ):
        self.backend = backend
        self.config = config
        self.clock = clock
        self.tz: tzinfo = config.tz
        self.lead_time = timedelta(minutes=config.min_lead_time_minutes)
        self.slot_generator = slot_generator or SlotGenerator(
            config.business_open_hour,
            config.business_close_hour,
            config.slot_interval_minutes,
        )
        self.catalog = Catalog()
        self.snapshot = AppointmentSnapshot()
        self.refresher = SnapshotRefresher(
            backend.list_appointments,
            self.snapshot,
            min_interval=config.snapshot_min_refresh_interval_seconds,
            poll_interval=config.snapshot_poll_interval_seconds,
            visibility_delay=config.snapshot_visibility_delay_seconds,
        )
        self.notifier = Notifier(
            sink or LoggingNotificationSink(),
            cache=cache,
            retention=timedelta(hours=config.notification_retention_hours),
            clock=clock,
        )
        self.change_detector = AppointmentChangeDetector(self.notifier, started_at=clock())
        self.refresher.add_listener(self.change_detector)
        self.invoiced_ids: set[int] = set()
        self.opened = False

    async def __aenter__(self) -> "BookingSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def now(self) -> datetime:
        """Current instant according to the session clock."""
        return self.clock()

    async def load_catalog(self) -> Catalog:
        """Fetch services, providers and links in one round."""
        services, providers, links = await asyncio.gather(
            self.backend.list_services(),
            self.backend.list_providers(),
            self.backend.list_provider_service_links(),
        )
        self.catalog = Catalog.build(services, providers, links)
        logger.info(
            "catalog_loaded",
            services=len(services),
            providers=len(providers),
            links=len(links),
        )
        return self.catalog

    async def open(self, poll: bool = False) -> None:
        """
        Load the catalog and the first snapshot.

        Args:
            poll: Start periodic snapshot refreshes

        Raises:
            AppException: The catalog could not be loaded
        """
        self.notifier.load()
        await self.load_catalog()
        try:
            await self.refresher.refresh(force=True)
        except AppException as e:
            if e.kind != ErrorKind.NETWORK:
                raise
            logger.warning("initial_snapshot_unavailable", error=e.message)
        if poll:
            self.refresher.start()
        self.opened = True

    async def close(self) -> None:
        """Stop timers and persist notification state."""
        await self.refresher.close()
        self.notifier.save()
        self.opened = False

    def conflict_validator(self) -> ConflictValidator:
        """Validator bound to this session's snapshot."""
        return ConflictValidator(self.snapshot, self.refresher, self.tz)

    def wizard(self, live_checks: bool = False) -> BookingWizard:
        """New booking wizard, optionally running debounced conflict checks."""
        return BookingWizard(self, live_checks=live_checks)

    def payment_machine(self, wizard: BookingWizard | None = None) -> PaymentConfirmationMachine:
        """Payment machine that resets ``wizard`` after a successful booking."""
        on_success = (lambda _appointment: wizard.reset()) if wizard is not None else None
        return PaymentConfirmationMachine(self, on_success=on_success)

    def dashboard(self, limit: int | None = None) -> DashboardSummary:
        """Staff dashboard figures over the current snapshot."""
        return summarize(self.snapshot, self.now(), limit=limit)

    def lifecycle(self, renderer: InvoiceRenderer | None = None) -> AppointmentLifecycleManager:
        """Staff-side lifecycle manager."""
        return AppointmentLifecycleManager(self, renderer=renderer)
