"""In-memory appointment snapshot and its reentrancy-guarded refresher."""

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable, Iterator
from datetime import datetime

import structlog

from slotbook.core.exceptions import AppException
from slotbook.core.timeutils import utcnow
from slotbook.schemas.appointments import AppointmentResponse

logger = structlog.get_logger(__name__)

Fetcher = Callable[[], Awaitable[list[AppointmentResponse]]]
ChangeListener = Callable[[list[AppointmentResponse], list[AppointmentResponse]], None]


class AppointmentSnapshot:
    """
    Most recently fetched copy of all appointments.

    ``patch`` applies a provisional local change right after a staff action
    succeeds; it is not a source of truth and is discarded by the next
    ``replace``.
    """

    def __init__(self, items: list[AppointmentResponse] | None = None):
        self._items: dict[int, AppointmentResponse] = {}
        self._provisional: set[int] = set()
        self.fetched_at: datetime | None = None
        self.version = 0
        if items is not None:
            self.replace(items)

    def __iter__(self) -> Iterator[AppointmentResponse]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[AppointmentResponse]:
        """Appointments ordered by start."""
        return sorted(self._items.values(), key=lambda a: (a.scheduled_at, a.id))

    @property
    def loaded(self) -> bool:
        """Whether at least one full load has happened."""
        return self.fetched_at is not None

    @property
    def provisional_ids(self) -> frozenset[int]:
        """Ids whose local copy was patched since the last reload."""
        return frozenset(self._provisional)

    def get(self, appointment_id: int) -> AppointmentResponse | None:
        """Look up one appointment."""
        return self._items.get(appointment_id)

    def replace(self, items: list[AppointmentResponse]) -> None:
        """Swap in a freshly fetched collection."""
        self._items = {item.id: item for item in items}
        self._provisional.clear()
        self.fetched_at = utcnow()
        self.version += 1

    def patch(self, appointment: AppointmentResponse) -> None:
        """Provisionally overwrite one entry until the next reload."""
        self._items[appointment.id] = appointment
        self._provisional.add(appointment.id)


class SnapshotRefresher:
    """
    Single refresh routine shared by the poll timer, visibility changes and
    explicit reloads.

    A refresh already in flight suppresses new ones (forced callers wait for
    it instead of issuing another request), and non-forced refreshes closer
    than ``min_interval`` to the previous one are dropped.
    """

    def __init__(
        self,
        fetch: Fetcher,
        snapshot: AppointmentSnapshot | None = None,
        *,
        min_interval: float = 2.0,
        poll_interval: float = 30.0,
        visibility_delay: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetch = fetch
        self.snapshot = snapshot if snapshot is not None else AppointmentSnapshot()
        self.min_interval = min_interval
        self.poll_interval = poll_interval
        self.visibility_delay = visibility_delay
        self.clock = clock
        self.visible = True
        self.last_error: AppException | None = None
        self._listeners: list[ChangeListener] = []
        self._in_flight: asyncio.Future[bool] | None = None
        self._last_started: float | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._visibility_task: asyncio.Task[None] | None = None
        self._closed = False

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback receiving ``(previous, current)`` after each reload."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        """Unregister a callback; unknown callbacks are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def in_flight(self) -> bool:
        """Whether a fetch is currently running."""
        return self._in_flight is not None

    async def refresh(self, force: bool = False) -> bool:
        """
        Reload the snapshot.

        Args:
            force: Skip the throttle and, when a fetch is already running,
                wait for that fetch instead of returning immediately

        Returns:
            True when the snapshot was reloaded by this call or the fetch it
            joined, False when the call was suppressed

        Raises:
            AppException: The fetch failed; the previous snapshot is kept
        """
        if self._closed:
            return False

        if self._in_flight is not None:
            if force:
                return await asyncio.shield(self._in_flight)
            logger.debug("snapshot_refresh_suppressed", reason="in_flight")
            return False

        now = self.clock()
        if (
            not force
            and self._last_started is not None
            and now - self._last_started < self.min_interval
        ):
            logger.debug("snapshot_refresh_suppressed", reason="throttled")
            return False

        self._last_started = now
        load = asyncio.ensure_future(self._load())
        self._in_flight = load
        load.add_done_callback(self._load_done)
        # A cancelled caller must not cancel the fetch other callers joined
        return await asyncio.shield(load)

    def _load_done(self, load: "asyncio.Future[bool]") -> None:
        if self._in_flight is load:
            self._in_flight = None
        if not load.cancelled():
            load.exception()

    async def _load(self) -> bool:
        try:
            items = await self.fetch()
        except AppException as e:
            self.last_error = e
            logger.warning("snapshot_refresh_failed", kind=e.kind.value, error=e.message)
            raise

        if self._closed:
            return False

        previous = self.snapshot.items
        self.snapshot.replace(items)
        self.last_error = None
        logger.info("snapshot_refreshed", count=len(items), version=self.snapshot.version)

        for listener in list(self._listeners):
            try:
                listener(previous, self.snapshot.items)
            except Exception as e:
                logger.warning("snapshot_listener_failed", error=str(e))
        return True

    def start(self) -> None:
        """Begin periodic polling."""
        if self._poll_task is None and not self._closed:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            if not self.visible:
                continue
            with contextlib.suppress(AppException):
                await self.refresh()

    def set_visible(self, visible: bool) -> None:
        """Record visibility; becoming visible schedules a short-delay refresh."""
        became_visible = visible and not self.visible
        self.visible = visible
        if not became_visible or self._closed:
            return
        if self._visibility_task is not None:
            self._visibility_task.cancel()
        self._visibility_task = asyncio.create_task(self._refresh_after_delay())

    async def _refresh_after_delay(self) -> None:
        await asyncio.sleep(self.visibility_delay)
        with contextlib.suppress(AppException):
            await self.refresh()

    async def close(self) -> None:
        """Cancel timers; no callback may mutate the snapshot afterwards."""
        self._closed = True
        for task in (self._poll_task, self._visibility_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._poll_task = None
        self._visibility_task = None
