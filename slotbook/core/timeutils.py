"""Timezone helpers shared by the API and the booking core."""

from datetime import UTC, date, datetime, time, tzinfo

from slotbook.config import settings


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def localize(value: datetime, tz: tzinfo | None = None) -> datetime:
    """Interpret naive datetimes as business wall-clock time and return them aware."""
    zone = tz or settings.tz
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def combine_local(day: date, slot: time, tz: tzinfo | None = None) -> datetime:
    """Absolute instant of a wall-clock slot on a calendar day."""
    return datetime.combine(day, slot, tzinfo=tz or settings.tz)


def parse_day(value: date | str | None) -> date | None:
    """Parse ``YYYY-MM-DD``; anything unparseable yields ``None``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        return None


def parse_slot(value: time | str | None) -> time | None:
    """Parse ``HH:MM``; anything unparseable yields ``None``."""
    if value is None:
        return None
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return time.fromisoformat(value.strip()).replace(second=0, microsecond=0)
    except (AttributeError, ValueError):
        return None
