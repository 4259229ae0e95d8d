"""UTC helpers. SQLite drops tz info, so everything is normalized here."""

from datetime import datetime, timezone

# SteVe expects ISO timestamps without zone, in UTC.
STEVE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Aware datetimes are converted to UTC, naive ones are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_midnight(value: datetime | None = None) -> datetime:
    value = as_utc(value) if value else utc_now()
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def format_steve(value: datetime) -> str:
    return as_utc(value).strftime(STEVE_FORMAT)
