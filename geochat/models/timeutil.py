from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC now. Timestamps are set by the app, not the database."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
