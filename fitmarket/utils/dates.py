from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize to an aware UTC datetime.

    SQLite hands back naive datetimes holding the UTC wall time; those are
    tagged as UTC. Aware values with any other offset are converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
