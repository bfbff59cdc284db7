from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through.

    MongoDB stores datetimes without tzinfo (naive). When you read a date field
    from a Mongo document and need to do arithmetic or comparison with utcnow()
    (which is tz-aware), wrap it with ensure_utc() first.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_utc(value: str | datetime) -> datetime:
    """Parse a date string or datetime into a tz-aware UTC datetime.

    Handles ISO 8601 strings (with or without Z/offset) and bare datetimes.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def parse_utc_or_none(value) -> datetime | None:
    """Lenient variant of parse_utc for provider payloads: bad input yields None."""
    if value is None or value == "":
        return None
    try:
        return parse_utc(value)
    except (TypeError, ValueError, AttributeError):
        return None
