from datetime import datetime, timezone


def to_utc(value: datetime) -> datetime:
    """Normalise to naive UTC; naive input is taken to already be UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intervals [start, end) intersect."""
    return a_start < b_end and b_start < a_end
