# =======================================================================================
# gatepass/utils/clock.py - Time Helpers
# =======================================================================================
# All timestamps are stored and compared as naive UTC datetimes.
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_wire(value: datetime) -> str:
    """Millisecond ISO-8601 with a Z suffix, e.g. 2026-01-01T08:00:00.000Z."""
    value = to_naive_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def from_wire(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ")


_EPOCH = datetime(1970, 1, 1)


def to_epoch_millis(value: datetime) -> int:
    delta = to_naive_utc(value) - _EPOCH
    return delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000
