# split a requested [start, end) range into windows the readings endpoint accepts

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from glowmarkt_ingest.config import MAX_QUERY_DAYS
from glowmarkt_ingest.errors import InvalidRangeError


QUERY_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _require_aware(dt: datetime, name: str) -> None:
    if not isinstance(dt, datetime):
        raise InvalidRangeError(f"{name} must be a datetime, got {type(dt).__name__}")
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise InvalidRangeError(f"{name} must be timezone-aware")


@dataclass(frozen=True)
class DateRange:
    start: datetime     # inclusive
    end: datetime       # exclusive

    def __post_init__(self):
        _require_aware(self.start, "start")
        _require_aware(self.end, "end")
        if self.start.astimezone(timezone.utc) >= self.end.astimezone(timezone.utc):
            raise InvalidRangeError(f"start ({self.start.isoformat()}) must be before end ({self.end.isoformat()})")

    @property
    def span(self) -> timedelta:
        # same-tzinfo subtraction is wall-clock, go through UTC for the real duration
        return self.end.astimezone(timezone.utc) - self.start.astimezone(timezone.utc)

    def query_bounds(self) -> tuple[str, str]:
        # the API wants local wall-clock strings without an offset
        return self.start.strftime(QUERY_TIME_FORMAT), self.end.strftime(QUERY_TIME_FORMAT)

    def __str__(self) -> str:
        return f"{self.start.isoformat()} -> {self.end.isoformat()}"


def batch_range(start: datetime, end: datetime, max_span_days: int = MAX_QUERY_DAYS) -> list[DateRange]:
    """Split [start, end) into contiguous, ascending windows of at most max_span_days.

    The arithmetic runs on absolute instants (UTC), so sub-day offsets and DST
    changes never make a window drift. Every window is emitted in start's timezone,
    the last window ends exactly at end.
    """
    if isinstance(max_span_days, bool) or not isinstance(max_span_days, (int, float)) or max_span_days <= 0:
        raise InvalidRangeError(f"max_span_days must be positive, got {max_span_days!r}")
    whole = DateRange(start, end)    # validates the bounds

    tz = whole.start.tzinfo
    step = timedelta(days=max_span_days)
    end_utc = whole.end.astimezone(timezone.utc)
    cursor = whole.start.astimezone(timezone.utc)

    batches: list[DateRange] = []
    while True:
        batch_end = cursor + step
        if batch_end >= end_utc:
            batches.append(DateRange(cursor.astimezone(tz) if batches else whole.start, whole.end))
            break
        batches.append(DateRange(cursor.astimezone(tz) if batches else whole.start, batch_end.astimezone(tz)))
        cursor = batch_end

    return batches
