"""Half-open time interval helpers.

All intervals are ``[start, end)``: the end instant is excluded, so two
intervals that merely touch (``a.end == b.start``) do not overlap.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from clinicflow.errors import ValidationError


@dataclass(frozen=True, order=True)
class TimeInterval:
    """A non-empty half-open interval of aware datetimes."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("Timestamps must carry a timezone offset")
        if self.start >= self.end:
            raise ValidationError(
                f"Interval start {self.start.isoformat()} must be before end {self.end.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeInterval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def contains_instant(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def intersection(self, other: "TimeInterval") -> "TimeInterval | None":
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start >= end:
            return None
        return TimeInterval(start, end)

    def expand(self, before: timedelta, after: timedelta) -> "TimeInterval":
        """Return the interval widened by ``before`` and ``after``."""
        return TimeInterval(self.start - before, self.end + after)

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def merge(intervals: Iterable[TimeInterval]) -> list[TimeInterval]:
    """Merge overlapping or touching intervals into a sorted disjoint list."""
    merged: list[TimeInterval] = []
    for interval in sorted(intervals):
        if merged and interval.start <= merged[-1].end:
            if interval.end > merged[-1].end:
                merged[-1] = TimeInterval(merged[-1].start, interval.end)
            continue
        merged.append(interval)
    return merged


def subtract(windows: Iterable[TimeInterval], blocks: Iterable[TimeInterval]) -> list[TimeInterval]:
    """Remove every block from the windows.

    A block that only partially covers a window truncates it (or splits it in
    two) rather than removing the whole window.
    """
    blocks = merge(blocks)
    result: list[TimeInterval] = []
    for window in merge(windows):
        cursor = window.start
        for block in blocks:
            if block.end <= cursor or block.start >= window.end:
                continue
            if block.start > cursor:
                result.append(TimeInterval(cursor, block.start))
            cursor = max(cursor, block.end)
            if cursor >= window.end:
                break
        if cursor < window.end:
            result.append(TimeInterval(cursor, window.end))
    return result


def intersect(left: Iterable[TimeInterval], right: Iterable[TimeInterval]) -> list[TimeInterval]:
    """Intersect two interval sets."""
    left, right = merge(left), merge(right)
    result: list[TimeInterval] = []
    i = j = 0
    while i < len(left) and j < len(right):
        overlap = left[i].intersection(right[j])
        if overlap:
            result.append(overlap)
        if left[i].end <= right[j].end:
            i += 1
        else:
            j += 1
    return result


def local_interval(day: date, start: time, end: time, tz: tzinfo) -> TimeInterval:
    """Build an aware interval from clinic-local wall-clock times on ``day``."""
    return TimeInterval(datetime.combine(day, start, tzinfo=tz), datetime.combine(day, end, tzinfo=tz))


def day_bounds(day: date, tz: tzinfo) -> TimeInterval:
    """The whole local day ``[00:00, next day 00:00)``."""
    return TimeInterval(
        datetime.combine(day, time.min, tzinfo=tz),
        datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz),
    )
