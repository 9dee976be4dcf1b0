"""Half-open datetime interval arithmetic used by the availability resolver."""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Iterator


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime
    slot_minutes: int = 0

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end


def subtract(interval: Interval, start: datetime, end: datetime) -> list[Interval]:
    """Remove ``[start, end)`` from ``interval``, leaving zero, one or two pieces."""
    if not interval.overlaps(start, end):
        return [interval]

    pieces = []
    if interval.start < start:
        pieces.append(replace(interval, end=start))
    if end < interval.end:
        pieces.append(replace(interval, start=end))
    return pieces


def subtract_all(intervals: Iterable[Interval], start: datetime, end: datetime) -> list[Interval]:
    remaining = []
    for interval in intervals:
        remaining.extend(subtract(interval, start, end))
    return remaining


def merge(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and join touching or overlapping intervals that share a slot length."""
    ordered = sorted(intervals)
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.slot_minutes == last.slot_minutes and current.start <= last.end:
            if current.end > last.end:
                merged[-1] = replace(last, end=current.end)
        else:
            merged.append(current)
    return merged


def iterate_slots(interval: Interval) -> Iterator[Interval]:
    """Cut an interval into consecutive fixed-length slots; a short tail is dropped."""
    if interval.slot_minutes <= 0:
        return

    step = timedelta(minutes=interval.slot_minutes)
    current = interval.start
    while current + step <= interval.end:
        yield Interval(current, current + step, interval.slot_minutes)
        current += step
