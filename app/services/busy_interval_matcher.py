from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.services.calendar_errors import UpstreamAPIError
from app.services.slot_template import TimeSlot


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        # Half-open [start, end): touching boundaries do not overlap.
        if self.end <= self.start:
            return False
        return start < self.end and self.start < end


def parse_busy_intervals(raw_intervals: Iterable[Any]) -> list[BusyInterval]:
    intervals: list[BusyInterval] = []
    for raw_interval in raw_intervals:
        if not isinstance(raw_interval, dict):
            raise UpstreamAPIError("Free/busy response contains a malformed busy entry.")
        start = _parse_instant(raw_interval.get("start"))
        end = _parse_instant(raw_interval.get("end"))
        if end < start:
            raise UpstreamAPIError("Free/busy response contains a busy entry that ends before it starts.")
        intervals.append(BusyInterval(start=start, end=end))
    return intervals


def is_slot_busy(slot: TimeSlot, busy_intervals: Iterable[BusyInterval]) -> bool:
    return any(interval.overlaps(slot.start, slot.end) for interval in busy_intervals)


def availability_by_slot_id(
    slots: Sequence[TimeSlot],
    busy_intervals: Sequence[BusyInterval],
) -> dict[str, bool]:
    return {slot.id: not is_slot_busy(slot, busy_intervals) for slot in slots}


def mark_availability(
    slots: Sequence[TimeSlot],
    busy_intervals: Sequence[BusyInterval],
) -> list[TimeSlot]:
    """Return copies of ``slots`` with availability recomputed against ``busy_intervals``.

    Busy intervals with zero length never block a slot.
    """
    availability = availability_by_slot_id(slots, busy_intervals)
    return [slot.with_availability(availability[slot.id]) for slot in slots]


def _parse_instant(raw_value: Any) -> datetime:
    if not isinstance(raw_value, str) or not raw_value.strip():
        raise UpstreamAPIError("Free/busy response contains a busy entry without start or end.")
    normalized = raw_value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise UpstreamAPIError(
            f"Free/busy response contains an invalid timestamp: {raw_value}",
        ) from exc
    if parsed.tzinfo is None:
        raise UpstreamAPIError(
            f"Free/busy response contains a timestamp without offset: {raw_value}",
        )
    return parsed
