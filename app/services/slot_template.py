from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, tzinfo

DEFAULT_START_HOUR = 9
DEFAULT_END_HOUR = 17
DEFAULT_SLOT_MINUTES = 60


@dataclass(frozen=True)
class TimeSlot:
    id: str
    start: datetime
    end: datetime
    is_available: bool = True

    def with_availability(self, is_available: bool) -> TimeSlot:
        if is_available == self.is_available:
            return self
        return replace(self, is_available=is_available)

    @property
    def start_label(self) -> str:
        return f"{self.start.hour}:{self.start.minute:02d}"

    @property
    def end_label(self) -> str:
        # A slot ending at midnight still reads as the end of its own day.
        end_hour = self.end.hour if self.end.date() == self.start.date() else 24
        return f"{end_hour}:{self.end.minute:02d}"


def build_slot_template(
    day: date,
    *,
    timezone: tzinfo,
    start_hour: int = DEFAULT_START_HOUR,
    end_hour: int = DEFAULT_END_HOUR,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
) -> list[TimeSlot]:
    """Bookable slots of ``day`` between ``start_hour`` and ``end_hour`` in the company zone."""
    step = timedelta(minutes=slot_minutes)
    current = datetime.combine(day, time(hour=start_hour), tzinfo=timezone)
    if end_hour >= 24:
        window_end = datetime.combine(day + timedelta(days=1), time(), tzinfo=timezone)
    else:
        window_end = datetime.combine(day, time(hour=end_hour), tzinfo=timezone)

    slots: list[TimeSlot] = []
    while current + step <= window_end:
        slots.append(
            TimeSlot(
                id=_slot_id(day, current),
                start=current,
                end=current + step,
            ),
        )
        current += step
    return slots


def day_window(day: date, *, timezone: tzinfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(), tzinfo=timezone)
    end = datetime.combine(day + timedelta(days=1), time(), tzinfo=timezone)
    return start, end


def _slot_id(day: date, slot_start: datetime) -> str:
    if slot_start.minute:
        return f"{day.isoformat()}-{slot_start.hour}-{slot_start.minute:02d}"
    return f"{day.isoformat()}-{slot_start.hour}"
