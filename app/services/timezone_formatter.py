from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.services.calendar_errors import ValidationError


@dataclass(frozen=True)
class DisplayTime:
    label: str
    timezone_name: str

    def __str__(self) -> str:
        return f"{self.label} ({self.timezone_name})"


def format_time_12h(hour: int, minute: int) -> str:
    normalized_hour = hour % 24
    suffix = "AM" if normalized_hour < 12 else "PM"
    display_hour = normalized_hour % 12 or 12
    return f"{display_hour}:{minute:02d} {suffix}"


def resolve_timezone(timezone_name: str | None, default: tzinfo) -> tzinfo:
    cleaned = (timezone_name or "").strip()
    if not cleaned:
        return default
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone: {cleaned}") from exc


def convert_wall_time(
    day: date,
    hour: int,
    minute: int,
    *,
    source: tzinfo,
    target: tzinfo,
) -> datetime:
    source_value = datetime.combine(day, time(hour=hour % 24, minute=minute), tzinfo=source)
    return source_value.astimezone(target)


def format_for_display(instant: datetime, target: tzinfo) -> DisplayTime:
    if instant.tzinfo is None:
        raise ValidationError("Cannot format a time without timezone information.")
    local_value = instant.astimezone(target)
    return DisplayTime(
        label=format_time_12h(local_value.hour, local_value.minute),
        timezone_name=timezone_name(target, local_value),
    )


def timezone_name(zone: tzinfo, reference: datetime | None = None) -> str:
    key = getattr(zone, "key", None)
    if isinstance(key, str) and key:
        return key
    return zone.tzname(reference) or "UTC"
