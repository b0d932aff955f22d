import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, tzinfo
from typing import Any

from app.core.config import Settings
from app.schemas.calendar import BookingRequest, SlotsResponse, TimeSlotPayload
from app.services.calendar_errors import ValidationError
from app.services.calendar_gateway import CalendarGateway, slot_payload
from app.services.slot_template import TimeSlot
from app.services.timezone_formatter import resolve_timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingEvent:
    summary: str
    description: str
    attendee_emails: list[str]


def build_booking_event(booking: BookingRequest) -> BookingEvent:
    name = booking.name.strip()
    email = booking.email.strip().lower()
    if not name:
        raise ValidationError("name is required.")
    if not email or "@" not in email:
        raise ValidationError("A valid email is required.")

    lines = [f"Name: {name}", f"Email: {email}"]
    notes = (booking.notes or "").strip()
    if notes:
        lines.append(f"Notes: {notes}")
    return BookingEvent(
        summary=f"Appointment with {name}",
        description="\n".join(lines),
        attendee_emails=[email],
    )


class SchedulingService:
    def __init__(self, settings: Settings, gateway: CalendarGateway) -> None:
        self.settings = settings
        self.gateway = gateway

    def list_slots(
        self,
        day: date,
        *,
        calendar_id: str | None = None,
        time_zone: str | None = None,
    ) -> SlotsResponse:
        result = self.gateway.fetch_available_slots(day, calendar_id, time_zone)
        if result.ok:
            return SlotsResponse(
                date=day.isoformat(),
                calendar_id=result.calendar_id,
                slots=self._to_payloads(result.slots, result.display_timezone),
            )

        error = result.error
        if not self.settings.slot_fallback_enabled:
            raise error

        logger.warning(
            "Serving template slots instead of calendar data date=%s kind=%s error=%s",
            day.isoformat(),
            error.kind,
            error.message,
        )
        return SlotsResponse(
            date=day.isoformat(),
            calendar_id=result.calendar_id,
            slots=self._to_payloads(self.gateway.build_template(day), result.display_timezone),
            fallback=True,
            error=error.message,
        )

    def book(self, booking: BookingRequest) -> dict[str, Any]:
        event = build_booking_event(booking)
        # Times without an offset are wall-clock times in the visitor's zone.
        booking_zone = resolve_timezone(booking.time_zone, self.settings.company_zone)
        return self.gateway.book_appointment(
            calendar_id=booking.calendar_id or self.settings.google_calendar_id,
            start=self.gateway.parse_instant(booking.start_time, "startTime", booking_zone),
            end=self.gateway.parse_instant(booking.end_time, "endTime", booking_zone),
            summary=event.summary,
            description=event.description,
            attendee_emails=event.attendee_emails,
        )

    def _to_payloads(
        self,
        slots: Sequence[TimeSlot],
        display_timezone: tzinfo,
    ) -> list[TimeSlotPayload]:
        return [slot_payload(slot, display_timezone) for slot in slots]
