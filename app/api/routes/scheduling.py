from datetime import date

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from app.api.responses import error_response
from app.core.config import get_settings
from app.schemas.calendar import BookingRequest, SlotsResponse
from app.services.calendar_errors import CalendarGatewayError
from app.services.calendar_gateway import create_calendar_gateway, parse_query_date
from app.services.scheduling_service import SchedulingService

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


def _build_service() -> SchedulingService:
    settings = get_settings()
    return SchedulingService(settings, create_calendar_gateway(settings))


@router.get("/slots", response_model=SlotsResponse)
def get_slots(
    date_param: str = Query(alias="date"),
    calendar_id: str | None = Query(default=None, alias="calendarId"),
    time_zone: str | None = Query(default=None, alias="timeZone"),
) -> SlotsResponse | JSONResponse:
    service = _build_service()
    try:
        day: date = parse_query_date(date_param)
        return service.list_slots(day, calendar_id=calendar_id, time_zone=time_zone)
    except CalendarGatewayError as exc:
        return error_response(exc)


@router.post("/bookings")
def create_booking(payload: BookingRequest) -> JSONResponse:
    service = _build_service()
    try:
        event = service.book(payload)
    except CalendarGatewayError as exc:
        return error_response(exc)
    return JSONResponse(content={"event": event})
