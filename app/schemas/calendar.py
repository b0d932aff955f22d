from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class GatewayAction(StrEnum):
    get_available_slots = "getAvailableSlots"
    book_appointment = "bookAppointment"
    get_auth_url = "getAuthUrl"
    get_token = "getToken"
    handle_auth_callback = "handleAuthCallback"
    revoke_access = "revokeAccess"


class GatewayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str | None = None
    date: str | None = None
    calendar_id: str | None = Field(default=None, alias="calendarId")
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    summary: str | None = None
    description: str | None = None
    code: str | None = None
    scopes: list[str] | None = None
    time_zone: str | None = Field(default=None, alias="timeZone")
    attendees: list[str] | None = None


class TimeSlotPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    is_available: bool = Field(alias="isAvailable")
    start: datetime
    end: datetime
    display_start: str = Field(alias="displayStart")
    display_end: str = Field(alias="displayEnd")
    time_zone: str = Field(alias="timeZone")


class SlotsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str
    calendar_id: str = Field(alias="calendarId")
    slots: list[TimeSlotPayload]
    fallback: bool = False
    error: str | None = None


class BookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    email: str
    notes: str | None = None
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    calendar_id: str | None = Field(default=None, alias="calendarId")
    time_zone: str | None = Field(default=None, alias="timeZone")


class AuthStatusResponse(BaseModel):
    state: str
    has_refresh_token: bool = Field(alias="hasRefreshToken")
    access_token_expires_at: datetime | None = Field(default=None, alias="accessTokenExpiresAt")

    model_config = ConfigDict(populate_by_name=True)
