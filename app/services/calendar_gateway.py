from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings
from app.schemas.calendar import GatewayAction, GatewayRequest, TimeSlotPayload
from app.services.busy_interval_matcher import mark_availability
from app.services.calendar_errors import (
    CalendarGatewayError,
    ConfigurationError,
    UpstreamAPIError,
    ValidationError,
)
from app.services.google_calendar_client import GoogleCalendarClient
from app.services.oauth_token_exchanger import AuthState, AuthTokenSet, OAuthTokenExchanger
from app.services.slot_template import TimeSlot, build_slot_template, day_window
from app.services.timezone_formatter import format_for_display, resolve_timezone, timezone_name
from app.services.token_store import TokenStore, create_token_store

logger = logging.getLogger(__name__)

T = TypeVar("T")
ClientFactory = Callable[[str], GoogleCalendarClient]

_REFRESH_TOKEN_HELP = (
    "Store this refresh token as GOOGLE_CALENDAR_REFRESH_TOKEN in the deployment secrets. "
    "Google will not return it again unless access is revoked and granted anew."
)
_NOT_AUTHENTICATED_HELP = (
    "Run the Google authorization flow (getAuthUrl, then handleAuthCallback) or define "
    "GOOGLE_CALENDAR_REFRESH_TOKEN."
)


@dataclass(frozen=True)
class SlotQueryResult:
    day: date
    calendar_id: str
    display_timezone: tzinfo
    slots: list[TimeSlot] = field(default_factory=list)
    error: CalendarGatewayError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CalendarGateway:
    def __init__(
        self,
        settings: Settings,
        *,
        token_store: TokenStore,
        exchanger: OAuthTokenExchanger | None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.settings = settings
        self.token_store = token_store
        self.exchanger = exchanger
        self.client_factory = client_factory or self._default_client_factory

    def handle(self, payload: GatewayRequest | Mapping[str, Any]) -> dict[str, Any]:
        """Dispatch one action envelope and return ``{data...}`` or ``{error, help?, kind}``."""
        action: Any = None
        try:
            request = _coerce_request(payload)
            action = request.action
            return self._dispatch(request)
        except CalendarGatewayError as exc:
            logger.warning(
                "Calendar gateway action failed action=%s kind=%s error=%s",
                action,
                exc.kind,
                exc.message,
            )
            return exc.to_envelope()

    def _dispatch(self, request: GatewayRequest) -> dict[str, Any]:
        action = (request.action or "").strip()
        if not action:
            raise ValidationError("No action specified.")

        if action == GatewayAction.get_available_slots:
            day = parse_query_date(request.date)
            calendar_id = self._resolve_calendar_id(request.calendar_id)
            display_timezone = resolve_timezone(request.time_zone, self.settings.company_zone)
            slots = self.get_available_slots(day, calendar_id)
            return {"slots": serialize_slots(slots, display_timezone)}

        if action == GatewayAction.book_appointment:
            booking_zone = resolve_timezone(request.time_zone, self.settings.company_zone)
            start = self.parse_instant(request.start_time, "startTime", booking_zone)
            end = self.parse_instant(request.end_time, "endTime", booking_zone)
            summary = (request.summary or "").strip()
            if not summary:
                raise ValidationError("summary is required.")
            event = self.book_appointment(
                calendar_id=self._resolve_calendar_id(request.calendar_id),
                start=start,
                end=end,
                summary=summary,
                description=request.description or "",
                attendee_emails=request.attendees,
            )
            return {"event": event}

        if action == GatewayAction.get_auth_url:
            return {"url": self.get_auth_url(request.scopes)}

        if action in (GatewayAction.get_token, GatewayAction.handle_auth_callback):
            token_set = self.handle_auth_callback(request.code or "")
            return {
                "tokens": token_set.to_public_dict(),
                "refreshToken": token_set.refresh_token,
                "help": _REFRESH_TOKEN_HELP,
            }

        if action == GatewayAction.revoke_access:
            self.revoke_access()
            return {"revoked": True}

        raise ValidationError(f"Unknown action: {action}")

    def fetch_available_slots(
        self,
        day: date,
        calendar_id: str | None = None,
        time_zone: str | None = None,
    ) -> SlotQueryResult:
        display_timezone = resolve_timezone(time_zone, self.settings.company_zone)
        resolved_calendar_id = self._resolve_calendar_id(calendar_id)
        try:
            slots = self.get_available_slots(day, resolved_calendar_id)
        except CalendarGatewayError as exc:
            return SlotQueryResult(
                day=day,
                calendar_id=resolved_calendar_id,
                display_timezone=display_timezone,
                error=exc,
            )
        return SlotQueryResult(
            day=day,
            calendar_id=resolved_calendar_id,
            display_timezone=display_timezone,
            slots=slots,
        )

    def get_available_slots(self, day: date, calendar_id: str) -> list[TimeSlot]:
        template = self.build_template(day)
        time_min, time_max = day_window(day, timezone=self.settings.company_zone)
        busy_intervals = self._call_calendar(
            lambda client: client.query_free_busy(
                calendar_id=calendar_id,
                time_min=time_min,
                time_max=time_max,
            ),
        )
        return mark_availability(template, busy_intervals)

    def build_template(self, day: date) -> list[TimeSlot]:
        return build_slot_template(
            day,
            timezone=self.settings.company_zone,
            start_hour=self.settings.business_start_hour,
            end_hour=self.settings.business_end_hour,
            slot_minutes=self.settings.slot_duration_minutes,
        )

    def book_appointment(
        self,
        *,
        calendar_id: str,
        start: datetime,
        end: datetime,
        summary: str,
        description: str = "",
        attendee_emails: list[str] | None = None,
    ) -> dict[str, Any]:
        if end <= start:
            raise ValidationError("endTime must be after startTime.")
        created_event = self._call_calendar(
            lambda client: client.create_event(
                calendar_id=calendar_id,
                start=start,
                end=end,
                summary=summary,
                description=description,
                attendee_emails=attendee_emails,
            ),
        )
        logger.info("Appointment booked calendar_id=%s event_id=%s", calendar_id, created_event.get("id"))
        return {
            key: created_event[key]
            for key in ("id", "status", "htmlLink", "summary", "start", "end")
            if key in created_event
        }

    def get_auth_url(self, scopes: Sequence[str] | None = None) -> str:
        return self._require_exchanger().build_authorization_url(scopes)

    def handle_auth_callback(self, code: str) -> AuthTokenSet:
        exchanger = self._require_exchanger()
        logger.info("Google authorization state=%s", AuthState.AUTHORIZING)
        token_set = exchanger.exchange_code(code)
        self.token_store.save(token_set)
        return token_set

    def revoke_access(self) -> None:
        token_set = self.token_store.load()
        try:
            if token_set is not None:
                self._require_exchanger().revoke(token_set)
        finally:
            # The local credential is dropped even when Google rejects the revoke.
            self.token_store.clear()

    def auth_state(self) -> AuthState:
        token_set = self._load_token_set()
        if token_set is None:
            return AuthState.UNAUTHENTICATED
        return token_set.state

    def _call_calendar(self, operation: Callable[[GoogleCalendarClient], T]) -> T:
        token_set = self._authenticated_token_set()
        try:
            return operation(self.client_factory(token_set.access_token))
        except UpstreamAPIError as exc:
            if exc.status_code != 401:
                raise
        # The rejected request created nothing, so resending after a refresh is safe.
        token_set = self._refresh(token_set)
        return operation(self.client_factory(token_set.access_token))

    def _authenticated_token_set(self) -> AuthTokenSet:
        token_set = self._load_token_set()
        if token_set is None or token_set.state != AuthState.AUTHENTICATED:
            raise ConfigurationError(
                "Google Calendar is not connected.",
                help=_NOT_AUTHENTICATED_HELP,
            )
        if token_set.is_expired():
            token_set = self._refresh(token_set)
        return token_set

    def _refresh(self, token_set: AuthTokenSet) -> AuthTokenSet:
        if not token_set.refresh_token:
            raise ConfigurationError(
                "Google access token expired and no refresh token is available.",
                help=_NOT_AUTHENTICATED_HELP,
            )
        refreshed = self._require_exchanger().refresh(token_set)
        self.token_store.save(refreshed)
        return refreshed

    def _load_token_set(self) -> AuthTokenSet | None:
        token_set = self.token_store.load()
        if token_set is not None:
            return token_set
        configured_refresh_token = self.settings.google_calendar_refresh_token.strip()
        if not configured_refresh_token:
            return None
        return AuthTokenSet(access_token="", refresh_token=configured_refresh_token)

    def _require_exchanger(self) -> OAuthTokenExchanger:
        if self.exchanger is None:
            self.settings.require_google_credentials()
            raise ConfigurationError("Google OAuth client is not available.")
        return self.exchanger

    def _resolve_calendar_id(self, calendar_id: str | None) -> str:
        cleaned = (calendar_id or "").strip()
        return cleaned or self.settings.google_calendar_id

    def parse_instant(
        self,
        raw_value: str | None,
        field_name: str,
        zone: tzinfo | None = None,
    ) -> datetime:
        cleaned = (raw_value or "").strip()
        if not cleaned:
            raise ValidationError(f"{field_name} is required.")
        try:
            parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"{field_name} is not a valid ISO-8601 datetime.") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=zone or self.settings.company_zone)
        return parsed

    def _default_client_factory(self, access_token: str) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            access_token=access_token,
            timeout_seconds=self.settings.google_calendar_api_timeout_seconds,
        )


def _coerce_request(payload: GatewayRequest | Mapping[str, Any]) -> GatewayRequest:
    if isinstance(payload, GatewayRequest):
        return payload
    try:
        return GatewayRequest.model_validate(payload)
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(part) for part in item["loc"]) for item in exc.errors()})
        raise ValidationError(f"Invalid request fields: {', '.join(fields)}") from exc


def parse_query_date(raw_value: str | None) -> date:
    cleaned = (raw_value or "").strip()
    if not cleaned:
        raise ValidationError("date is required.")
    try:
        return date.fromisoformat(cleaned)
    except ValueError:
        pass
    try:
        # Only the calendar date matters; the offset of a full timestamp is ignored.
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValidationError("date is not a valid ISO-8601 date.") from exc


def serialize_slots(slots: Sequence[TimeSlot], display_timezone: tzinfo) -> list[dict[str, Any]]:
    return [slot_payload(slot, display_timezone).model_dump(by_alias=True, mode="json") for slot in slots]


def slot_payload(slot: TimeSlot, display_timezone: tzinfo) -> TimeSlotPayload:
    display_start = format_for_display(slot.start, display_timezone)
    display_end = format_for_display(slot.end, display_timezone)
    return TimeSlotPayload(
        id=slot.id,
        start_time=slot.start_label,
        end_time=slot.end_label,
        is_available=slot.is_available,
        start=slot.start,
        end=slot.end,
        display_start=display_start.label,
        display_end=display_end.label,
        time_zone=timezone_name(display_timezone, slot.start),
    )


def create_calendar_gateway(settings: Settings) -> CalendarGateway:
    exchanger: OAuthTokenExchanger | None = None
    if settings.has_google_credentials():
        exchanger = get_token_exchanger(
            client_id=settings.google_calendar_client_id,
            client_secret=settings.google_calendar_client_secret,
            redirect_uri=settings.google_calendar_redirect_uri,
            timeout_seconds=settings.google_calendar_api_timeout_seconds,
        )
    return CalendarGateway(
        settings,
        token_store=create_token_store(settings),
        exchanger=exchanger,
    )


@lru_cache
def get_token_exchanger(
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    timeout_seconds: float,
) -> OAuthTokenExchanger:
    return OAuthTokenExchanger(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        timeout_seconds=timeout_seconds,
    )


def clear_token_exchanger_cache() -> None:
    get_token_exchanger.cache_clear()
