import json
import logging
from datetime import datetime
from typing import Any
from urllib import error, parse, request

from app.services.busy_interval_matcher import BusyInterval, parse_busy_intervals
from app.services.calendar_errors import UpstreamAPIError, UpstreamTimeoutError, ValidationError

logger = logging.getLogger(__name__)


class GoogleCalendarClient:
    def __init__(
        self,
        *,
        access_token: str,
        timeout_seconds: float = 10.0,
        api_base_url: str = "https://www.googleapis.com/calendar/v3",
    ) -> None:
        self.access_token = access_token
        self.timeout_seconds = timeout_seconds
        self.api_base_url = api_base_url.rstrip("/")

    def query_free_busy(
        self,
        *,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        payload = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "items": [{"id": calendar_id}],
        }
        response_payload = self._request_json("POST", "/freeBusy", payload=payload)
        calendars = response_payload.get("calendars")
        if not isinstance(calendars, dict):
            raise UpstreamAPIError("Google Calendar free/busy response missing calendars.")
        calendar_payload = calendars.get(calendar_id)
        if not isinstance(calendar_payload, dict):
            return []

        errors = calendar_payload.get("errors")
        if isinstance(errors, list) and errors:
            reasons = [
                str(raw_error.get("reason", "unknown"))
                for raw_error in errors
                if isinstance(raw_error, dict)
            ]
            raise UpstreamAPIError(
                f"Google Calendar free/busy failed for {calendar_id}: {', '.join(reasons) or 'unknown'}",
            )

        busy = calendar_payload.get("busy")
        if not isinstance(busy, list):
            return []
        return parse_busy_intervals(busy)

    def create_event(
        self,
        *,
        calendar_id: str,
        start: datetime,
        end: datetime,
        summary: str,
        description: str = "",
        attendee_emails: list[str] | None = None,
    ) -> dict[str, Any]:
        if start.tzinfo is None or end.tzinfo is None:
            raise ValidationError("Event start and end must include a timezone offset.")
        payload: dict[str, Any] = {
            "summary": self._truncate(summary, 500),
            "description": self._truncate(description, 8000),
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
        }
        normalized_attendees = self._normalize_attendee_emails(attendee_emails)
        endpoint_path = f"/calendars/{parse.quote(calendar_id, safe='')}/events"
        if normalized_attendees:
            payload["attendees"] = [{"email": email} for email in normalized_attendees]
            endpoint_path = f"{endpoint_path}?{parse.urlencode({'sendUpdates': 'all'})}"

        response_payload = self._request_json("POST", endpoint_path, payload=payload)
        event_id = response_payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise UpstreamAPIError("Google Calendar create event response missing id.")
        return response_payload

    def _normalize_attendee_emails(self, attendee_emails: list[str] | None) -> list[str]:
        if not attendee_emails:
            return []
        normalized: list[str] = []
        seen: set[str] = set()
        for raw_email in attendee_emails:
            cleaned = raw_email.strip().lower()
            if not cleaned or "@" not in cleaned:
                continue
            if cleaned in seen:
                continue
            seen.add(cleaned)
            normalized.append(cleaned)
        return normalized

    def _request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        target = f"{self.api_base_url}{path}"
        raw_payload: bytes | None = None
        if payload is not None:
            raw_payload = json.dumps(payload).encode("utf-8")

        req = request.Request(
            target,
            data=raw_payload,
            method=method,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise UpstreamTimeoutError("Google Calendar API request timed out.") from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            message = self._extract_error_message(body)
            logger.warning("Google Calendar API %s %s failed: status=%s", method, path, exc.code)
            raise UpstreamAPIError(
                f"Google Calendar API HTTP {exc.code}: {message}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise UpstreamTimeoutError("Google Calendar API request timed out.") from exc
            raise UpstreamAPIError(
                f"Google Calendar API connection error: {exc.reason}",
            ) from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise UpstreamAPIError("Google Calendar API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise UpstreamAPIError("Google Calendar API response is not a JSON object.")
        return parsed_body

    def _extract_error_message(self, body: str) -> str:
        if not body:
            return "empty response body"
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return body
        if isinstance(parsed, dict):
            raw_error = parsed.get("error")
            if isinstance(raw_error, dict):
                message = raw_error.get("message")
                if isinstance(message, str) and message.strip():
                    return message.strip()
        return body

    def _truncate(self, value: str, limit: int) -> str:
        if len(value) <= limit:
            return value
        return value[: limit - 3] + "..."
