import io
import json
from urllib import error
from urllib.parse import parse_qs

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services.calendar_gateway import clear_token_exchanger_cache
from app.services.token_store import clear_token_store_cache


class _MockResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._payload = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


def _http_error(url: str, status_code: int, payload: dict[str, object]) -> error.HTTPError:
    return error.HTTPError(
        url=url,
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


class _FakeGoogle:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.created_events: list[dict[str, object]] = []
        self.free_busy_error: error.HTTPError | None = None
        self.events_error: error.HTTPError | None = None
        self.busy = [{"start": "2024-06-10T14:00:00Z", "end": "2024-06-10T15:00:00Z"}]

    def urlopen(self, req, timeout=10):  # type: ignore[no-untyped-def]
        target = req.full_url
        if "oauth2.googleapis.com/token" in target:
            self.calls.append("token")
            form = parse_qs(req.data.decode("utf-8"))
            if form["grant_type"] == ["authorization_code"]:
                return _MockResponse(
                    {"access_token": "code-access", "refresh_token": "code-refresh", "expires_in": 3599},
                )
            return _MockResponse({"access_token": "fresh-access", "expires_in": 3599})
        if target.endswith("/freeBusy"):
            self.calls.append("freeBusy")
            if self.free_busy_error is not None:
                raise self.free_busy_error
            return _MockResponse({"calendars": {"primary": {"busy": self.busy}}})
        if "/events" in target:
            self.calls.append("events")
            if self.events_error is not None:
                raise self.events_error
            payload = json.loads(req.data.decode("utf-8"))
            self.created_events.append(payload)
            return _MockResponse({"id": "event-42", "status": "confirmed", **payload})
        raise AssertionError(f"Unexpected URL: {target}")


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKEN_STORE", "memory")
    monkeypatch.setenv("GOOGLE_CALENDAR_CLIENT_ID", "google-client-id")
    monkeypatch.setenv("GOOGLE_CALENDAR_CLIENT_SECRET", "google-client-secret")
    monkeypatch.setenv(
        "GOOGLE_CALENDAR_REDIRECT_URI",
        "http://localhost:8000/api/auth/google/callback",
    )
    monkeypatch.setenv("GOOGLE_CALENDAR_REFRESH_TOKEN", "operator-refresh")
    monkeypatch.setenv("GOOGLE_CALENDAR_ID", "primary")
    monkeypatch.setenv("COMPANY_TIMEZONE", "UTC")
    monkeypatch.setenv("SLOT_FALLBACK_ENABLED", "false")

    get_settings.cache_clear()
    clear_token_store_cache()
    clear_token_exchanger_cache()
    yield
    get_settings.cache_clear()
    clear_token_store_cache()
    clear_token_exchanger_cache()


@pytest.fixture
def fake_google(monkeypatch: pytest.MonkeyPatch) -> _FakeGoogle:
    fake = _FakeGoogle()
    monkeypatch.setattr("app.services.google_calendar_client.request.urlopen", fake.urlopen)
    monkeypatch.setattr("app.services.oauth_token_exchanger.request.urlopen", fake.urlopen)
    return fake


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_gateway_action_returns_slots_with_busy_hour_unavailable(
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    response = client.post(
        "/api/google-calendar",
        json={"action": "getAvailableSlots", "date": "2024-06-10", "calendarId": "primary"},
    )

    assert response.status_code == 200
    slots = response.json()["slots"]
    assert len(slots) == 8
    assert [slot["isAvailable"] for slot in slots] == [True] * 5 + [False] + [True] * 2
    assert slots[5]["id"] == "2024-06-10-14"
    assert fake_google.calls == ["token", "freeBusy"]


def test_access_token_is_reused_across_requests(
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    payload = {"action": "getAvailableSlots", "date": "2024-06-10"}

    assert client.post("/api/google-calendar", json=payload).status_code == 200
    assert client.post("/api/v1/google-calendar", json=payload).status_code == 200
    assert fake_google.calls == ["token", "freeBusy", "freeBusy"]


def test_gateway_action_validation_error_maps_to_400(client: TestClient) -> None:
    response = client.post("/api/google-calendar", json={"action": "getAvailableSlots"})

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"


def test_gateway_action_upstream_error_maps_to_502(
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    fake_google.free_busy_error = _http_error(
        "https://www.googleapis.com/calendar/v3/freeBusy",
        403,
        {"error": {"message": "Quota exceeded"}},
    )

    response = client.post(
        "/api/google-calendar",
        json={"action": "getAvailableSlots", "date": "2024-06-10"},
    )

    assert response.status_code == 502
    assert response.json() == {
        "error": "Google Calendar API HTTP 403: Quota exceeded",
        "kind": "upstream",
    }


def test_scheduling_slots_endpoint_reports_genuine_data(
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    response = client.get(
        "/api/scheduling/slots",
        params={"date": "2024-06-10", "timeZone": "Europe/Madrid"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["fallback"] is False
    assert data["error"] is None
    assert data["calendarId"] == "primary"
    assert data["slots"][0]["displayStart"] == "11:00 AM"
    assert data["slots"][0]["timeZone"] == "Europe/Madrid"
    assert data["slots"][5]["isAvailable"] is False


def test_scheduling_slots_endpoint_flags_template_fallback(
    monkeypatch: pytest.MonkeyPatch,
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    monkeypatch.setenv("SLOT_FALLBACK_ENABLED", "true")
    get_settings.cache_clear()
    fake_google.free_busy_error = _http_error(
        "https://www.googleapis.com/calendar/v3/freeBusy",
        500,
        {"error": {"message": "Backend Error"}},
    )

    response = client.get("/api/scheduling/slots", params={"date": "2024-06-10"})

    assert response.status_code == 200
    data = response.json()
    assert data["fallback"] is True
    assert "Backend Error" in data["error"]
    assert len(data["slots"]) == 8


def test_scheduling_slots_endpoint_without_fallback_returns_error(
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    fake_google.free_busy_error = _http_error(
        "https://www.googleapis.com/calendar/v3/freeBusy",
        500,
        {"error": {"message": "Backend Error"}},
    )

    response = client.get("/api/scheduling/slots", params={"date": "2024-06-10"})

    assert response.status_code == 502
    assert response.json()["kind"] == "upstream"


def test_scheduling_slots_endpoint_rejects_unknown_timezone(client: TestClient) -> None:
    response = client.get(
        "/api/scheduling/slots",
        params={"date": "2024-06-10", "timeZone": "Nowhere/Special"},
    )

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"


def test_booking_endpoint_creates_event_with_contact_details(
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    response = client.post(
        "/api/scheduling/bookings",
        json={
            "name": "Ada Lovelace",
            "email": "Ada@Example.com",
            "notes": "Pricing questions",
            "startTime": "2024-06-10T14:00:00Z",
            "endTime": "2024-06-10T15:00:00Z",
        },
    )

    assert response.status_code == 200
    assert response.json()["event"]["id"] == "event-42"
    created = fake_google.created_events[0]
    assert created["summary"] == "Appointment with Ada Lovelace"
    assert "Email: ada@example.com" in str(created["description"])
    assert "Notes: Pricing questions" in str(created["description"])
    assert created["attendees"] == [{"email": "ada@example.com"}]


def test_booking_endpoint_reports_upstream_failure_truthfully(
    client: TestClient,
    fake_google: _FakeGoogle,
) -> None:
    fake_google.events_error = _http_error(
        "https://www.googleapis.com/calendar/v3/calendars/primary/events",
        409,
        {"error": {"message": "The requested identifier already exists."}},
    )

    response = client.post(
        "/api/scheduling/bookings",
        json={
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "startTime": "2024-06-10T14:00:00Z",
            "endTime": "2024-06-10T15:00:00Z",
        },
    )

    assert response.status_code == 502
    assert "already exists" in response.json()["error"]
    assert fake_google.calls.count("events") == 1


def test_booking_endpoint_rejects_invalid_email(client: TestClient, fake_google: _FakeGoogle) -> None:
    response = client.post(
        "/api/scheduling/bookings",
        json={
            "name": "Ada Lovelace",
            "email": "not-an-email",
            "startTime": "2024-06-10T14:00:00Z",
            "endTime": "2024-06-10T15:00:00Z",
        },
    )

    assert response.status_code == 400
    assert fake_google.calls == []


def test_missing_client_credentials_maps_to_503(
    monkeypatch: pytest.MonkeyPatch,
    client: TestClient,
) -> None:
    monkeypatch.setenv("GOOGLE_CALENDAR_CLIENT_ID", "")
    get_settings.cache_clear()

    response = client.post("/api/google-calendar", json={"action": "getAuthUrl"})

    assert response.status_code == 503
    assert response.json()["kind"] == "configuration"
