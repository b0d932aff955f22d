import pytest
from pydantic import ValidationError as SettingsValidationError

from app.core.config import Settings
from app.services.calendar_errors import ConfigurationError


def test_allowed_origins_are_parsed_from_comma_separated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example.com, https://b.example.com,")

    settings = Settings()

    assert settings.allowed_origins == ["https://a.example.com", "https://b.example.com"]


def test_non_positive_timeout_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOOGLE_CALENDAR_API_TIMEOUT_SECONDS", "0")

    assert Settings().google_calendar_api_timeout_seconds == 10.0


def test_token_store_name_is_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKEN_STORE", "  MongoDB ")

    assert Settings().token_store == "mongodb"


def test_unknown_company_timezone_is_rejected() -> None:
    with pytest.raises(SettingsValidationError):
        Settings(company_timezone="Atlantis/Capital")


def test_require_google_credentials_names_missing_variables() -> None:
    settings = Settings(google_calendar_client_id="client-id", google_calendar_client_secret="")

    with pytest.raises(ConfigurationError, match="GOOGLE_CALENDAR_CLIENT_SECRET"):
        settings.require_google_credentials()
    assert settings.has_google_credentials() is False


def test_require_google_credentials_accepts_complete_configuration() -> None:
    settings = Settings(google_calendar_client_id="client-id", google_calendar_client_secret="secret")

    settings.require_google_credentials()
    assert settings.has_google_credentials() is True


@pytest.mark.parametrize(
    ("start_hour", "end_hour"),
    [(24, 24), (-1, 17), (9, 25), (17, 9), (12, 12)],
)
def test_invalid_business_hours_are_rejected(start_hour: int, end_hour: int) -> None:
    with pytest.raises(SettingsValidationError):
        Settings(business_start_hour=start_hour, business_end_hour=end_hour)


def test_business_day_may_run_until_midnight() -> None:
    settings = Settings(business_start_hour=0, business_end_hour=24)

    assert (settings.business_start_hour, settings.business_end_hour) == (0, 24)
