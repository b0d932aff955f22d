from functools import lru_cache
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from app.services.calendar_errors import ConfigurationError

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "google_calendar_client_id",
        "google_calendar_client_secret",
        "google_calendar_redirect_uri",
        "google_calendar_refresh_token",
        "google_calendar_id",
        "google_calendar_api_timeout_seconds",
        "company_timezone",
        "business_start_hour",
        "business_end_hour",
        "slot_duration_minutes",
        "slot_fallback_enabled",
        "strict_startup_checks",
        "token_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_tokens_collection",
        "mongodb_connect_timeout_ms",
    },
)


class Settings(BaseSettings):
    app_name: str = "Appointment Booking API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]
    google_calendar_client_id: str = ""
    google_calendar_client_secret: str = ""
    google_calendar_redirect_uri: str = "http://localhost:8000/api/auth/google/callback"
    google_calendar_refresh_token: str = ""
    google_calendar_id: str = "primary"
    google_calendar_api_timeout_seconds: float = 10.0
    company_timezone: str = "UTC"
    business_start_hour: int = 9
    business_end_hour: int = 17
    slot_duration_minutes: int = 60
    slot_fallback_enabled: bool = False
    strict_startup_checks: bool = True
    token_store: str = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "appointment_booking"
    mongodb_tokens_collection: str = "oauth_tokens"
    mongodb_connect_timeout_ms: int = 2000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("token_store", mode="before")
    @classmethod
    def normalize_token_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("google_calendar_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_google_calendar_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("company_timezone", mode="before")
    @classmethod
    def validate_company_timezone(cls, value: str) -> str:
        cleaned = (value or "").strip() or "UTC"
        try:
            ZoneInfo(cleaned)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {cleaned}") from exc
        return cleaned

    @field_validator("business_start_hour", mode="after")
    @classmethod
    def validate_business_start_hour(cls, value: int) -> int:
        if value < 0 or value > 23:
            raise ValueError("BUSINESS_START_HOUR must be between 0 and 23.")
        return value

    @field_validator("business_end_hour", mode="after")
    @classmethod
    def validate_business_end_hour(cls, value: int) -> int:
        if value < 1 or value > 24:
            raise ValueError("BUSINESS_END_HOUR must be between 1 and 24.")
        return value

    @field_validator("slot_duration_minutes", mode="before")
    @classmethod
    def normalize_slot_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60
        return parsed_value

    @model_validator(mode="after")
    def validate_business_window(self) -> "Settings":
        if self.business_start_hour >= self.business_end_hour:
            raise ValueError("BUSINESS_START_HOUR must be earlier than BUSINESS_END_HOUR.")
        return self

    @property
    def company_zone(self) -> ZoneInfo:
        return ZoneInfo(self.company_timezone)

    def has_google_credentials(self) -> bool:
        return bool(
            self.google_calendar_client_id.strip()
            and self.google_calendar_client_secret.strip()
        )

    def require_google_credentials(self) -> None:
        missing = [
            env_var
            for env_var, value in (
                ("GOOGLE_CALENDAR_CLIENT_ID", self.google_calendar_client_id),
                ("GOOGLE_CALENDAR_CLIENT_SECRET", self.google_calendar_client_secret),
            )
            if not value.strip()
        ]
        if missing:
            raise ConfigurationError(
                f"Google Calendar OAuth is not configured. Missing: {', '.join(missing)}.",
                help="Define the missing variables in the deployment environment or .env file.",
            )


@lru_cache
def get_settings() -> Settings:
    return Settings()
