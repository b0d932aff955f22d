from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self, *, calendar_auth_state: str) -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            google_oauth_configured=self.settings.has_google_credentials(),
            calendar_auth_state=calendar_auth_state,
            timestamp=datetime.now(UTC),
        )
