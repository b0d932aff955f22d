from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    google_oauth_configured: bool
    calendar_auth_state: str
    timestamp: datetime
