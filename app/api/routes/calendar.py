from typing import Any

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse

from app.api.responses import envelope_response
from app.core.config import get_settings
from app.services.calendar_gateway import create_calendar_gateway

router = APIRouter(tags=["calendar"])


@router.post("/google-calendar")
def google_calendar_action(payload: dict[str, Any] | None = Body(default=None)) -> JSONResponse:
    gateway = create_calendar_gateway(get_settings())
    return envelope_response(gateway.handle(payload or {}))
