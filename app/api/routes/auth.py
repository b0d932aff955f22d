import logging

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from app.api.responses import envelope_response, error_response
from app.core.config import get_settings
from app.schemas.calendar import AuthStatusResponse
from app.services.calendar_errors import AuthExchangeError, CalendarGatewayError
from app.services.calendar_gateway import create_calendar_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/google", tags=["auth"])


@router.get("/url")
def get_google_authorization_url(scope: list[str] | None = Query(default=None)) -> JSONResponse:
    gateway = create_calendar_gateway(get_settings())
    return envelope_response(gateway.handle({"action": "getAuthUrl", "scopes": scope}))


@router.get("/callback")
def finish_google_authorization(
    code: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> JSONResponse:
    if error:
        logger.warning("Google authorization was denied: %s", error)
        return error_response(AuthExchangeError(f"Google authorization failed: {error}"))
    gateway = create_calendar_gateway(get_settings())
    return envelope_response(gateway.handle({"action": "handleAuthCallback", "code": code}))


@router.get("/status", response_model=AuthStatusResponse)
def get_google_authorization_status() -> AuthStatusResponse:
    settings = get_settings()
    gateway = create_calendar_gateway(settings)
    token_set = gateway.token_store.load()
    return AuthStatusResponse(
        state=gateway.auth_state().value,
        has_refresh_token=bool(
            (token_set and token_set.refresh_token)
            or settings.google_calendar_refresh_token.strip()
        ),
        access_token_expires_at=token_set.expires_at if token_set else None,
    )


@router.post("/revoke")
def revoke_google_authorization() -> JSONResponse:
    gateway = create_calendar_gateway(get_settings())
    try:
        gateway.revoke_access()
    except CalendarGatewayError as exc:
        return error_response(exc)
    return JSONResponse(status_code=status.HTTP_200_OK, content={"revoked": True})
