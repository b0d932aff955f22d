from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from app.services.calendar_errors import CalendarGatewayError

_STATUS_BY_ERROR_KIND = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "auth_exchange": status.HTTP_400_BAD_REQUEST,
    "configuration": status.HTTP_503_SERVICE_UNAVAILABLE,
    "upstream": status.HTTP_502_BAD_GATEWAY,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for_envelope(envelope: dict[str, Any]) -> int:
    if "error" not in envelope:
        return status.HTTP_200_OK
    return _STATUS_BY_ERROR_KIND.get(
        str(envelope.get("kind", "")),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def envelope_response(envelope: dict[str, Any]) -> JSONResponse:
    return JSONResponse(content=envelope, status_code=status_for_envelope(envelope))


def error_response(exc: CalendarGatewayError) -> JSONResponse:
    return envelope_response(exc.to_envelope())
