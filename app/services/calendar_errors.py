from __future__ import annotations

from typing import Any


class CalendarGatewayError(Exception):
    kind = "error"

    def __init__(self, message: str, *, help: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.help = help

    def to_envelope(self) -> dict[str, Any]:
        envelope: dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.help:
            envelope["help"] = self.help
        return envelope


class ConfigurationError(CalendarGatewayError):
    kind = "configuration"


class AuthExchangeError(CalendarGatewayError):
    kind = "auth_exchange"


class ValidationError(CalendarGatewayError):
    kind = "validation"


class UpstreamAPIError(CalendarGatewayError):
    kind = "upstream"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        help: str | None = None,
    ) -> None:
        super().__init__(message, help=help)
        self.status_code = status_code


class UpstreamTimeoutError(UpstreamAPIError):
    kind = "timeout"
