from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any
from urllib import error, parse, request

from app.services.calendar_errors import (
    AuthExchangeError,
    ConfigurationError,
    UpstreamAPIError,
    UpstreamTimeoutError,
    ValidationError,
)

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_OAUTH_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_PERMISSIONS_URL = "https://myaccount.google.com/permissions"
MAX_TRACKED_CODES = 256
MAX_TRACKED_CREDENTIALS = 64
DEFAULT_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
)
_EXPIRY_LEEWAY = timedelta(seconds=60)
_MISSING_REFRESH_TOKEN_HELP = (
    "Google only returns a refresh token on the first consent. Revoke this app's access at "
    f"{GOOGLE_PERMISSIONS_URL} and run the authorization flow again."
)


class AuthState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthTokenSet:
    access_token: str
    refresh_token: str
    expires_at: datetime | None = None
    scope: str = ""
    token_type: str = "Bearer"

    def is_expired(self, now: datetime | None = None, leeway: timedelta = _EXPIRY_LEEWAY) -> bool:
        if not self.access_token:
            return True
        if self.expires_at is None:
            return False
        current = now or datetime.now(UTC)
        return current + leeway >= self.expires_at

    @property
    def state(self) -> AuthState:
        if self.refresh_token or self.access_token:
            return AuthState.AUTHENTICATED
        return AuthState.UNAUTHENTICATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "scope": self.scope,
            "token_type": self.token_type,
        }

    def to_public_dict(self) -> dict[str, Any]:
        payload = self.to_dict()
        payload.pop("refresh_token")
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AuthTokenSet:
        raw_expires_at = payload.get("expires_at")
        expires_at: datetime | None = None
        if isinstance(raw_expires_at, datetime):
            expires_at = raw_expires_at
        elif isinstance(raw_expires_at, str) and raw_expires_at.strip():
            expires_at = datetime.fromisoformat(raw_expires_at.strip())
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return cls(
            access_token=str(payload.get("access_token") or ""),
            refresh_token=str(payload.get("refresh_token") or ""),
            expires_at=expires_at,
            scope=str(payload.get("scope") or ""),
            token_type=str(payload.get("token_type") or "Bearer"),
        )


class OAuthTokenExchanger:
    """Authorization-code and refresh-token grants against Google's OAuth endpoints."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout_seconds: float = 10.0,
        authorize_url: str = GOOGLE_OAUTH_AUTHORIZE_URL,
        token_url: str = GOOGLE_OAUTH_TOKEN_URL,
        revoke_url: str = GOOGLE_OAUTH_REVOKE_URL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not client_id.strip() or not client_secret.strip():
            raise ConfigurationError(
                "Google OAuth client credentials are not configured.",
                help="Define GOOGLE_CALENDAR_CLIENT_ID and GOOGLE_CALENDAR_CLIENT_SECRET.",
            )
        self.client_id = client_id.strip()
        self.client_secret = client_secret.strip()
        self.redirect_uri = redirect_uri.strip()
        self.timeout_seconds = timeout_seconds
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.revoke_url = revoke_url
        self._clock = clock or (lambda: datetime.now(UTC))
        self._redeemed_codes: OrderedDict[str, None] = OrderedDict()
        self._redeemed_codes_lock = threading.Lock()
        self._refresh_locks: OrderedDict[str, threading.Lock] = OrderedDict()
        self._refresh_locks_guard = threading.Lock()
        self._last_refreshed: OrderedDict[str, AuthTokenSet] = OrderedDict()

    def build_authorization_url(
        self,
        scopes: Sequence[str] | None = None,
        state: str | None = None,
    ) -> str:
        requested_scopes = [scope.strip() for scope in (scopes or DEFAULT_SCOPES) if scope.strip()]
        if not requested_scopes:
            requested_scopes = list(DEFAULT_SCOPES)
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(requested_scopes),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        if state:
            params["state"] = state
        return f"{self.authorize_url}?{parse.urlencode(params)}"

    def exchange_code(self, code: str) -> AuthTokenSet:
        cleaned_code = (code or "").strip()
        if not cleaned_code:
            raise ValidationError("Authorization code is required.")

        with self._redeemed_codes_lock:
            if cleaned_code in self._redeemed_codes:
                raise AuthExchangeError(
                    "Authorization code has already been redeemed.",
                    help="Run the authorization flow again to obtain a new code.",
                )
            self._redeemed_codes[cleaned_code] = None
            _trim_oldest(self._redeemed_codes, MAX_TRACKED_CODES)

        try:
            payload = self._post_token_request(
                {
                    "code": cleaned_code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                },
                action="authorization code exchange",
            )
        except UpstreamAPIError:
            # Google gave no verdict on the code, so it may be retried.
            with self._redeemed_codes_lock:
                self._redeemed_codes.pop(cleaned_code, None)
            raise
        access_token = _require_access_token(payload)
        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            raise AuthExchangeError(
                "Google did not return a refresh token for this authorization.",
                help=_MISSING_REFRESH_TOKEN_HELP,
            )
        logger.info("Google authorization code exchanged for a new token set")
        return AuthTokenSet(
            access_token=access_token,
            refresh_token=refresh_token.strip(),
            expires_at=self._resolve_expiry(payload),
            scope=str(payload.get("scope") or ""),
            token_type=str(payload.get("token_type") or "Bearer"),
        )

    def refresh(self, token_set: AuthTokenSet) -> AuthTokenSet:
        refresh_token = token_set.refresh_token.strip()
        if not refresh_token:
            raise ConfigurationError(
                "No Google refresh token is available.",
                help="Complete the authorization flow and set GOOGLE_CALENDAR_REFRESH_TOKEN.",
            )

        with self._refresh_lock_for(refresh_token):
            # A concurrent caller may have refreshed while we waited for the lock.
            previous = self._last_refreshed.get(refresh_token)
            if (
                previous is not None
                and previous.access_token != token_set.access_token
                and not previous.is_expired(self._clock())
            ):
                return previous

            payload = self._post_token_request(
                {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                action="token refresh",
            )
            rotated_refresh_token = payload.get("refresh_token")
            refreshed = replace(
                token_set,
                access_token=_require_access_token(payload),
                expires_at=self._resolve_expiry(payload),
                scope=str(payload.get("scope") or token_set.scope),
                token_type=str(payload.get("token_type") or token_set.token_type),
            )
            if isinstance(rotated_refresh_token, str) and rotated_refresh_token.strip():
                refreshed = replace(refreshed, refresh_token=rotated_refresh_token.strip())
            with self._refresh_locks_guard:
                self._last_refreshed[refresh_token] = refreshed
                _trim_oldest(self._last_refreshed, MAX_TRACKED_CREDENTIALS)
            logger.info("Google access token refreshed")
            return refreshed

    def revoke(self, token_set: AuthTokenSet) -> None:
        token = token_set.refresh_token or token_set.access_token
        if not token:
            return
        body = parse.urlencode({"token": token}).encode("utf-8")
        req = request.Request(
            self.revoke_url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response.read()
        except TimeoutError as exc:
            raise UpstreamTimeoutError("Google OAuth revoke request timed out.") from exc
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            if exc.code != 400 or _extract_oauth_error_code(body_text) != "invalid_token":
                raise UpstreamAPIError(
                    f"Google OAuth revoke HTTP {exc.code}: {_extract_oauth_message(body_text)}",
                    status_code=exc.code,
                ) from exc
            logger.info("Google credentials were already revoked or expired")
        except error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise UpstreamTimeoutError("Google OAuth revoke request timed out.") from exc
            raise UpstreamAPIError(f"Google OAuth revoke connection error: {exc.reason}") from exc
        with self._refresh_locks_guard:
            self._last_refreshed.pop(token_set.refresh_token, None)
        logger.info("Google credentials revoked")

    def _post_token_request(self, form: dict[str, str], *, action: str) -> dict[str, Any]:
        body = parse.urlencode(form).encode("utf-8")
        req = request.Request(
            self.token_url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise UpstreamTimeoutError(f"Google OAuth {action} timed out.") from exc
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            message = _extract_oauth_message(body_text)
            logger.warning("Google OAuth %s failed: status=%s message=%s", action, exc.code, message)
            if 400 <= exc.code < 500:
                raise AuthExchangeError(
                    f"Google OAuth {action} failed: {message}",
                    help="Run the authorization flow again to obtain a new code.",
                ) from exc
            raise UpstreamAPIError(
                f"Google OAuth {action} HTTP {exc.code}: {message}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise UpstreamTimeoutError(f"Google OAuth {action} timed out.") from exc
            raise UpstreamAPIError(f"Google OAuth {action} connection error: {exc.reason}") from exc

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise UpstreamAPIError(f"Google OAuth {action} returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise UpstreamAPIError(f"Google OAuth {action} response is not a JSON object.")
        return payload

    def _resolve_expiry(self, payload: dict[str, Any]) -> datetime | None:
        raw_expires_in = payload.get("expires_in")
        try:
            expires_in = int(raw_expires_in)
        except (TypeError, ValueError):
            return None
        return self._clock() + timedelta(seconds=expires_in)

    def _refresh_lock_for(self, refresh_token: str) -> threading.Lock:
        with self._refresh_locks_guard:
            lock = self._refresh_locks.get(refresh_token)
            if lock is None:
                lock = threading.Lock()
                self._refresh_locks[refresh_token] = lock
                self._evict_idle_locks()
            else:
                self._refresh_locks.move_to_end(refresh_token)
            return lock

    def _evict_idle_locks(self) -> None:
        overflow = len(self._refresh_locks) - MAX_TRACKED_CREDENTIALS
        for key in list(self._refresh_locks):
            if overflow <= 0:
                break
            if not self._refresh_locks[key].locked():
                del self._refresh_locks[key]
                overflow -= 1


def _require_access_token(payload: dict[str, Any]) -> str:
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        raise AuthExchangeError("Google token response did not include access_token.")
    return access_token.strip()


def _trim_oldest(entries: OrderedDict[str, Any], limit: int) -> None:
    while len(entries) > limit:
        entries.popitem(last=False)


def _extract_oauth_error_code(body_text: str) -> str:
    try:
        payload = json.loads(body_text)
    except json.JSONDecodeError:
        return ""
    if not isinstance(payload, dict):
        return ""
    raw_error = payload.get("error")
    return raw_error.strip() if isinstance(raw_error, str) else ""


def _extract_oauth_message(body_text: str) -> str:
    try:
        payload = json.loads(body_text)
    except json.JSONDecodeError:
        return body_text or "empty response body"
    if not isinstance(payload, dict):
        return body_text or "empty response body"
    description = payload.get("error_description")
    if isinstance(description, str) and description.strip():
        return description.strip()
    raw_error = payload.get("error")
    if isinstance(raw_error, str) and raw_error.strip():
        return raw_error.strip()
    if isinstance(raw_error, dict):
        message = raw_error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return body_text or "empty response body"
