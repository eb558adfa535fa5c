"""
Session handling against the hosted auth provider.

Sessions travel as cookies for page loads, or as a bearer header for API
clients. The refresh middleware only renews expired tokens; redirect
decisions belong to :mod:`backlog.guard`.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
from fastapi import Request, Response
from fastapi.concurrency import run_in_threadpool

from .models import AuthSession, AuthUser

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "sb-access-token"
REFRESH_COOKIE = "sb-refresh-token"
EXPIRES_COOKIE = "sb-expires-at"
REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
PASSTHROUGH_PREFIXES = ("/static", "/api", "/favicon.ico")
MIN_PASSWORD_LENGTH = 6


class AuthError(RuntimeError):
    """Raised when the auth provider rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthProvider(Protocol):
    def sign_up(self, email: str, password: str) -> Optional[AuthSession]:
        ...

    def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    def refresh(self, refresh_token: str) -> AuthSession:
        ...

    def get_user(self, access_token: str) -> AuthUser:
        ...

    def sign_out(self, access_token: str) -> None:
        ...


def session_from_payload(payload: Dict[str, Any]) -> AuthSession:
    user = payload.get("user") or {}
    expires_at = payload.get("expires_at")
    if expires_at is None and payload.get("expires_in"):
        expires_at = int(time.time()) + int(payload["expires_in"])
    return AuthSession(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_at=expires_at,
        user=AuthUser(id=user["id"], email=user.get("email")),
    )


class SupabaseAuthClient:
    """Thin wrapper over the GoTrue REST endpoints of a Supabase project."""

    def __init__(self, url: str, anon_key: str, http: httpx.Client) -> None:
        self.auth_url = f"{url.rstrip('/')}/auth/v1"
        self.anon_key = anon_key
        self._http = http

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"apikey": self.anon_key, "Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            response = self._http.request(
                method,
                f"{self.auth_url}{path}",
                params=params,
                json=json,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = self._error_message(exc.response)
            logger.info("Auth %s %s rejected: %s", method, path, message)
            raise AuthError(message, status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            logger.error("Auth %s %s failed: %s", method, path, exc)
            raise AuthError("Auth provider unavailable") from exc
        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.reason_phrase
        return (
            payload.get("error_description")
            or payload.get("msg")
            or payload.get("message")
            or response.reason_phrase
        )

    def sign_up(self, email: str, password: str) -> Optional[AuthSession]:
        payload = self._send(
            "POST", "/signup", json={"email": email, "password": password}
        )
        if "access_token" not in payload:
            # Email confirmation is pending; no session yet.
            return None
        return session_from_payload(payload)

    def sign_in(self, email: str, password: str) -> AuthSession:
        payload = self._send(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return session_from_payload(payload)

    def refresh(self, refresh_token: str) -> AuthSession:
        payload = self._send(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return session_from_payload(payload)

    def get_user(self, access_token: str) -> AuthUser:
        payload = self._send("GET", "/user", access_token=access_token)
        return AuthUser(id=payload["id"], email=payload.get("email"))

    def sign_out(self, access_token: str) -> None:
        self._send("POST", "/logout", access_token=access_token)


class InMemoryAuthClient:
    """Local stand-in for the auth provider used in development and tests."""

    def __init__(
        self, token_ttl: int = 3600, clock: Callable[[], float] = time.time
    ) -> None:
        self.token_ttl = token_ttl
        self._clock = clock
        self._users: Dict[str, Dict[str, str]] = {}
        self._access: Dict[str, tuple[str, int]] = {}
        self._refresh: Dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _hash(password: str, salt: str) -> str:
        return hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()

    def _user(self, user_id: str) -> AuthUser:
        for record in self._users.values():
            if record["id"] == user_id:
                return AuthUser(id=record["id"], email=record["email"])
        raise AuthError("User not found", status_code=404)

    def _issue(self, user: AuthUser) -> AuthSession:
        access_token = secrets.token_urlsafe(24)
        refresh_token = secrets.token_urlsafe(24)
        expires_at = int(self._clock()) + self.token_ttl
        self._access[access_token] = (user.id, expires_at)
        self._refresh[refresh_token] = user.id
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            user=user,
        )

    def sign_up(self, email: str, password: str) -> Optional[AuthSession]:
        email = email.strip().lower()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters",
                status_code=422,
            )
        with self._lock:
            if email in self._users:
                raise AuthError("User already registered", status_code=422)
            salt = secrets.token_hex(8)
            record = {
                "id": str(uuid.uuid4()),
                "email": email,
                "salt": salt,
                "password_hash": self._hash(password, salt),
            }
            self._users[email] = record
            logger.info("Registered user %s", record["id"])
            return self._issue(AuthUser(id=record["id"], email=email))

    def sign_in(self, email: str, password: str) -> AuthSession:
        record = self._users.get(email.strip().lower())
        if not record or not secrets.compare_digest(
            record["password_hash"], self._hash(password, record["salt"])
        ):
            raise AuthError("Invalid login credentials", status_code=400)
        with self._lock:
            return self._issue(AuthUser(id=record["id"], email=record["email"]))

    def refresh(self, refresh_token: str) -> AuthSession:
        with self._lock:
            user_id = self._refresh.pop(refresh_token, None)
            if user_id is None:
                raise AuthError("Invalid Refresh Token", status_code=400)
            return self._issue(self._user(user_id))

    def get_user(self, access_token: str) -> AuthUser:
        entry = self._access.get(access_token)
        if not entry or self._clock() >= entry[1]:
            raise AuthError("Invalid or expired token", status_code=401)
        return self._user(entry[0])

    def sign_out(self, access_token: str) -> None:
        with self._lock:
            entry = self._access.pop(access_token, None)
            if entry is None:
                return
            user_id = entry[0]
            for token in [t for t, owner in self._refresh.items() if owner == user_id]:
                del self._refresh[token]


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None

    @classmethod
    def from_session(cls, session: AuthSession) -> "SessionTokens":
        return cls(session.access_token, session.refresh_token, session.expires_at)

    def is_expired(self, now: float, leeway: int = 10) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at - leeway


def tokens_from_request(request: Request) -> Optional[SessionTokens]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        return SessionTokens(token) if token else None

    access_token = request.cookies.get(ACCESS_COOKIE)
    if not access_token:
        return None
    expires_at: Optional[int] = None
    raw_expiry = request.cookies.get(EXPIRES_COOKIE)
    if raw_expiry and raw_expiry.isdigit():
        expires_at = int(raw_expiry)
    return SessionTokens(access_token, request.cookies.get(REFRESH_COOKIE), expires_at)


def resolve_session(
    auth: AuthProvider, tokens: Optional[SessionTokens]
) -> Optional[AuthSession]:
    """Validate *tokens* with the provider; ``None`` means unauthenticated."""
    if not tokens:
        return None
    try:
        user = auth.get_user(tokens.access_token)
    except AuthError as exc:
        logger.debug("Session rejected: %s", exc)
        return None
    return AuthSession(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_at=tokens.expires_at,
        user=user,
    )


def write_session_cookies(
    response: Response, session: AuthSession, secure: bool = False
) -> None:
    options = {"httponly": True, "samesite": "lax", "secure": secure, "path": "/"}
    response.set_cookie(ACCESS_COOKIE, session.access_token, **options)
    if session.refresh_token:
        response.set_cookie(
            REFRESH_COOKIE,
            session.refresh_token,
            max_age=REFRESH_COOKIE_MAX_AGE,
            **options,
        )
    if session.expires_at is not None:
        response.set_cookie(EXPIRES_COOKIE, str(session.expires_at), **options)


def clear_session_cookies(response: Response) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE, EXPIRES_COOKIE):
        response.delete_cookie(name, path="/")


def is_passthrough(path: str) -> bool:
    return path.startswith(PASSTHROUGH_PREFIXES)


async def refresh_session_middleware(request: Request, call_next):
    """Renew an expired session on page requests; never redirects."""
    if is_passthrough(request.url.path):
        return await call_next(request)

    auth: AuthProvider = request.app.state.auth_client
    tokens = tokens_from_request(request)
    refreshed: Optional[AuthSession] = None
    stale = False
    if tokens and tokens.refresh_token and tokens.is_expired(time.time()):
        try:
            refreshed = await run_in_threadpool(auth.refresh, tokens.refresh_token)
            logger.debug("Refreshed session for user %s", refreshed.user.id)
        except AuthError as exc:
            logger.info("Session refresh failed: %s", exc)
            stale = True

    if refreshed:
        request.state.session_tokens = SessionTokens.from_session(refreshed)
    else:
        request.state.session_tokens = None if stale else tokens

    response = await call_next(request)
    if refreshed:
        write_session_cookies(
            response, refreshed, secure=request.app.state.settings.cookie_secure
        )
    elif stale:
        clear_session_cookies(response)
    return response
