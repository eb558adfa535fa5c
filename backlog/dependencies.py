"""
Backend wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

import httpx
from fastapi import Depends, HTTPException, Request, status

from .auth import (
    AuthProvider,
    InMemoryAuthClient,
    SupabaseAuthClient,
    resolve_session,
    tokens_from_request,
)
from .catalog import IgdbCatalog
from .config import Settings
from .models import AuthSession
from .store import GameStore, InMemoryStore, SupabaseStore

logger = logging.getLogger(__name__)


def build_http_client(settings: Settings) -> httpx.Client:
    return httpx.Client(timeout=settings.http_timeout)


def _use_in_memory(settings: Settings) -> bool:
    return settings.use_in_memory_backends or not settings.supabase_configured


def build_store(settings: Settings, http: httpx.Client) -> GameStore:
    if _use_in_memory(settings):
        if not settings.use_in_memory_backends:
            logger.warning(
                "SUPABASE_URL/SUPABASE_ANON_KEY not set. Using in-memory store and auth."
            )
        return InMemoryStore()
    assert settings.supabase_url and settings.supabase_anon_key
    return SupabaseStore(settings.supabase_url, settings.supabase_anon_key, http)


def build_auth_client(settings: Settings, http: httpx.Client) -> AuthProvider:
    if _use_in_memory(settings):
        return InMemoryAuthClient()
    assert settings.supabase_url and settings.supabase_anon_key
    return SupabaseAuthClient(settings.supabase_url, settings.supabase_anon_key, http)


def build_catalog(settings: Settings, http: httpx.Client) -> IgdbCatalog:
    return IgdbCatalog.from_settings(settings, http)


def get_settings_state(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> GameStore:
    return request.app.state.store


def get_auth_client(request: Request) -> AuthProvider:
    return request.app.state.auth_client


def get_catalog(request: Request) -> IgdbCatalog:
    return request.app.state.catalog


def current_session(
    request: Request, auth: AuthProvider = Depends(get_auth_client)
) -> AuthSession:
    """Resolve the caller's session or answer 401."""
    session = resolve_session(auth, tokens_from_request(request))
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User is not authenticated",
        )
    return session
