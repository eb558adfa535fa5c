"""
Persistence for games and profiles.

``SupabaseStore`` talks to the hosted PostgREST tables with the caller's
access token so row-level security applies; ``InMemoryStore`` mirrors its
behaviour for local development and tests. Every call is scoped by the
authenticated user's id.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Protocol

import httpx

from .models import (
    PROFILE_DEFAULTS,
    AuthSession,
    Game,
    GameDraft,
    Profile,
    changes_to_row,
    game_from_row,
    game_to_row,
    profile_from_row,
    utc_now,
)

logger = logging.getLogger(__name__)

GAMES_TABLE = "games"
PROFILES_TABLE = "profiles"


class StoreError(RuntimeError):
    """Raised when the table store rejects or fails a request."""


class GameStore(Protocol):
    """Interface for per-user game and profile persistence."""

    def list_games(self, session: AuthSession) -> list[Game]:
        ...

    def get_game(self, session: AuthSession, game_id: int) -> Optional[Game]:
        ...

    def add_game(self, session: AuthSession, draft: GameDraft) -> Game:
        ...

    def update_game(
        self, session: AuthSession, game_id: int, changes: Dict[str, Any]
    ) -> Optional[Game]:
        ...

    def delete_game(self, session: AuthSession, game_id: int) -> bool:
        ...

    def get_profile(self, session: AuthSession) -> Optional[Profile]:
        ...

    def ensure_profile(self, session: AuthSession) -> Profile:
        ...

    def update_profile(
        self, session: AuthSession, changes: Dict[str, Any]
    ) -> Profile:
        ...


class InMemoryStore:
    """Simple in-memory table store for development and tests."""

    def __init__(self) -> None:
        self.games: Dict[int, Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def _owned_row(self, session: AuthSession, game_id: int) -> Optional[Dict[str, Any]]:
        row = self.games.get(game_id)
        if not row or row["user_id"] != session.user.id:
            return None
        return row

    def list_games(self, session: AuthSession) -> list[Game]:
        with self._lock:
            rows = [
                dict(row)
                for row in self.games.values()
                if row["user_id"] == session.user.id
            ]
        rows.sort(key=lambda row: row.get("added_date") or "", reverse=True)
        return [game_from_row(row) for row in rows]

    def get_game(self, session: AuthSession, game_id: int) -> Optional[Game]:
        with self._lock:
            row = self._owned_row(session, game_id)
            return game_from_row(row) if row else None

    def add_game(self, session: AuthSession, draft: GameDraft) -> Game:
        with self._lock:
            row = game_to_row(draft)
            row.update(id=self._next_id, user_id=session.user.id, updated_at=None)
            self.games[self._next_id] = row
            self._next_id += 1
            return game_from_row(row)

    def update_game(
        self, session: AuthSession, game_id: int, changes: Dict[str, Any]
    ) -> Optional[Game]:
        with self._lock:
            row = self._owned_row(session, game_id)
            if not row:
                return None
            row.update(changes_to_row(changes))
            row["updated_at"] = utc_now()
            return game_from_row(row)

    def delete_game(self, session: AuthSession, game_id: int) -> bool:
        with self._lock:
            if not self._owned_row(session, game_id):
                return False
            del self.games[game_id]
        return True

    def get_profile(self, session: AuthSession) -> Optional[Profile]:
        with self._lock:
            row = self.profiles.get(session.user.id)
            return profile_from_row(row) if row else None

    def ensure_profile(self, session: AuthSession) -> Profile:
        with self._lock:
            row = self.profiles.setdefault(
                session.user.id,
                {"id": session.user.id, "created_at": utc_now(), **PROFILE_DEFAULTS},
            )
            return profile_from_row(row)

    def update_profile(
        self, session: AuthSession, changes: Dict[str, Any]
    ) -> Profile:
        self.ensure_profile(session)
        with self._lock:
            row = self.profiles[session.user.id]
            row.update(changes)
            row["updated_at"] = utc_now()
            return profile_from_row(row)


class SupabaseStore:
    """PostgREST-backed store for a hosted Supabase project."""

    def __init__(self, url: str, anon_key: str, http: httpx.Client) -> None:
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.anon_key = anon_key
        self._http = http

    def _headers(self, session: AuthSession, prefer: Optional[str]) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {session.access_token}",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        table: str,
        session: AuthSession,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> list[Dict[str, Any]]:
        try:
            response = self._http.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=json,
                headers=self._headers(session, prefer),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Supabase %s %s failed with %s: %s",
                method,
                table,
                exc.response.status_code,
                exc.response.text,
            )
            raise StoreError(f"{method} {table} failed") from exc
        except httpx.HTTPError as exc:
            logger.error("Supabase %s %s failed: %s", method, table, exc)
            raise StoreError(f"{method} {table} failed") from exc
        if not response.content:
            return []
        return response.json()

    @staticmethod
    def _owned(session: AuthSession, game_id: int) -> Dict[str, str]:
        return {"id": f"eq.{int(game_id)}", "user_id": f"eq.{session.user.id}"}

    def list_games(self, session: AuthSession) -> list[Game]:
        rows = self._request(
            "GET",
            GAMES_TABLE,
            session,
            params={
                "select": "*",
                "user_id": f"eq.{session.user.id}",
                "order": "added_date.desc",
            },
        )
        return [game_from_row(row) for row in rows]

    def get_game(self, session: AuthSession, game_id: int) -> Optional[Game]:
        rows = self._request(
            "GET",
            GAMES_TABLE,
            session,
            params={"select": "*", **self._owned(session, game_id)},
        )
        return game_from_row(rows[0]) if rows else None

    def add_game(self, session: AuthSession, draft: GameDraft) -> Game:
        row = {**game_to_row(draft), "user_id": session.user.id}
        rows = self._request(
            "POST", GAMES_TABLE, session, json=[row], prefer="return=representation"
        )
        if not rows:
            raise StoreError("Insert returned no rows")
        return game_from_row(rows[0])

    def update_game(
        self, session: AuthSession, game_id: int, changes: Dict[str, Any]
    ) -> Optional[Game]:
        payload = {**changes_to_row(changes), "updated_at": utc_now()}
        rows = self._request(
            "PATCH",
            GAMES_TABLE,
            session,
            params=self._owned(session, game_id),
            json=payload,
            prefer="return=representation",
        )
        return game_from_row(rows[0]) if rows else None

    def delete_game(self, session: AuthSession, game_id: int) -> bool:
        rows = self._request(
            "DELETE",
            GAMES_TABLE,
            session,
            params=self._owned(session, game_id),
            prefer="return=representation",
        )
        return bool(rows)

    def get_profile(self, session: AuthSession) -> Optional[Profile]:
        rows = self._request(
            "GET",
            PROFILES_TABLE,
            session,
            params={"select": "*", "id": f"eq.{session.user.id}"},
        )
        return profile_from_row(rows[0]) if rows else None

    def ensure_profile(self, session: AuthSession) -> Profile:
        profile = self.get_profile(session)
        if profile:
            return profile
        rows = self._request(
            "POST",
            PROFILES_TABLE,
            session,
            json=[{"id": session.user.id, **PROFILE_DEFAULTS}],
            prefer="return=representation",
        )
        if not rows:
            raise StoreError("Profile insert returned no rows")
        return profile_from_row(rows[0])

    def update_profile(
        self, session: AuthSession, changes: Dict[str, Any]
    ) -> Profile:
        self.ensure_profile(session)
        rows = self._request(
            "PATCH",
            PROFILES_TABLE,
            session,
            params={"id": f"eq.{session.user.id}"},
            json={**changes, "updated_at": utc_now()},
            prefer="return=representation",
        )
        if not rows:
            raise StoreError("Profile update returned no rows")
        return profile_from_row(rows[0])
