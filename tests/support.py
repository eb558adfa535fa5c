"""Shared fixtures: canned IGDB records and mock transports."""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Optional

import httpx

from backlog.catalog import IgdbCatalog
from backlog.config import Settings

ELDEN_RING = {
    "id": 119133,
    "name": "Elden Ring",
    "cover": {"id": 1, "image_id": "co4jni"},
    "platforms": [
        {"id": 6, "name": "PC (Microsoft Windows)"},
        {"id": 167, "name": "PlayStation 5"},
    ],
    "first_release_date": 1645747200,
    "genres": [
        {"id": 12, "name": "Role-playing (RPG)"},
        {"id": 31, "name": "Adventure"},
    ],
    "involved_companies": [
        {
            "id": 1,
            "company": {"id": 1, "name": "FromSoftware"},
            "developer": True,
            "publisher": False,
        },
        {
            "id": 2,
            "company": {"id": 2, "name": "Bandai Namco Entertainment"},
            "developer": False,
            "publisher": True,
        },
    ],
    "summary": "Rise, Tarnished.",
}

ELDEN_RING_DETAIL = {
    **ELDEN_RING,
    "storyline": "The Elden Ring was shattered.",
    "total_rating": 92,
    "total_rating_count": 150,
    "screenshots": [{"id": 10, "image_id": "sc6q9y"}],
    "similar_games": [
        {"id": 1942, "name": "The Witcher 3", "cover": {"id": 3, "image_id": "co1wyy"}},
        {"id": 7346, "name": "Zelda"},
    ],
    "game_modes": [{"id": 1, "name": "Single player"}],
    "themes": [{"id": 17, "name": "Fantasy"}],
}

BARE_RECORD = {"id": 555, "name": "Mystery Game"}

CATALOG_SETTINGS = Settings(
    igdb_client_id="client-id",
    igdb_client_secret="client-secret",
    use_in_memory_backends=True,
)


def igdb_handler(
    records: List[Dict],
    calls: Optional[List[httpx.Request]] = None,
    games_status: int = 200,
) -> Callable[[httpx.Request], httpx.Response]:
    """Answer token and /v4/games requests the way Twitch and IGDB would."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if request.url.host == "id.twitch.tv":
            return httpx.Response(
                200,
                json={"access_token": "app-token", "expires_in": 3600, "token_type": "bearer"},
            )
        if request.url.path == "/v4/games":
            if games_status != 200:
                return httpx.Response(games_status, json={"message": "upstream down"})
            body = request.content.decode("utf-8")
            match = re.search(r"where id = (\d+);", body)
            if match:
                wanted = int(match.group(1))
                return httpx.Response(
                    200, json=[record for record in records if record["id"] == wanted]
                )
            return httpx.Response(200, json=records)
        return httpx.Response(404)

    return handler


def mock_catalog(
    records: Optional[List[Dict]] = None,
    settings: Settings = CATALOG_SETTINGS,
    calls: Optional[List[httpx.Request]] = None,
    games_status: int = 200,
) -> IgdbCatalog:
    handler = igdb_handler(
        records if records is not None else [ELDEN_RING_DETAIL],
        calls=calls,
        games_status=games_status,
    )
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return IgdbCatalog.from_settings(settings, http)
