"""IGDB catalog access: token brokering, query building and normalization."""

from __future__ import annotations

import logging
import math
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import httpx

from .config import Settings
from .models import (
    PLACEHOLDER_COVER,
    CatalogGameDetail,
    CatalogSearchResult,
    SimilarGame,
)

logger = logging.getLogger(__name__)

IMAGE_BASE = "https://images.igdb.com/igdb/image/upload"
SEARCH_LIMIT = 10
COMPANY_FIELDS = (
    "involved_companies.company.name,"
    " involved_companies.developer, involved_companies.publisher"
)
SEARCH_FIELDS = (
    "name, cover.image_id, platforms.name, first_release_date, genres.name, "
    f"{COMPANY_FIELDS}, summary"
)
DETAIL_FIELDS = (
    "name, cover.image_id, platforms.name, first_release_date, genres.name, "
    f"{COMPANY_FIELDS}, summary, storyline, rating, rating_count,"
    " total_rating, total_rating_count, screenshots.image_id, videos.video_id,"
    " websites.*, game_modes.name, themes.name, similar_games.name,"
    " similar_games.cover.image_id"
)


class CatalogError(RuntimeError):
    """Base class for failures talking to the game catalog."""


class CatalogCredentialsError(CatalogError):
    """Raised when the IGDB client id/secret are not configured."""


class CatalogFetchError(CatalogError):
    """Raised when IGDB or the token endpoint answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def image_url(image_id: str, size: str = "cover_big") -> str:
    return f"{IMAGE_BASE}/t_{size}/{image_id}.jpg"


def format_release_date(timestamp: Optional[int]) -> str:
    """Convert an IGDB unix timestamp into an ISO date string."""
    if not timestamp:
        return ""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


def rescale_rating(total_rating: Optional[float]) -> Optional[float]:
    """Map IGDB's 100-point rating onto the library's 5-point scale.

    Rounds half up to one decimal, so 92 becomes 4.6 and 87.5 becomes 4.4.
    """
    if not total_rating:
        return None
    # R / 20 * 10 == R / 2; halving is exact in binary floating point.
    return math.floor(total_rating / 2 + 0.5) / 10


def build_search_query(query: str, limit: int = SEARCH_LIMIT) -> str:
    query_title = query.replace('"', " ").strip()
    return (
        f'search "{query_title}";'
        f" fields {SEARCH_FIELDS};"
        " where version_parent = null;"
        f" limit {limit};"
    )


def build_detail_query(game_id: int) -> str:
    return f"fields {DETAIL_FIELDS}; where id = {int(game_id)};"


class AccessTokenBroker:
    """Fetches and caches the Twitch app token that IGDB expects."""

    TOKEN_URL = "https://id.twitch.tv/oauth2/token"

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        http: httpx.Client,
        static_token: Optional[str] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = http
        self._static_token = static_token
        self._token: Optional[str] = None
        self._token_expiry: float = 0
        self._lock = threading.Lock()

    def auth_headers(self) -> Dict[str, str]:
        token = self.get_token()
        assert self.client_id  # checked by get_token
        return {"Client-ID": self.client_id, "Authorization": f"Bearer {token}"}

    def get_token(self) -> str:
        if not self.client_id or not self.client_secret:
            raise CatalogCredentialsError("Missing IGDB client credentials")
        if self._static_token:
            return self._static_token
        with self._lock:
            if not self._token or time.time() >= self._token_expiry:
                self._refresh_token()
            assert self._token  # for type checkers
            return self._token

    def _refresh_token(self) -> None:
        logger.info("No valid IGDB access token cached, requesting a new one")
        try:
            response = self._http.post(
                self.TOKEN_URL,
                params={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CatalogFetchError(
                f"Failed to get access token: {exc.response.reason_phrase}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise CatalogFetchError(f"Failed to get access token: {exc}") from exc
        payload = response.json()
        self._token = payload["access_token"]
        self._token_expiry = time.time() + int(payload.get("expires_in", 3600)) - 60


class IgdbClient:
    API_BASE = "https://api.igdb.com/v4"

    def __init__(self, broker: AccessTokenBroker, http: httpx.Client) -> None:
        self.broker = broker
        self._http = http

    def _post_games(self, query: str) -> list[Dict]:
        headers = {"Accept": "application/json", **self.broker.auth_headers()}
        try:
            response = self._http.post(
                f"{self.API_BASE}/games", content=query, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("IGDB API error: %s", exc.response.reason_phrase)
            raise CatalogFetchError(
                "Error fetching data from IGDB",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("IGDB request failed: %s", exc)
            raise CatalogFetchError("Error fetching data from IGDB") from exc
        return response.json()

    def search_games(self, query: str, limit: int = SEARCH_LIMIT) -> list[Dict]:
        results = self._post_games(build_search_query(query, limit))
        logger.debug("IGDB search for '%s' returned %s results", query, len(results))
        return results

    def get_game_by_id(self, game_id: int) -> Optional[Dict]:
        results = self._post_games(build_detail_query(game_id))
        return results[0] if results else None


class IgdbCatalog:
    """Turns raw IGDB records into the flat shapes the pages render."""

    def __init__(self, client: IgdbClient) -> None:
        self.client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, http: Optional[httpx.Client] = None
    ) -> "IgdbCatalog":
        http = http or httpx.Client(timeout=settings.http_timeout)
        broker = AccessTokenBroker(
            settings.igdb_client_id,
            settings.igdb_client_secret,
            http,
            static_token=settings.igdb_access_token,
        )
        if not (settings.igdb_client_id and settings.igdb_client_secret):
            logger.warning(
                "IGDB_CLIENT_ID/IGDB_CLIENT_SECRET not set. Catalog search will fail."
            )
        return cls(IgdbClient(broker, http))

    def search(self, query: str) -> list[CatalogSearchResult]:
        records = self.client.search_games(query)
        return [self.normalize_search_record(record) for record in records]

    def get_details(self, game_id: int) -> Optional[CatalogGameDetail]:
        record = self.client.get_game_by_id(game_id)
        if not record:
            return None
        return self.normalize_detail_record(record)

    def normalize_search_record(self, record: Dict) -> CatalogSearchResult:
        developer, publisher = self._companies(record)
        return CatalogSearchResult(
            id=record["id"],
            name=record.get("name") or "",
            cover=self._cover(record),
            platform=", ".join(self._names(record, "platforms")),
            release_date=format_release_date(record.get("first_release_date")),
            developer=developer,
            publisher=publisher,
            genres=self._names(record, "genres"),
            summary=record.get("summary") or "",
        )

    def normalize_detail_record(self, record: Dict) -> CatalogGameDetail:
        developer, publisher = self._companies(record)
        return CatalogGameDetail(
            id=record["id"],
            name=record.get("name") or "",
            cover=self._cover(record),
            platforms=self._names(record, "platforms"),
            release_date=format_release_date(record.get("first_release_date")),
            developer=developer,
            publisher=publisher,
            genres=self._names(record, "genres"),
            summary=record.get("summary") or "",
            storyline=record.get("storyline") or "",
            rating=rescale_rating(record.get("total_rating")),
            rating_count=record.get("total_rating_count") or 0,
            screenshots=self._screenshots(record),
            similar_games=self._similar_games(record),
            game_modes=self._names(record, "game_modes"),
            themes=self._names(record, "themes"),
        )

    @staticmethod
    def _companies(record: Dict) -> tuple[str, str]:
        developer = ""
        publisher = ""
        companies: Sequence[Dict] = record.get("involved_companies") or []
        for entry in companies:
            company = entry.get("company") or {}
            name = company.get("name")
            if not name:
                continue
            if entry.get("developer"):
                developer = name
            if entry.get("publisher"):
                publisher = name
        return developer, publisher

    @staticmethod
    def _names(record: Dict, field: str) -> List[str]:
        entries: Sequence[Dict] = record.get(field) or []
        return [entry["name"] for entry in entries if entry.get("name")]

    @staticmethod
    def _cover(record: Dict, size: str = "cover_big") -> str:
        cover = record.get("cover") or {}
        image_id = cover.get("image_id")
        return image_url(image_id, size) if image_id else PLACEHOLDER_COVER

    @staticmethod
    def _screenshots(record: Dict) -> List[str]:
        entries: Sequence[Dict] = record.get("screenshots") or []
        return [
            image_url(entry["image_id"], "screenshot_big")
            for entry in entries
            if entry.get("image_id")
        ]

    def _similar_games(self, record: Dict) -> List[SimilarGame]:
        entries: Sequence[Dict] = record.get("similar_games") or []
        return [
            SimilarGame(
                id=entry["id"],
                name=entry.get("name") or "",
                cover=self._cover(entry, "cover_small"),
            )
            for entry in entries
            if "id" in entry
        ]
