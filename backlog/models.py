"""Pydantic models shared across the backlog API.

The API speaks camelCase while the hosted tables use snake_case columns, so
every model keeps snake_case attribute names and exposes camelCase aliases.
``added_date`` is the one field that keeps its column name on both sides.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

PLACEHOLDER_COVER = "https://placehold.co/300x400/gray/white?text=No+Image"


class GameStatus(str, Enum):
    NOT_STARTED = "notStarted"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    ON_HOLD = "onHold"
    DROPPED = "dropped"


STATUS_LABELS: Dict[str, str] = {
    GameStatus.NOT_STARTED.value: "Not Started",
    GameStatus.IN_PROGRESS.value: "In Progress",
    GameStatus.COMPLETED.value: "Completed",
    GameStatus.ON_HOLD.value: "On Hold",
    GameStatus.DROPPED.value: "Dropped",
}

PLATFORMS = [
    "PC",
    "PlayStation 5",
    "PlayStation 4",
    "Xbox Series X/S",
    "Xbox One",
    "Nintendo Switch",
    "Steam Deck",
    "Mobile",
]

GENRES = [
    "Action",
    "Adventure",
    "Action-Adventure",
    "RPG",
    "Strategy",
    "Simulation",
    "Sports",
    "Racing",
    "Fighting",
    "Shooter",
    "Puzzle",
    "Platformer",
    "Survival",
    "Horror",
    "Open World",
    "Indie",
    "Roguelike",
    "MMO",
    "MOBA",
    "Card Game",
    "Battle Royale",
]


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


SORT_KEYS = ("title", "platform", "releaseDate", "added_date", "rating")
DEFAULT_SORT = "title-asc"
SORT_OPTIONS: Dict[str, str] = {
    "title-asc": "Title (A-Z)",
    "title-desc": "Title (Z-A)",
    "platform-asc": "Platform (A-Z)",
    "platform-desc": "Platform (Z-A)",
    "releaseDate-desc": "Release Date (Newest)",
    "releaseDate-asc": "Release Date (Oldest)",
    "added_date-desc": "Date Added (Newest)",
    "added_date-asc": "Date Added (Oldest)",
    "rating-desc": "Rating (Highest)",
    "rating-asc": "Rating (Lowest)",
}


def split_sort_spec(value: str) -> tuple[str, SortOrder]:
    """Split ``"added_date-desc"`` into ``("added_date", SortOrder.DESC)``."""
    key, sep, order = (value or "").rpartition("-")
    if not sep or key not in SORT_KEYS or order not in ("asc", "desc"):
        raise ValueError(f"Invalid sort option '{value}'")
    return key, SortOrder(order)


def utc_today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class GameFields(CamelModel):
    """Fields a user controls when adding or editing a game."""

    title: str
    cover_url: str = ""
    platform: str = ""
    release_date: str = ""
    developer: str = ""
    publisher: str = ""
    genres: list[str] = Field(default_factory=list)
    status: GameStatus = GameStatus.NOT_STARTED
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    play_time: Optional[float] = Field(default=None, ge=0)
    notes: str = ""
    added_date: str = Field(default_factory=utc_today, alias="added_date")
    igdb_id: Optional[int] = None

    @field_validator("title")
    @classmethod
    def _title_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required.")
        return value

    @model_validator(mode="after")
    def _progress_only_in_progress(self):
        # Progress is only tracked while a game is being played.
        if self.status != GameStatus.IN_PROGRESS:
            self.progress = None
        return self


class GameDraft(GameFields):
    """A game that has not been written to the library yet."""


class Game(GameFields):
    id: int
    updated_at: Optional[str] = None


class GameUpdate(CamelModel):
    title: Optional[str] = None
    cover_url: Optional[str] = None
    platform: Optional[str] = None
    release_date: Optional[str] = None
    developer: Optional[str] = None
    publisher: Optional[str] = None
    genres: Optional[list[str]] = None
    status: Optional[GameStatus] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    play_time: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    igdb_id: Optional[int] = None

    @field_validator("title", "status", "genres", mode="before")
    @classmethod
    def _not_null(cls, value: Any, info: ValidationInfo) -> Any:
        # These columns may be omitted from an update but never set to null.
        if value is None:
            raise ValueError(f"{info.field_name} cannot be cleared")
        return value

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required.")
        return value

    def changes(self) -> Dict[str, Any]:
        """Return only the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)


def game_to_row(game: GameFields) -> Dict[str, Any]:
    row = game.model_dump(exclude={"id", "updated_at"})
    row["release_date"] = row["release_date"] or None
    return row


def changes_to_row(changes: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(changes)
    if "release_date" in row:
        row["release_date"] = row["release_date"] or None
    return row


def game_from_row(row: Dict[str, Any]) -> Game:
    return Game(
        id=row["id"],
        title=row.get("title") or "",
        cover_url=row.get("cover_url") or "",
        platform=row.get("platform") or "",
        release_date=row.get("release_date") or "",
        developer=row.get("developer") or "",
        publisher=row.get("publisher") or "",
        genres=row.get("genres") or [],
        status=row.get("status") or GameStatus.NOT_STARTED,
        progress=row.get("progress"),
        rating=row.get("rating"),
        play_time=row.get("play_time"),
        notes=row.get("notes") or "",
        added_date=row.get("added_date") or "",
        igdb_id=row.get("igdb_id"),
        updated_at=row.get("updated_at"),
    )


class ThemePreference(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class LibraryLayout(str, Enum):
    GRID = "grid"
    LIST = "list"


class Profile(CamelModel):
    id: str
    username: str = ""
    full_name: str = ""
    avatar_url: str = ""
    website: str = ""
    theme_preference: ThemePreference = ThemePreference.SYSTEM
    show_completed_games: bool = True
    default_view: LibraryLayout = LibraryLayout.GRID
    default_sort: str = DEFAULT_SORT
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


PROFILE_DEFAULTS: Dict[str, Any] = {
    "theme_preference": ThemePreference.SYSTEM.value,
    "show_completed_games": True,
    "default_view": LibraryLayout.GRID.value,
    "default_sort": DEFAULT_SORT,
}


class ProfileUpdate(CamelModel):
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    website: Optional[str] = None
    theme_preference: Optional[ThemePreference] = None
    show_completed_games: Optional[bool] = None
    default_view: Optional[LibraryLayout] = None
    default_sort: Optional[str] = None

    @field_validator("default_sort")
    @classmethod
    def _known_sort(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            split_sort_spec(value)
        return value

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def profile_from_row(row: Dict[str, Any]) -> Profile:
    return Profile(
        id=row["id"],
        username=row.get("username") or "",
        full_name=row.get("full_name") or "",
        avatar_url=row.get("avatar_url") or "",
        website=row.get("website") or "",
        theme_preference=row.get("theme_preference") or ThemePreference.SYSTEM,
        show_completed_games=(
            True
            if row.get("show_completed_games") is None
            else row["show_completed_games"]
        ),
        default_view=row.get("default_view") or LibraryLayout.GRID,
        default_sort=row.get("default_sort") or DEFAULT_SORT,
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class LibraryQuery(CamelModel):
    search: str = ""
    status: Optional[GameStatus] = None
    platform: str = ""
    genre: str = ""
    sort_by: str = "title"
    sort_order: SortOrder = SortOrder.ASC

    @field_validator("sort_by")
    @classmethod
    def _known_sort_key(cls, value: str) -> str:
        if value not in SORT_KEYS:
            raise ValueError(f"Unknown sort key '{value}'")
        return value


class CatalogSearchResult(CamelModel):
    """A flattened IGDB search hit that the add-game wizard can select."""

    id: int
    name: str
    cover: str = PLACEHOLDER_COVER
    platform: str = ""
    release_date: str = ""
    developer: str = ""
    publisher: str = ""
    genres: list[str] = Field(default_factory=list)
    summary: str = ""


class SimilarGame(CamelModel):
    id: int
    name: str = ""
    cover: str = PLACEHOLDER_COVER


class CatalogGameDetail(CamelModel):
    id: int
    name: str
    cover: str = PLACEHOLDER_COVER
    platforms: list[str] = Field(default_factory=list)
    release_date: str = ""
    developer: str = ""
    publisher: str = ""
    genres: list[str] = Field(default_factory=list)
    summary: str = ""
    storyline: str = ""
    rating: Optional[float] = None
    rating_count: int = 0
    screenshots: list[str] = Field(default_factory=list)
    similar_games: list[SimilarGame] = Field(default_factory=list)
    game_modes: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)


def draft_from_catalog(result: CatalogSearchResult) -> GameDraft:
    """Pre-fill a library entry from the catalog hit a user picked."""
    return GameDraft(
        title=result.name,
        cover_url=result.cover,
        platform=result.platform,
        release_date=result.release_date,
        developer=result.developer,
        publisher=result.publisher,
        genres=list(result.genres),
        notes=result.summary,
        igdb_id=result.id,
    )


class AuthUser(CamelModel):
    id: str
    email: Optional[str] = None


class AuthSession(CamelModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: AuthUser


class LibraryStats(CamelModel):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    not_started: int = 0


class DashboardView(CamelModel):
    stats: LibraryStats
    currently_playing: list[Game] = Field(default_factory=list)
    recently_added: list[Game] = Field(default_factory=list)


class LibraryOptions(CamelModel):
    statuses: Dict[str, str] = Field(default_factory=lambda: dict(STATUS_LABELS))
    platforms: list[str] = Field(default_factory=lambda: list(PLATFORMS))
    genres: list[str] = Field(default_factory=lambda: list(GENRES))
    sort_options: Dict[str, str] = Field(default_factory=lambda: dict(SORT_OPTIONS))


class LibraryView(CamelModel):
    games: list[Game]
    total: int
    query: LibraryQuery
    layout: LibraryLayout = LibraryLayout.GRID
    options: LibraryOptions = Field(default_factory=LibraryOptions)


class GameDetailView(CamelModel):
    game: Game
    catalog: Optional[CatalogGameDetail] = None
