"""Filtering, sorting and summaries over a user's library."""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import (
    DashboardView,
    Game,
    GameStatus,
    LibraryQuery,
    LibraryStats,
    SortOrder,
    split_sort_spec,
)

DASHBOARD_SLOTS = 3


def _as_date(value: Optional[str]) -> date:
    if not value:
        return date.min
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return date.min


SORT_KEY_FUNCS: Dict[str, Callable[[Game], Any]] = {
    "title": lambda game: game.title.casefold(),
    "platform": lambda game: (game.platform or "").casefold(),
    "releaseDate": lambda game: _as_date(game.release_date),
    "added_date": lambda game: _as_date(game.added_date),
    "rating": lambda game: game.rating or 0,
}


def matches(game: Game, query: LibraryQuery) -> bool:
    """Return True when *game* satisfies every active filter in *query*."""
    if query.search and query.search.casefold() not in game.title.casefold():
        return False
    if query.status and game.status != query.status:
        return False
    if query.platform and game.platform != query.platform:
        return False
    if query.genre and query.genre not in (game.genres or []):
        return False
    return True


def filter_games(games: Iterable[Game], query: LibraryQuery) -> List[Game]:
    return [game for game in games if matches(game, query)]


def sort_games(
    games: Iterable[Game], sort_by: str, sort_order: str = SortOrder.ASC
) -> List[Game]:
    key_func = SORT_KEY_FUNCS.get(sort_by)
    if key_func is None:
        return list(games)
    return sorted(games, key=key_func, reverse=sort_order == SortOrder.DESC)


def apply_query(games: Iterable[Game], query: LibraryQuery) -> List[Game]:
    """Filter then sort *games* the way the library page lists them."""
    return sort_games(filter_games(games, query), query.sort_by, query.sort_order)


def query_from_sort_spec(spec: str, **filters: Any) -> LibraryQuery:
    sort_by, sort_order = split_sort_spec(spec)
    return LibraryQuery(sort_by=sort_by, sort_order=sort_order, **filters)


def hide_completed(games: Iterable[Game]) -> List[Game]:
    return [game for game in games if game.status != GameStatus.COMPLETED]


def library_stats(games: List[Game]) -> LibraryStats:
    return LibraryStats(
        total=len(games),
        completed=sum(1 for game in games if game.status == GameStatus.COMPLETED),
        in_progress=sum(1 for game in games if game.status == GameStatus.IN_PROGRESS),
        not_started=sum(1 for game in games if game.status == GameStatus.NOT_STARTED),
    )


def build_dashboard(games: List[Game]) -> DashboardView:
    playing = [game for game in games if game.status == GameStatus.IN_PROGRESS]
    recent = sort_games(games, "added_date", SortOrder.DESC)
    return DashboardView(
        stats=library_stats(games),
        currently_playing=playing[:DASHBOARD_SLOTS],
        recently_added=recent[:DASHBOARD_SLOTS],
    )
