"""FastAPI entry point for the Game Backlog Tracker."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Response,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from .auth import (
    AuthError,
    AuthProvider,
    clear_session_cookies,
    refresh_session_middleware,
    resolve_session,
    tokens_from_request,
    write_session_cookies,
)
from .catalog import CatalogCredentialsError, CatalogError, CatalogFetchError, IgdbCatalog
from .config import Settings, configure_logging, get_settings
from .dependencies import (
    build_auth_client,
    build_catalog,
    build_http_client,
    build_store,
    current_session,
    get_auth_client,
    get_catalog,
    get_settings_state,
    get_store,
)
from .guard import AuthGuard, AuthState
from .library import apply_query, build_dashboard, hide_completed, query_from_sort_spec
from .models import (
    PROFILE_DEFAULTS,
    SORT_KEYS,
    AuthSession,
    AuthUser,
    CamelModel,
    CatalogGameDetail,
    CatalogSearchResult,
    DashboardView,
    Game,
    GameDetailView,
    GameDraft,
    GameStatus,
    GameUpdate,
    LibraryQuery,
    LibraryView,
    Profile,
    ProfileUpdate,
    SortOrder,
    draft_from_catalog,
)
from .store import GameStore, StoreError

BASE_DIR = Path(__file__).resolve().parent.parent
STATIC_DIR = BASE_DIR / "static"
GENERIC_ERROR = "An error occurred while processing your request"

logger = logging.getLogger(__name__)

api_router = APIRouter(prefix="/api")
page_router = APIRouter(include_in_schema=False)


class CatalogSearchRequest(BaseModel):
    query: str = ""


class CatalogGameRequest(CamelModel):
    game_id: Optional[int] = None


class Credentials(BaseModel):
    email: str
    password: str


class SessionInfo(CamelModel):
    authenticated: bool
    user: Optional[AuthUser] = None


@api_router.get("/health")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok"})


# Catalog proxy


@api_router.post("/igdb/search", response_model=list[CatalogSearchResult])
def search_catalog(
    payload: CatalogSearchRequest, catalog: IgdbCatalog = Depends(get_catalog)
) -> list[CatalogSearchResult]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Search query is required")
    results = catalog.search(query)
    logger.debug("Catalog search for '%s' yielded %d results", query, len(results))
    return results


@api_router.post("/igdb/game", response_model=CatalogGameDetail)
def catalog_game(
    payload: CatalogGameRequest, catalog: IgdbCatalog = Depends(get_catalog)
) -> CatalogGameDetail:
    if not payload.game_id:
        raise HTTPException(status_code=400, detail="Game ID is required")
    detail = catalog.get_details(payload.game_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Game not found")
    return detail


# Library CRUD


@api_router.get("/games", response_model=list[Game])
def list_games(
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> list[Game]:
    return store.list_games(session)


@api_router.post("/games", response_model=Game, status_code=status.HTTP_201_CREATED)
def add_game(
    draft: GameDraft,
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> Game:
    game = store.add_game(session, draft)
    logger.info("User %s added game %s ('%s')", session.user.id, game.id, game.title)
    return game


@api_router.post("/games/draft", response_model=GameDraft)
def draft_game(result: CatalogSearchResult) -> GameDraft:
    return draft_from_catalog(result)


def _owned_game(store: GameStore, session: AuthSession, game_id: int) -> Game:
    game = store.get_game(session, game_id)
    if game is None:
        raise HTTPException(status_code=404, detail="Game not found")
    return game


@api_router.get("/games/{game_id}", response_model=Game)
def get_game(
    game_id: int,
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> Game:
    return _owned_game(store, session, game_id)


@api_router.patch("/games/{game_id}", response_model=Game)
def update_game(
    game_id: int,
    payload: GameUpdate,
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> Game:
    existing = _owned_game(store, session, game_id)
    changes = payload.changes()
    if changes.get("status", existing.status) != GameStatus.IN_PROGRESS:
        changes["progress"] = None
    updated = store.update_game(session, game_id, changes)
    if updated is None:
        raise HTTPException(status_code=404, detail="Game not found")
    return updated


@api_router.delete("/games/{game_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_game(
    game_id: int,
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> Response:
    if not store.delete_game(session, game_id):
        raise HTTPException(status_code=404, detail="Game not found")
    logger.info("User %s deleted game %s", session.user.id, game_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Profile / settings


@api_router.get("/profile", response_model=Profile)
def get_profile(
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> Profile:
    return store.ensure_profile(session)


@api_router.patch("/profile", response_model=Profile)
def update_profile(
    payload: ProfileUpdate,
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> Profile:
    return store.update_profile(session, payload.changes())


@api_router.post("/profile/reset", response_model=Profile)
def reset_profile(
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> Profile:
    """Restore default preferences and derive the username from the email."""
    defaults = dict(PROFILE_DEFAULTS)
    defaults.update(
        username=(session.user.email or "").split("@")[0],
        full_name="",
        avatar_url="",
    )
    return store.update_profile(session, defaults)


# Auth


@api_router.post("/auth/signup", response_model=SessionInfo)
def sign_up(
    payload: Credentials,
    response: Response,
    auth: AuthProvider = Depends(get_auth_client),
    store: GameStore = Depends(get_store),
    settings: Settings = Depends(get_settings_state),
):
    try:
        session = auth.sign_up(payload.email, payload.password)
    except AuthError as exc:
        raise HTTPException(
            status_code=exc.status_code or 400, detail=str(exc)
        ) from exc
    if session is None:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "authenticated": False,
                "detail": "Check your email to confirm your account.",
            },
        )
    store.ensure_profile(session)
    write_session_cookies(response, session, secure=settings.cookie_secure)
    return SessionInfo(authenticated=True, user=session.user)


@api_router.post("/auth/login", response_model=SessionInfo)
def log_in(
    payload: Credentials,
    response: Response,
    auth: AuthProvider = Depends(get_auth_client),
    settings: Settings = Depends(get_settings_state),
) -> SessionInfo:
    try:
        session = auth.sign_in(payload.email, payload.password)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        ) from exc
    write_session_cookies(response, session, secure=settings.cookie_secure)
    logger.info("User %s signed in", session.user.id)
    return SessionInfo(authenticated=True, user=session.user)


@api_router.post("/auth/refresh", response_model=SessionInfo)
def refresh_session(
    request: Request,
    response: Response,
    auth: AuthProvider = Depends(get_auth_client),
    settings: Settings = Depends(get_settings_state),
) -> SessionInfo:
    tokens = tokens_from_request(request)
    if not tokens or not tokens.refresh_token:
        raise HTTPException(status_code=401, detail="User is not authenticated")
    try:
        session = auth.refresh(tokens.refresh_token)
    except AuthError as exc:
        clear_session_cookies(response)
        raise HTTPException(
            status_code=401, detail="Session expired, please sign in again"
        ) from exc
    write_session_cookies(response, session, secure=settings.cookie_secure)
    return SessionInfo(authenticated=True, user=session.user)


@api_router.post("/auth/logout", response_model=SessionInfo)
def log_out(
    request: Request,
    response: Response,
    auth: AuthProvider = Depends(get_auth_client),
) -> SessionInfo:
    tokens = tokens_from_request(request)
    if tokens:
        try:
            auth.sign_out(tokens.access_token)
        except AuthError as exc:
            logger.info("Sign-out rejected by provider: %s", exc)
    clear_session_cookies(response)
    return SessionInfo(authenticated=False)


@api_router.get("/auth/session", response_model=SessionInfo)
def session_info(
    request: Request, auth: AuthProvider = Depends(get_auth_client)
) -> SessionInfo:
    session = resolve_session(auth, tokens_from_request(request))
    if session is None:
        return SessionInfo(authenticated=False)
    return SessionInfo(authenticated=True, user=session.user)


# Page view-models


@api_router.get("/views/dashboard", response_model=DashboardView)
def dashboard_view(
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> DashboardView:
    return build_dashboard(store.list_games(session))


def _status_filter(value: str) -> Optional[GameStatus]:
    if not value:
        return None
    try:
        return GameStatus(value)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Unknown status '{value}'") from exc


@api_router.get("/views/library", response_model=LibraryView)
def library_view(
    search: str = "",
    status_filter: str = Query("", alias="status"),
    platform: str = "",
    genre: str = "",
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[SortOrder] = Query(None, alias="sortOrder"),
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
) -> LibraryView:
    profile = store.ensure_profile(session)
    filters = {
        "search": search,
        "status": _status_filter(status_filter),
        "platform": platform,
        "genre": genre,
    }
    if sort_by is None:
        query = query_from_sort_spec(profile.default_sort, **filters)
        if sort_order is not None:
            query = query.model_copy(update={"sort_order": sort_order.value})
    elif sort_by in SORT_KEYS:
        query = LibraryQuery(
            sort_by=sort_by, sort_order=sort_order or SortOrder.ASC, **filters
        )
    else:
        raise HTTPException(status_code=422, detail=f"Unknown sort key '{sort_by}'")

    games = store.list_games(session)
    total = len(games)
    if not profile.show_completed_games and query.status is None:
        games = hide_completed(games)
    return LibraryView(
        games=apply_query(games, query),
        total=total,
        query=query,
        layout=profile.default_view,
    )


@api_router.get("/views/game/{game_id}", response_model=GameDetailView)
def game_detail_view(
    game_id: int,
    session: AuthSession = Depends(current_session),
    store: GameStore = Depends(get_store),
    catalog: IgdbCatalog = Depends(get_catalog),
) -> GameDetailView:
    game = _owned_game(store, session, game_id)
    detail: Optional[CatalogGameDetail] = None
    if game.igdb_id:
        try:
            detail = catalog.get_details(game.igdb_id)
        except CatalogError as exc:
            logger.warning("Could not load IGDB details for game %s: %s", game_id, exc)
    return GameDetailView(game=game, catalog=detail)


# Pages


def _index_response() -> FileResponse:
    index_file = STATIC_DIR / "index.html"
    if not index_file.exists():
        raise HTTPException(
            status_code=404,
            detail="Frontend assets are missing. Did you delete the static directory?",
        )
    return FileResponse(index_file)


def _guarded_page(request: Request, require_auth: bool = True):
    auth: AuthProvider = request.app.state.auth_client
    tokens = getattr(request.state, "session_tokens", None)
    session = resolve_session(auth, tokens)
    guard = AuthGuard(require_auth=require_auth)
    redirect_to = guard.check(AuthState(user=session.user if session else None))
    if redirect_to:
        return RedirectResponse(redirect_to, status_code=status.HTTP_303_SEE_OTHER)
    return _index_response()


@page_router.get("/")
def dashboard_page(request: Request):
    return _guarded_page(request)


@page_router.get("/library")
def library_page(request: Request):
    return _guarded_page(request)


@page_router.get("/add-game")
def add_game_page(request: Request):
    return _guarded_page(request)


@page_router.get("/game/{game_id}")
def game_page(game_id: int, request: Request):
    return _guarded_page(request)


@page_router.get("/settings")
def settings_page(request: Request):
    return _guarded_page(request)


@page_router.get("/login")
def login_page(request: Request):
    return _guarded_page(request, require_auth=False)


@page_router.get("/signup")
def signup_page(request: Request):
    return _guarded_page(request, require_auth=False)


# Error mapping


async def _catalog_credentials_error(request: Request, exc: CatalogCredentialsError):
    logger.error("Catalog request without credentials: %s", exc)
    return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR})


async def _catalog_fetch_error(request: Request, exc: CatalogFetchError):
    status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    return JSONResponse(
        status_code=status_code, content={"detail": "Error fetching data from IGDB"}
    )


async def _store_error(request: Request, exc: StoreError):
    logger.error("Store request failed: %s", exc)
    return JSONResponse(
        status_code=502,
        content={"detail": "Unable to reach your game library. Please try again."},
    )


async def _auth_error(request: Request, exc: AuthError):
    return JSONResponse(status_code=401, content={"detail": "Authentication failed"})


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[GameStore] = None,
    auth_client: Optional[AuthProvider] = None,
    catalog: Optional[IgdbCatalog] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Game Backlog Tracker",
        description="Track the games you own, are playing and have finished.",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(refresh_session_middleware)

    http = build_http_client(settings)
    app.state.settings = settings
    app.state.store = store if store is not None else build_store(settings, http)
    app.state.auth_client = (
        auth_client if auth_client is not None else build_auth_client(settings, http)
    )
    app.state.catalog = catalog if catalog is not None else build_catalog(settings, http)

    app.add_exception_handler(CatalogCredentialsError, _catalog_credentials_error)
    app.add_exception_handler(CatalogFetchError, _catalog_fetch_error)
    app.add_exception_handler(StoreError, _store_error)
    app.add_exception_handler(AuthError, _auth_error)

    app.include_router(api_router)
    app.include_router(page_router)
    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
    return app


app = create_app()
