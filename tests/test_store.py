import json
import threading
import unittest

import httpx
from pydantic import ValidationError

from backlog.models import (
    AuthSession,
    AuthUser,
    CatalogSearchResult,
    GameDraft,
    GameUpdate,
    ProfileUpdate,
    draft_from_catalog,
    game_from_row,
    game_to_row,
)
from backlog.store import InMemoryStore, StoreError, SupabaseStore


def session_for(user_id, token="user-token"):
    return AuthSession(access_token=token, user=AuthUser(id=user_id, email=f"{user_id}@example.com"))


ALICE = session_for("alice")
BOB = session_for("bob")


class GameModelTests(unittest.TestCase):
    def test_status_defaults_to_not_started(self):
        draft = GameDraft(title="Hades")
        self.assertEqual(draft.status, "notStarted")
        self.assertRegex(draft.added_date, r"^\d{4}-\d{2}-\d{2}$")

    def test_progress_dropped_unless_in_progress(self):
        self.assertIsNone(GameDraft(title="Hades", status="completed", progress=80).progress)
        self.assertEqual(GameDraft(title="Hades", status="inProgress", progress=80).progress, 80)

    def test_ranges_are_enforced(self):
        with self.assertRaises(ValidationError):
            GameDraft(title="Hades", status="inProgress", progress=101)
        with self.assertRaises(ValidationError):
            GameDraft(title="Hades", rating=5.5)
        with self.assertRaises(ValidationError):
            GameDraft(title="Hades", play_time=-1)
        with self.assertRaises(ValidationError):
            GameDraft(title="   ")

    def test_camel_case_input_accepted(self):
        draft = GameDraft.model_validate(
            {"title": "Hades", "coverUrl": "x.jpg", "playTime": 3, "igdbId": 1, "added_date": "2024-02-02"}
        )
        self.assertEqual(draft.cover_url, "x.jpg")
        self.assertEqual(draft.play_time, 3)
        self.assertEqual(draft.igdb_id, 1)
        self.assertEqual(draft.added_date, "2024-02-02")

    def test_rows_are_snake_case(self):
        row = game_to_row(GameDraft(title="Hades", cover_url="x.jpg", play_time=2))
        self.assertEqual(row["cover_url"], "x.jpg")
        self.assertEqual(row["play_time"], 2)
        self.assertIsNone(row["release_date"])
        self.assertEqual(row["status"], "notStarted")
        self.assertNotIn("coverUrl", row)

    def test_null_columns_read_back_as_defaults(self):
        game = game_from_row(
            {"id": 3, "title": "Hades", "status": "notStarted", "added_date": "2024-01-01",
             "cover_url": None, "genres": None, "release_date": None, "notes": None}
        )
        self.assertEqual(game.cover_url, "")
        self.assertEqual(game.genres, [])
        self.assertEqual(game.release_date, "")
        self.assertEqual(game.notes, "")

    def test_draft_from_catalog_selection(self):
        result = CatalogSearchResult(
            id=119133,
            name="Elden Ring",
            cover="cover.jpg",
            platform="PC",
            release_date="2022-02-25",
            developer="FromSoftware",
            publisher="Bandai Namco",
            genres=["RPG"],
            summary="Rise, Tarnished.",
        )
        draft = draft_from_catalog(result)
        self.assertEqual(draft.title, "Elden Ring")
        self.assertEqual(draft.cover_url, "cover.jpg")
        self.assertEqual(draft.notes, "Rise, Tarnished.")
        self.assertEqual(draft.igdb_id, 119133)
        self.assertEqual(draft.status, "notStarted")

    def test_update_reports_only_sent_fields(self):
        update = GameUpdate.model_validate({"rating": 4, "playTime": 10})
        self.assertEqual(update.changes(), {"rating": 4, "play_time": 10})

    def test_update_rejects_null_for_required_columns(self):
        for field in ("title", "status", "genres"):
            with self.assertRaises(ValidationError):
                GameUpdate.model_validate({field: None})
        update = GameUpdate.model_validate({"rating": None, "igdbId": None})
        self.assertEqual(update.changes(), {"rating": None, "igdb_id": None})

    def test_profile_sort_validated(self):
        self.assertEqual(ProfileUpdate(default_sort="rating-desc").default_sort, "rating-desc")
        with self.assertRaises(ValidationError):
            ProfileUpdate(default_sort="bogus")


class InMemoryStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryStore()

    def test_round_trip_preserves_fields(self):
        draft = GameDraft(
            title="Hades",
            platform="PC",
            release_date="2020-09-17",
            genres=["Roguelike"],
            status="inProgress",
            progress=40,
            rating=4.5,
            play_time=12,
            notes="Escape attempt 14",
            added_date="2024-01-02",
            igdb_id=113112,
        )
        created = self.store.add_game(ALICE, draft)
        fetched = self.store.get_game(ALICE, created.id)
        self.assertEqual(fetched, created)
        self.assertEqual(fetched.model_dump(exclude={"id", "updated_at"}), draft.model_dump())

    def test_games_listed_newest_first(self):
        self.store.add_game(ALICE, GameDraft(title="Old", added_date="2023-01-01"))
        self.store.add_game(ALICE, GameDraft(title="New", added_date="2024-01-01"))
        self.assertEqual([g.title for g in self.store.list_games(ALICE)], ["New", "Old"])

    def test_other_users_cannot_see_or_touch_games(self):
        game = self.store.add_game(ALICE, GameDraft(title="Hades"))
        self.assertEqual(self.store.list_games(BOB), [])
        self.assertIsNone(self.store.get_game(BOB, game.id))
        self.assertIsNone(self.store.update_game(BOB, game.id, {"title": "Mine"}))
        self.assertFalse(self.store.delete_game(BOB, game.id))
        self.assertEqual(self.store.get_game(ALICE, game.id).title, "Hades")

    def test_update_stamps_updated_at(self):
        game = self.store.add_game(ALICE, GameDraft(title="Hades"))
        self.assertIsNone(game.updated_at)
        updated = self.store.update_game(ALICE, game.id, {"rating": 3.5})
        self.assertEqual(updated.rating, 3.5)
        self.assertIsNotNone(updated.updated_at)

    def test_delete(self):
        game = self.store.add_game(ALICE, GameDraft(title="Hades"))
        self.assertTrue(self.store.delete_game(ALICE, game.id))
        self.assertIsNone(self.store.get_game(ALICE, game.id))

    def test_listing_while_other_requests_write(self):
        errors = []
        done = threading.Event()

        def churn():
            try:
                for index in range(500):
                    game = self.store.add_game(BOB, GameDraft(title=f"Game {index}"))
                    self.store.delete_game(BOB, game.id)
            except Exception as exc:  # reported by the assertion below
                errors.append(exc)
            finally:
                done.set()

        for index in range(50):
            self.store.add_game(ALICE, GameDraft(title=f"Kept {index}"))
        writer = threading.Thread(target=churn)
        writer.start()
        try:
            while not done.is_set():
                self.assertEqual(len(self.store.list_games(ALICE)), 50)
        except RuntimeError as exc:
            errors.append(exc)
        writer.join()
        self.assertEqual(errors, [])

    def test_profile_created_with_defaults(self):
        self.assertIsNone(self.store.get_profile(ALICE))
        profile = self.store.ensure_profile(ALICE)
        self.assertEqual(profile.id, "alice")
        self.assertEqual(profile.theme_preference, "system")
        self.assertEqual(profile.default_view, "grid")
        self.assertEqual(profile.default_sort, "title-asc")
        self.assertTrue(profile.show_completed_games)

    def test_profile_update(self):
        profile = self.store.update_profile(ALICE, {"username": "al", "default_view": "list"})
        self.assertEqual(profile.username, "al")
        self.assertEqual(profile.default_view, "list")
        self.assertIsNotNone(profile.updated_at)
        self.assertIsNone(self.store.get_profile(BOB))


class SupabaseStoreTests(unittest.TestCase):
    def setUp(self):
        self.requests = []
        self.responses = []
        transport = httpx.MockTransport(self._handler)
        self.store = SupabaseStore(
            "https://project.supabase.co/", "anon-key", httpx.Client(transport=transport)
        )

    def _handler(self, request):
        self.requests.append(request)
        status_code, payload = self.responses.pop(0)
        return httpx.Response(status_code, json=payload)

    def _row(self, **fields):
        row = {
            "id": 7,
            "user_id": "alice",
            "title": "Hades",
            "status": "notStarted",
            "added_date": "2024-01-01",
        }
        row.update(fields)
        return row

    def test_list_scopes_by_user_and_orders(self):
        self.responses.append((200, [self._row()]))
        games = self.store.list_games(ALICE)
        self.assertEqual(games[0].title, "Hades")
        request = self.requests[0]
        self.assertEqual(request.method, "GET")
        self.assertEqual(request.url.path, "/rest/v1/games")
        self.assertEqual(request.url.params["user_id"], "eq.alice")
        self.assertEqual(request.url.params["order"], "added_date.desc")
        self.assertEqual(request.headers["apikey"], "anon-key")
        self.assertEqual(request.headers["Authorization"], "Bearer user-token")

    def test_add_sends_snake_case_row(self):
        self.responses.append((201, [self._row(cover_url="x.jpg")]))
        game = self.store.add_game(ALICE, GameDraft(title="Hades", cover_url="x.jpg"))
        self.assertEqual(game.id, 7)
        request = self.requests[0]
        body = json.loads(request.content)
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.headers["Prefer"], "return=representation")
        self.assertEqual(body[0]["user_id"], "alice")
        self.assertEqual(body[0]["cover_url"], "x.jpg")
        self.assertIsNone(body[0]["release_date"])

    def test_update_filters_by_id_and_owner(self):
        self.responses.append((200, [self._row(rating=4)]))
        game = self.store.update_game(ALICE, 7, {"rating": 4})
        self.assertEqual(game.rating, 4)
        request = self.requests[0]
        self.assertEqual(request.method, "PATCH")
        self.assertEqual(request.url.params["id"], "eq.7")
        self.assertEqual(request.url.params["user_id"], "eq.alice")
        body = json.loads(request.content)
        self.assertEqual(body["rating"], 4)
        self.assertIn("updated_at", body)

    def test_missing_rows_read_as_absent(self):
        self.responses.extend([(200, []), (200, []), (200, [])])
        self.assertIsNone(self.store.get_game(BOB, 7))
        self.assertIsNone(self.store.update_game(BOB, 7, {"rating": 1}))
        self.assertFalse(self.store.delete_game(BOB, 7))

    def test_ensure_profile_inserts_when_missing(self):
        self.responses.extend([(200, []), (201, [{"id": "alice", "default_sort": "title-asc"}])])
        profile = self.store.ensure_profile(ALICE)
        self.assertEqual(profile.id, "alice")
        self.assertEqual([r.method for r in self.requests], ["GET", "POST"])
        body = json.loads(self.requests[1].content)
        self.assertEqual(body[0]["theme_preference"], "system")

    def test_errors_raise_store_error(self):
        self.responses.append((500, {"message": "boom"}))
        with self.assertRaises(StoreError):
            self.store.list_games(ALICE)


if __name__ == "__main__":
    unittest.main()
