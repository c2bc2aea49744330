"""Tests for FastAPI REST endpoints with mocked game_manager."""

from __future__ import annotations

import contextlib
import os
from unittest.mock import AsyncMock, patch

# Disable rate limiting before importing the app module
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")

import pytest
from httpx import ASGITransport, AsyncClient

from homegame.errors import (
    CapacityError,
    IllegalActionError,
    InvalidStateError,
    NotFoundError,
    PotDistributionError,
    TurnError,
)
from homegame.models import SavedGameInfo
from homegame.stats import PlayerStats


@contextlib.asynccontextmanager
async def _noop_lifespan(app):
    yield


# Patch lifespan BEFORE importing app
with patch("homegame.main.lifespan", _noop_lifespan):
    from homegame.main import app as fastapi_app


PATCH_GM = "homegame.main.game_manager"


def _table(status="waiting") -> dict:
    return {"status": status, "players": [], "current_player_id": None}


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test")


@contextlib.contextmanager
def _patch_gm(*names):
    """Patch the named game_manager functions (plus can_undo) with AsyncMocks."""
    with contextlib.ExitStack() as stack:
        mocks = {
            name: stack.enter_context(patch(f"{PATCH_GM}.{name}", new_callable=AsyncMock))
            for name in (*names, "can_undo")
        }
        mocks["can_undo"].return_value = False
        yield mocks


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class TestTableEndpoints:
    @pytest.fixture(autouse=True)
    def _mock(self):
        with _patch_gm("create_table", "get_table", "list_tables", "delete_table") as m:
            self.gm = m
            yield

    async def test_create_table(self):
        self.gm["create_table"].return_value = ("ABC123", _table())
        async with _client() as client:
            resp = await client.post("/api/tables", json={"small_blind": 1, "big_blind": 2})
        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == "ABC123"
        assert body["table"]["status"] == "waiting"
        config = self.gm["create_table"].call_args.args[0]
        assert config.min_bet == 2

    async def test_create_table_defaults(self):
        self.gm["create_table"].return_value = ("ABC123", _table())
        async with _client() as client:
            resp = await client.post("/api/tables", json={})
        assert resp.status_code == 200
        assert self.gm["create_table"].call_args.args[0].big_blind == 10

    @pytest.mark.parametrize(
        "payload",
        [
            {"big_blind": -1},
            {"small_blind": 20, "big_blind": 10},
            {"starting_stack": "lots"},
            {"betting_limit": "spread_limit"},
        ],
    )
    async def test_create_table_validation_error(self, payload):
        async with _client() as client:
            resp = await client.post("/api/tables", json=payload)
        assert resp.status_code == 422
        self.gm["create_table"].assert_not_called()

    async def test_get_table_upper_cases_code(self):
        self.gm["get_table"].return_value = _table()
        self.gm["can_undo"].return_value = True
        async with _client() as client:
            resp = await client.get("/api/tables/abc123")
        assert resp.status_code == 200
        assert resp.json()["can_undo"] is True
        self.gm["get_table"].assert_awaited_once_with("ABC123")

    async def test_get_table_not_found(self):
        self.gm["get_table"].side_effect = NotFoundError("Table not found")
        async with _client() as client:
            resp = await client.get("/api/tables/NOPE00")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Table not found"

    async def test_list_tables(self):
        self.gm["list_tables"].return_value = ["ABC123"]
        async with _client() as client:
            resp = await client.get("/api/tables")
        assert resp.json() == {"codes": ["ABC123"]}

    async def test_delete_table(self):
        async with _client() as client:
            resp = await client.delete("/api/tables/abc123")
        assert resp.status_code == 200
        self.gm["delete_table"].assert_awaited_once_with("ABC123")


# ---------------------------------------------------------------------------
# Seating
# ---------------------------------------------------------------------------


class TestSeatingEndpoints:
    @pytest.fixture(autouse=True)
    def _mock(self):
        with _patch_gm(
            "add_player",
            "remove_player",
            "move_player_seat",
            "set_player_stack",
            "rebuy_player",
            "set_sitting_out",
            "set_dealer",
        ) as m:
            self.gm = m
            for mock in m.values():
                if mock is not m["can_undo"]:
                    mock.return_value = _table()
            yield

    async def test_add_player(self):
        async with _client() as client:
            resp = await client.post(
                "/api/tables/ABC123/players", json={"name": "Alice", "seat": 3, "stack": 500}
            )
        assert resp.status_code == 200
        self.gm["add_player"].assert_awaited_once_with("ABC123", "Alice", 3, 500)

    async def test_add_player_table_full(self):
        self.gm["add_player"].side_effect = CapacityError("Table is full")
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/players", json={"name": "Alice"})
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Table is full"

    async def test_add_player_requires_name(self):
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/players", json={"name": ""})
        assert resp.status_code == 422

    async def test_remove_player(self):
        async with _client() as client:
            resp = await client.delete("/api/tables/ABC123/players/p1")
        assert resp.status_code == 200
        self.gm["remove_player"].assert_awaited_once_with("ABC123", "p1")

    async def test_remove_player_mid_hand(self):
        self.gm["remove_player"].side_effect = InvalidStateError(
            "Cannot remove players while a hand is in progress"
        )
        async with _client() as client:
            resp = await client.delete("/api/tables/ABC123/players/p1")
        assert resp.status_code == 409

    async def test_move_seat(self):
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/players/p1/seat", json={"seat": 4})
        assert resp.status_code == 200
        self.gm["move_player_seat"].assert_awaited_once_with("ABC123", "p1", 4)

    async def test_set_stack(self):
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/players/p1/stack", json={"stack": 0})
        assert resp.status_code == 200
        self.gm["set_player_stack"].assert_awaited_once_with("ABC123", "p1", 0)

    async def test_rebuy_must_be_positive(self):
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/players/p1/rebuy", json={"amount": 0})
        assert resp.status_code == 422

    async def test_sit_out(self):
        async with _client() as client:
            resp = await client.post(
                "/api/tables/ABC123/players/p1/sit_out", json={"sitting_out": False}
            )
        assert resp.status_code == 200
        self.gm["set_sitting_out"].assert_awaited_once_with("ABC123", "p1", False)

    async def test_set_dealer_unknown_player(self):
        self.gm["set_dealer"].side_effect = NotFoundError("Player not found: p9")
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/dealer", json={"player_id": "p9"})
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Hands
# ---------------------------------------------------------------------------


class TestHandEndpoints:
    @pytest.fixture(autouse=True)
    def _mock(self):
        with _patch_gm(
            "start_hand", "perform_action", "end_hand", "end_hand_with_pots", "undo"
        ) as m:
            self.gm = m
            yield

    async def test_start_hand(self):
        self.gm["start_hand"].return_value = _table("in_progress")
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/hands")
        assert resp.status_code == 200
        assert resp.json()["table"]["status"] == "in_progress"

    async def test_start_hand_not_enough_players(self):
        self.gm["start_hand"].side_effect = InvalidStateError(
            "Need at least 2 players with chips to start a hand"
        )
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/hands")
        assert resp.status_code == 409

    async def test_action(self):
        self.gm["perform_action"].return_value = _table("in_progress")
        async with _client() as client:
            resp = await client.post(
                "/api/tables/ABC123/action",
                json={"player_id": "p1", "action": "raise", "amount": 40},
            )
        assert resp.status_code == 200
        self.gm["perform_action"].assert_awaited_once_with("ABC123", "p1", "raise", 40)

    @pytest.mark.parametrize(
        "error,status",
        [
            (TurnError("It is not Alice's turn"), 409),
            (InvalidStateError("No hand in progress"), 409),
            (IllegalActionError("Cannot check, must call or fold"), 400),
            (NotFoundError("Player not found: p9"), 404),
        ],
    )
    async def test_action_errors(self, error, status):
        self.gm["perform_action"].side_effect = error
        async with _client() as client:
            resp = await client.post(
                "/api/tables/ABC123/action", json={"player_id": "p1", "action": "check"}
            )
        assert resp.status_code == status
        assert resp.json()["detail"] == str(error)

    async def test_action_negative_amount(self):
        async with _client() as client:
            resp = await client.post(
                "/api/tables/ABC123/action",
                json={"player_id": "p1", "action": "bet", "amount": -5},
            )
        assert resp.status_code == 422

    async def test_end_hand_with_winner_ids(self):
        distributions = [{"pot_id": "main", "amount": 30, "winners": ["p1"]}]
        self.gm["end_hand"].return_value = (_table(), distributions)
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/end_hand", json={"winner_ids": ["p1"]})
        assert resp.status_code == 200
        assert resp.json()["distributions"] == distributions
        self.gm["end_hand"].assert_awaited_once_with("ABC123", ["p1"])
        self.gm["end_hand_with_pots"].assert_not_called()

    async def test_end_hand_with_pot_winners(self):
        self.gm["end_hand_with_pots"].return_value = (_table(), [])
        async with _client() as client:
            resp = await client.post(
                "/api/tables/ABC123/end_hand",
                json={"winner_ids": ["p2"], "pot_winners": {"main": ["p1"]}},
            )
        assert resp.status_code == 200
        self.gm["end_hand_with_pots"].assert_awaited_once_with(
            "ABC123", {"main": ["p1"], "default": ["p2"]}
        )

    async def test_end_hand_requires_winners(self):
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/end_hand", json={})
        assert resp.status_code == 422

    async def test_end_hand_bad_winner(self):
        self.gm["end_hand"].side_effect = PotDistributionError(
            "No eligible winner designated for pot main"
        )
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/end_hand", json={"winner_ids": ["p3"]})
        assert resp.status_code == 400

    async def test_undo_nothing(self):
        self.gm["undo"].side_effect = InvalidStateError("Nothing to undo")
        async with _client() as client:
            resp = await client.post("/api/tables/ABC123/undo")
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Nothing to undo"


# ---------------------------------------------------------------------------
# Saved games and stats
# ---------------------------------------------------------------------------


class TestSaveEndpoints:
    @pytest.fixture(autouse=True)
    def _mock(self):
        with _patch_gm(
            "save_game", "list_saved_games", "load_game", "delete_saved_game"
        ) as m:
            self.gm = m
            yield

    def _info(self) -> SavedGameInfo:
        return SavedGameInfo(
            id="s1", name="Friday", saved_at=1700000000.0, hand_number=4, player_count=5
        )

    async def test_save(self):
        self.gm["save_game"].return_value = self._info()
        async with _client() as client:
            resp = await client.post("/api/tables/abc123/save", json={"name": "Friday"})
        assert resp.status_code == 200
        assert resp.json()["id"] == "s1"
        self.gm["save_game"].assert_awaited_once_with("ABC123", "Friday")

    async def test_list(self):
        self.gm["list_saved_games"].return_value = [self._info()]
        async with _client() as client:
            resp = await client.get("/api/saves")
        assert [s["name"] for s in resp.json()] == ["Friday"]

    async def test_load(self):
        self.gm["load_game"].return_value = ("NEW123", _table())
        async with _client() as client:
            resp = await client.post("/api/saves/s1/load")
        assert resp.status_code == 200
        assert resp.json()["code"] == "NEW123"
        self.gm["load_game"].assert_awaited_once_with("s1")

    async def test_load_missing(self):
        self.gm["load_game"].side_effect = NotFoundError("Saved game not found")
        async with _client() as client:
            resp = await client.post("/api/saves/gone/load")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Saved game not found"}

    async def test_delete_missing(self):
        self.gm["delete_saved_game"].side_effect = NotFoundError("Saved game not found")
        async with _client() as client:
            resp = await client.delete("/api/saves/nope")
        assert resp.status_code == 404


class TestStatsEndpoints:
    @pytest.fixture(autouse=True)
    def _mock(self):
        with _patch_gm("get_player_stats", "get_historical_stats") as m:
            self.gm = m
            yield

    async def test_player_stats(self):
        self.gm["get_player_stats"].return_value = [
            PlayerStats(player_name="Ann", hands_played=3, vpip=33)
        ]
        async with _client() as client:
            resp = await client.get("/api/stats")
        assert resp.status_code == 200
        body = resp.json()
        assert body[0]["player_name"] == "Ann"
        assert body[0]["action_stats"]["raises"] == 0

    async def test_history_last_n(self):
        self.gm["get_historical_stats"].return_value = []
        async with _client() as client:
            resp = await client.get("/api/stats/history", params={"last_n": 10})
        assert resp.status_code == 200
        self.gm["get_historical_stats"].assert_awaited_once_with(10)

    async def test_history_last_n_must_be_positive(self):
        async with _client() as client:
            resp = await client.get("/api/stats/history", params={"last_n": 0})
        assert resp.status_code == 422
