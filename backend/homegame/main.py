"""FastAPI application: REST endpoints for the table operator UI."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from homegame import game_manager, redis_client
from homegame.errors import (
    CapacityError,
    InvalidStateError,
    NotFoundError,
    PokerError,
    TurnError,
)
from homegame.models import (
    ActionRequest,
    AddPlayerRequest,
    DealerRequest,
    EndHandRequest,
    EndHandResponse,
    GameConfig,
    RebuyRequest,
    SavedGameInfo,
    SaveGameRequest,
    SeatRequest,
    SitOutRequest,
    StackRequest,
    TableResponse,
)
from homegame.stats import PlayerStats

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await redis_client.close()


app = FastAPI(title="Home Game Table API", lifespan=lifespan)

# ---------- Rate Limiting ----------

_rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "1") != "0"

limiter = Limiter(
    key_func=get_remote_address,
    enabled=_rate_limit_enabled,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down."},
    )


# ---------- Error mapping ----------

_ERROR_STATUS: list[tuple[type[PokerError], int]] = [
    (NotFoundError, 404),
    (TurnError, 409),
    (InvalidStateError, 409),
    (CapacityError, 409),
]


@app.exception_handler(PokerError)
async def _poker_error_handler(request: Request, exc: PokerError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400)
    logger.debug("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _table_response(code: str, table: dict) -> TableResponse:
    return TableResponse(
        code=code, table=table, can_undo=await game_manager.can_undo(code)
    )


# ---------- Tables ----------


@app.post("/api/tables", response_model=TableResponse)
@limiter.limit("10/minute")
async def create_table(request: Request, config: GameConfig):
    code, table = await game_manager.create_table(config)
    return TableResponse(code=code, table=table)


@app.get("/api/tables")
@limiter.limit("30/minute")
async def list_tables(request: Request):
    return {"codes": await game_manager.list_tables()}


@app.get("/api/tables/{code}", response_model=TableResponse)
@limiter.limit("60/minute")
async def get_table(request: Request, code: str):
    code = code.upper()
    return await _table_response(code, await game_manager.get_table(code))


@app.delete("/api/tables/{code}")
@limiter.limit("10/minute")
async def delete_table(request: Request, code: str):
    await game_manager.delete_table(code.upper())
    return {"ok": True}


# ---------- Seating ----------


@app.post("/api/tables/{code}/players", response_model=TableResponse)
@limiter.limit("30/minute")
async def add_player(request: Request, code: str, req: AddPlayerRequest):
    code = code.upper()
    table = await game_manager.add_player(code, req.name, req.seat, req.stack)
    return await _table_response(code, table)


@app.delete("/api/tables/{code}/players/{player_id}", response_model=TableResponse)
@limiter.limit("30/minute")
async def remove_player(request: Request, code: str, player_id: str):
    code = code.upper()
    table = await game_manager.remove_player(code, player_id)
    return await _table_response(code, table)


@app.post("/api/tables/{code}/players/{player_id}/seat", response_model=TableResponse)
@limiter.limit("30/minute")
async def move_player_seat(request: Request, code: str, player_id: str, req: SeatRequest):
    code = code.upper()
    table = await game_manager.move_player_seat(code, player_id, req.seat)
    return await _table_response(code, table)


@app.post("/api/tables/{code}/players/{player_id}/stack", response_model=TableResponse)
@limiter.limit("30/minute")
async def set_player_stack(request: Request, code: str, player_id: str, req: StackRequest):
    code = code.upper()
    table = await game_manager.set_player_stack(code, player_id, req.stack)
    return await _table_response(code, table)


@app.post("/api/tables/{code}/players/{player_id}/rebuy", response_model=TableResponse)
@limiter.limit("30/minute")
async def rebuy_player(request: Request, code: str, player_id: str, req: RebuyRequest):
    code = code.upper()
    table = await game_manager.rebuy_player(code, player_id, req.amount)
    return await _table_response(code, table)


@app.post("/api/tables/{code}/players/{player_id}/sit_out", response_model=TableResponse)
@limiter.limit("30/minute")
async def set_sitting_out(request: Request, code: str, player_id: str, req: SitOutRequest):
    code = code.upper()
    table = await game_manager.set_sitting_out(code, player_id, req.sitting_out)
    return await _table_response(code, table)


@app.post("/api/tables/{code}/dealer", response_model=TableResponse)
@limiter.limit("30/minute")
async def set_dealer(request: Request, code: str, req: DealerRequest):
    code = code.upper()
    table = await game_manager.set_dealer(code, req.player_id)
    return await _table_response(code, table)


# ---------- Hands ----------


@app.post("/api/tables/{code}/hands", response_model=TableResponse)
@limiter.limit("30/minute")
async def start_hand(request: Request, code: str):
    code = code.upper()
    table = await game_manager.start_hand(code)
    return await _table_response(code, table)


@app.post("/api/tables/{code}/action", response_model=TableResponse)
@limiter.limit("120/minute")
async def perform_action(request: Request, code: str, req: ActionRequest):
    code = code.upper()
    table = await game_manager.perform_action(code, req.player_id, req.action, req.amount)
    return await _table_response(code, table)


@app.post("/api/tables/{code}/end_hand", response_model=EndHandResponse)
@limiter.limit("30/minute")
async def end_hand(request: Request, code: str, req: EndHandRequest):
    code = code.upper()
    if req.pot_winners:
        pot_winners = dict(req.pot_winners)
        if req.winner_ids:
            pot_winners.setdefault("default", req.winner_ids)
        table, distributions = await game_manager.end_hand_with_pots(code, pot_winners)
    else:
        table, distributions = await game_manager.end_hand(code, req.winner_ids)
    return EndHandResponse(
        code=code,
        table=table,
        distributions=distributions,
        can_undo=await game_manager.can_undo(code),
    )


@app.post("/api/tables/{code}/undo", response_model=TableResponse)
@limiter.limit("60/minute")
async def undo(request: Request, code: str):
    code = code.upper()
    table = await game_manager.undo(code)
    return await _table_response(code, table)


# ---------- Saved games ----------


@app.post("/api/tables/{code}/save", response_model=SavedGameInfo)
@limiter.limit("10/minute")
async def save_game(request: Request, code: str, req: SaveGameRequest):
    return await game_manager.save_game(code.upper(), req.name)


@app.get("/api/saves", response_model=list[SavedGameInfo])
@limiter.limit("30/minute")
async def list_saved_games(request: Request):
    return await game_manager.list_saved_games()


@app.post("/api/saves/{save_id}/load", response_model=TableResponse)
@limiter.limit("10/minute")
async def load_game(request: Request, save_id: str):
    code, table = await game_manager.load_game(save_id)
    return TableResponse(code=code, table=table)


@app.delete("/api/saves/{save_id}")
@limiter.limit("10/minute")
async def delete_saved_game(request: Request, save_id: str):
    await game_manager.delete_saved_game(save_id)
    return {"ok": True}


# ---------- Stats ----------


@app.get("/api/stats", response_model=list[PlayerStats])
@limiter.limit("30/minute")
async def get_player_stats(request: Request):
    return await game_manager.get_player_stats()


@app.get("/api/stats/history", response_model=list[PlayerStats])
@limiter.limit("30/minute")
async def get_historical_stats(
    request: Request, last_n: Optional[int] = Query(default=None, ge=1)
):
    return await game_manager.get_historical_stats(last_n)
