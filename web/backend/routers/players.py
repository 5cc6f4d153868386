"""Player state rows: partial updates from players, reads for dashboards."""

from fastapi import APIRouter, Depends, HTTPException

from video_jukebox.core import database

from ..deps import get_db
from ..schemas import PlayerState, PlayerStateUpdate
from ..sync_manager import sync_manager

router = APIRouter()


def _to_schema(row: dict) -> PlayerState:
    return PlayerState(
        **{
            **row,
            "active_queue": row.get("active_queue") or [],
            "priority_queue": row.get("priority_queue") or [],
            "current_position": row.get("current_position") or 0.0,
            "queue_index": row.get("queue_index") or 0,
        }
    )


@router.patch("/players/{player_id}/state", response_model=PlayerState)
async def update_state(player_id: str, body: PlayerStateUpdate, db=Depends(get_db)) -> PlayerState:
    """Merge the given fields into the player's row and broadcast the result."""
    fields = body.model_dump(exclude_unset=True, mode="json")
    row = database.update_player_state(db, player_id, fields)
    state = _to_schema(row)
    await sync_manager.broadcast_state(player_id, state.model_dump(mode="json"))
    return state


@router.get("/players/{player_id}/state", response_model=PlayerState)
async def get_state(player_id: str, db=Depends(get_db)) -> PlayerState:
    row = database.get_player_state(db, player_id)
    if row is None:
        raise HTTPException(404, f"Player {player_id} not found")
    return _to_schema(row)
