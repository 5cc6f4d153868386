from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from video_jukebox.core import database

from ..deps import open_hub_db
from ..sync_manager import commands_topic, state_topic, sync_manager

router = APIRouter()


@router.websocket("/ws/players/{player_id}/commands")
async def commands_websocket(websocket: WebSocket, player_id: str):
    """Command topic for one player. Messages from the client are ignored."""
    topic = commands_topic(player_id)
    await sync_manager.connect(topic, websocket)
    logger.info(f"Player {player_id} subscribed to commands")

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        sync_manager.disconnect(topic, websocket)
        logger.info(f"Player {player_id} command subscriber disconnected")


@router.websocket("/ws/players/{player_id}/state")
async def state_websocket(websocket: WebSocket, player_id: str):
    """State topic for one player; sends the current row on connect."""
    topic = state_topic(player_id)
    await sync_manager.connect(topic, websocket)

    try:
        with open_hub_db() as conn:
            state = database.get_player_state(conn, player_id)
        await websocket.send_json({"type": "state:full", "data": state})

        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        sync_manager.disconnect(topic, websocket)
