"""Command table endpoints: create, poll, and acknowledge remote commands."""

import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from video_jukebox.core import database

from ..deps import get_db
from ..schemas import (
    CommandCreate,
    CommandOut,
    CommandStatusUpdate,
    CommandStatusValue,
    MarkExecutedRequest,
    MarkExecutedResponse,
)
from ..sync_manager import sync_manager, state_topic

router = APIRouter()


@router.post("/players/{player_id}/commands", response_model=CommandOut, status_code=201)
async def create_command(player_id: str, body: CommandCreate, db=Depends(get_db)) -> CommandOut:
    """Store a pending command and push it to the player's command topic."""
    try:
        row = database.insert_command(
            db,
            {
                "id": body.id or str(uuid.uuid4()),
                "player_id": player_id,
                "command_type": body.command_type,
                "payload": body.payload,
                "source": body.source,
            },
        )
    except sqlite3.IntegrityError:
        raise HTTPException(409, f"Command {body.id} already exists")

    logger.info(f"Command {row['command_type']} ({row['id']}) queued for {player_id}")
    await sync_manager.broadcast_command(row)
    return CommandOut(**row)


@router.get("/players/{player_id}/commands", response_model=list[CommandOut])
async def list_commands(
    player_id: str,
    status: Optional[CommandStatusValue] = None,
    since: Optional[datetime] = Query(None, description="ISO timestamp; only newer commands"),
    db=Depends(get_db),
) -> list[CommandOut]:
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    rows = database.list_commands(
        db,
        player_id,
        status=status,
        since=since.astimezone(timezone.utc).isoformat() if since else None,
    )
    return [CommandOut(**row) for row in rows]


@router.patch("/commands/{command_id}", response_model=CommandOut)
async def update_command(command_id: str, body: CommandStatusUpdate, db=Depends(get_db)) -> CommandOut:
    """Write a command's terminal status (from the player that executed it)."""
    updated = database.update_command_status(
        db,
        command_id,
        body.status,
        executed_at=body.executed_at.isoformat() if body.executed_at else None,
        execution_result=body.execution_result,
    )
    if not updated:
        raise HTTPException(404, f"Command {command_id} not found")

    row = database.get_command(db, command_id)
    await sync_manager.broadcast(state_topic(row["player_id"]), "command:status", row)
    return CommandOut(**row)


@router.post("/commands/mark-executed", response_model=MarkExecutedResponse)
async def mark_executed(body: MarkExecutedRequest, db=Depends(get_db)) -> MarkExecutedResponse:
    """Batch-acknowledge commands the player already executed."""
    return MarkExecutedResponse(updated=database.mark_commands_executed(db, body.ids))
