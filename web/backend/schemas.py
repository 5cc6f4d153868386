from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

CommandStatusValue = Literal["pending", "executing", "executed", "failed"]


class CommandCreate(BaseModel):
    id: Optional[str] = None  # Generated by the hub when omitted
    command_type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None


class CommandOut(BaseModel):
    id: str
    player_id: str
    command_type: str
    payload: dict[str, Any]
    status: CommandStatusValue
    source: Optional[str] = None
    created_at: datetime
    executed_at: Optional[datetime] = None
    execution_result: Optional[dict[str, Any]] = None


class CommandStatusUpdate(BaseModel):
    status: CommandStatusValue
    executed_at: Optional[datetime] = None
    execution_result: Optional[dict[str, Any]] = None


class MarkExecutedRequest(BaseModel):
    ids: list[str]


class MarkExecutedResponse(BaseModel):
    updated: int


class PlayerStateUpdate(BaseModel):
    """Partial update of a player's state row; only fields that are set are written."""

    status: Optional[Literal["idle", "playing", "paused", "buffering", "error"]] = None
    is_playing: Optional[bool] = None
    now_playing_video: Optional[dict[str, Any]] = None
    current_position: Optional[float] = None
    volume: Optional[float] = None
    active_queue: Optional[list[dict[str, Any]]] = None
    priority_queue: Optional[list[dict[str, Any]]] = None
    queue_index: Optional[int] = None
    is_online: Optional[bool] = None
    last_heartbeat: Optional[datetime] = None


class PlayerState(BaseModel):
    player_id: str
    status: Optional[str] = None
    is_playing: bool = False
    now_playing_video: Optional[dict[str, Any]] = None
    current_position: float = 0.0
    volume: Optional[float] = None
    active_queue: list[dict[str, Any]] = Field(default_factory=list)
    priority_queue: list[dict[str, Any]] = Field(default_factory=list)
    queue_index: int = 0
    is_online: bool = False
    last_heartbeat: Optional[datetime] = None
    updated_at: Optional[datetime] = None
