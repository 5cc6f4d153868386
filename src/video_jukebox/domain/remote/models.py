"""
Remote command models: the durable command row and typed payloads per command type.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from video_jukebox.domain.queue.models import Video


class CommandStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"


class CommandType(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    RESUME = "resume"
    SKIP = "skip"
    SET_VOLUME = "setVolume"
    SEEK_TO = "seekTo"
    QUEUE_ADD = "queue_add"
    QUEUE_SHUFFLE = "queue_shuffle"
    QUEUE_REMOVE = "queue_remove"
    QUEUE_MOVE = "queue_move"
    LOAD_PLAYLIST = "load_playlist"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Command(BaseModel):
    """A remote command as stored in the hub's command table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    player_id: str
    command_type: str  # Kept as str so unknown types can still be acknowledged as failed
    payload: dict[str, Any] = Field(default_factory=dict)
    status: CommandStatus = CommandStatus.PENDING
    source: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)
    executed_at: Optional[datetime] = None
    execution_result: Optional[dict[str, Any]] = None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or _utc_now()
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (now - created).total_seconds()


class StatusUpdate(BaseModel):
    """Terminal status write-back for one command."""

    status: CommandStatus
    executed_at: datetime = Field(default_factory=_utc_now)
    execution_result: Optional[dict[str, Any]] = None


# --------------------------------------------------------------------- payloads


class VideoPayload(BaseModel):
    """Wire shape of a video inside command payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[str] = None
    path: Optional[str] = None
    src: Optional[str] = None
    title: str = ""
    artist: Optional[str] = None
    duration: Optional[float] = None
    playlist: Optional[str] = None
    playlist_display_name: Optional[str] = None
    requested_by: Optional[str] = None

    @model_validator(mode="after")
    def _require_identity(self) -> "VideoPayload":
        if not (self.path or self.src or self.id):
            raise ValueError("video needs a path, src or id")
        return self

    def to_video(self) -> Video:
        return Video(
            path=self.path or self.src or "",
            title=self.title,
            id=self.id,
            artist=self.artist,
            duration=self.duration,
            playlist=self.playlist,
            playlist_display_name=self.playlist_display_name,
            requested_by=self.requested_by,
        )


class PlayPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    video: Optional[VideoPayload] = None
    queue_index: Optional[int] = None


class EmptyPayload(BaseModel):
    pass


class SetVolumePayload(BaseModel):
    volume: float = Field(ge=0.0, le=1.0)


class SeekToPayload(BaseModel):
    position: float = Field(ge=0.0)


class QueueAddPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    video: VideoPayload
    queue_type: Literal["active", "priority"] = "active"
    position: Optional[int] = None


class QueueRemovePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    video_id: str
    queue_type: Literal["active", "priority"] = "active"


class QueueMovePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


class LoadPlaylistPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    playlist_name: str
    shuffle: bool = False
