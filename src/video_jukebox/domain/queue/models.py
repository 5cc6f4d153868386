"""
Queue domain models.

Contains plain data structures for videos and immutable queue snapshots.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class Video:
    """Represents a playable video file with display metadata.

    Identity is `id` when present, otherwise `path`.
    """

    path: str
    title: str = ""
    id: Optional[str] = None
    artist: Optional[str] = None
    duration: Optional[float] = None  # in seconds
    playlist: Optional[str] = None
    playlist_display_name: Optional[str] = None
    requested_by: Optional[str] = None  # Kiosk/user that queued a priority request

    @property
    def key(self) -> str:
        """Identity used for duplicate detection and now-playing lookups."""
        return self.id or self.path

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape used by commands and state rows."""
        return {
            "id": self.key,
            "path": self.path,
            "title": self.title,
            "artist": self.artist,
            "duration": self.duration,
            "playlist": self.playlist,
            "playlistDisplayName": self.playlist_display_name,
            "requestedBy": self.requested_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Video":
        """Build a Video from a wire dict. Accepts `src`/`file_path` for the path.

        Raises:
            ValueError: If the dict has neither a path nor an id
        """
        path = data.get("path") or data.get("src") or data.get("file_path")
        video_id = data.get("id")
        if not path and not video_id:
            raise ValueError(f"Video requires a path or an id: {data!r}")

        duration = data.get("duration")
        return cls(
            path=path or "",
            title=data.get("title") or "",
            id=str(video_id) if video_id is not None else None,
            artist=data.get("artist"),
            duration=float(duration) if duration is not None else None,
            playlist=data.get("playlist"),
            playlist_display_name=(
                data.get("playlistDisplayName") or data.get("playlist_display_name")
            ),
            requested_by=data.get("requestedBy") or data.get("requested_by"),
        )


class NowPlayingSource(str, Enum):
    """Which queue the now-playing video came from; decides recycling on advance."""

    ACTIVE = "active"
    PRIORITY = "priority"
    NONE = "none"


class EngineState(str, Enum):
    """The four states of the rotation state machine."""

    EMPTY = "empty"  # Both queues empty, nothing playing
    PLAYING_FROM_ACTIVE = "playing_from_active"
    PLAYING_FROM_PRIORITY = "playing_from_priority"
    IDLE = "idle"  # Videos queued but nothing selected


@dataclass(frozen=True)
class QueueSnapshot:
    """Immutable read-only view of the queue state."""

    active_queue: tuple[Video, ...] = ()
    priority_queue: tuple[Video, ...] = ()
    now_playing: Optional[Video] = None
    now_playing_source: NowPlayingSource = NowPlayingSource.NONE
    queue_index: int = 0
    is_playing: bool = False
    consecutive_failures: int = field(default=0, compare=False)

    @property
    def state(self) -> EngineState:
        if self.now_playing_source == NowPlayingSource.ACTIVE:
            return EngineState.PLAYING_FROM_ACTIVE
        if self.now_playing_source == NowPlayingSource.PRIORITY:
            return EngineState.PLAYING_FROM_PRIORITY
        if self.active_queue or self.priority_queue:
            return EngineState.IDLE
        return EngineState.EMPTY

    @property
    def up_next(self) -> tuple[Video, ...]:
        """Active videos in play order after the current one, excluding the now-playing video."""
        if not self.active_queue:
            return ()
        n = len(self.active_queue)
        if self.now_playing_source == NowPlayingSource.ACTIVE:
            start = self.queue_index + 1
            ordered = [self.active_queue[(start + i) % n] for i in range(n - 1)]
        else:
            start = self.queue_index % n
            ordered = [self.active_queue[(start + i) % n] for i in range(n)]
        playing_key = self.now_playing.key if self.now_playing else None
        return tuple(v for v in ordered if v.key != playing_key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_queue": [v.to_dict() for v in self.active_queue],
            "priority_queue": [v.to_dict() for v in self.priority_queue],
            "now_playing": self.now_playing.to_dict() if self.now_playing else None,
            "now_playing_source": self.now_playing_source.value,
            "queue_index": self.queue_index,
            "is_playing": self.is_playing,
        }
