"""
State sync publisher: pushes queue + playback state to the player's state row.

Publishing never blocks the caller. Debounced writes coalesce to the latest
payload; immediate writes cancel any pending debounced one.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Optional

from loguru import logger

from video_jukebox.core.config import SyncConfig
from video_jukebox.domain.queue.models import QueueSnapshot

from .transport import StateSink

Fingerprint = tuple[Optional[str], bool, tuple[str, ...], tuple[str, ...], int]


@dataclass(frozen=True)
class PlaybackStatus:
    """Playback facts that live outside the queue engine."""

    position: float = 0.0
    volume: float = 1.0
    error: bool = False
    buffering: bool = False


def player_status(snapshot: QueueSnapshot, playback: PlaybackStatus) -> str:
    if playback.error:
        return "error"
    if playback.buffering:
        return "buffering"
    if snapshot.is_playing:
        return "playing"
    return "paused" if snapshot.now_playing else "idle"


def build_state_fields(snapshot: QueueSnapshot, playback: PlaybackStatus) -> dict[str, Any]:
    """Fields written to the state row for one publish."""
    return {
        "status": player_status(snapshot, playback),
        "is_playing": snapshot.is_playing,
        "now_playing_video": snapshot.now_playing.to_dict() if snapshot.now_playing else None,
        "current_position": playback.position,
        "volume": playback.volume,
        "active_queue": [v.to_dict() for v in snapshot.active_queue],
        "priority_queue": [v.to_dict() for v in snapshot.priority_queue],
        "queue_index": snapshot.queue_index,
    }


def fingerprint(snapshot: QueueSnapshot) -> Fingerprint:
    """Reduced view used to skip identical re-publishes. Queue order counts."""
    return (
        snapshot.now_playing.title if snapshot.now_playing else None,
        snapshot.is_playing,
        tuple(v.key for v in snapshot.active_queue),
        tuple(v.key for v in snapshot.priority_queue),
        snapshot.queue_index,
    )


class StateSyncPublisher:
    def __init__(
        self,
        player_id: str,
        sink: StateSink,
        config: Optional[SyncConfig] = None,
        position_provider: Optional[Callable[[], float]] = None,
    ) -> None:
        self.player_id = player_id
        self._sink = sink
        self._config = config or SyncConfig()
        self._position_provider = position_provider

        self._last_fingerprint: Optional[Fingerprint] = None
        self._pending_fields: Optional[dict[str, Any]] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._writes: set[asyncio.Task] = set()
        self._online = False

    @property
    def has_pending(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    def publish(
        self,
        snapshot: QueueSnapshot,
        playback: Optional[PlaybackStatus] = None,
        immediate: bool = False,
    ) -> bool:
        """Schedule a state write.

        A debounced publish of an unchanged fingerprint is skipped and returns
        False. An immediate publish always writes, replacing any pending
        debounced write.
        """
        current = fingerprint(snapshot)
        if current == self._last_fingerprint and not immediate:
            return False
        self._last_fingerprint = current

        fields = build_state_fields(snapshot, playback or PlaybackStatus())
        if immediate:
            self._cancel_debounce()
            self._spawn(self._write(fields))
            return True

        self._pending_fields = fields
        if not self.has_pending:
            self._debounce_task = asyncio.create_task(self._flush_after_debounce())
        return True

    async def _flush_after_debounce(self) -> None:
        await asyncio.sleep(self._config.debounce)
        fields, self._pending_fields = self._pending_fields, None
        self._debounce_task = None
        if fields is not None:
            await self._write(fields)

    def _cancel_debounce(self) -> None:
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None
        self._pending_fields = None

    async def flush(self) -> None:
        """Write any pending debounced payload now and wait for in-flight writes."""
        fields = self._pending_fields
        self._cancel_debounce()
        if fields is not None:
            await self._write(fields)
        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)

    async def _write(self, fields: dict[str, Any]) -> None:
        try:
            await self._sink.update_state(self.player_id, fields)
        except Exception as e:
            logger.warning(f"State sync failed for player {self.player_id}: {e}")

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    # ----------------------------------------------------------- heartbeat

    async def set_online(self, online: bool) -> None:
        self._online = online
        await self._write({"is_online": online, "last_heartbeat": _now_iso()})

    async def heartbeat(self) -> None:
        fields: dict[str, Any] = {"is_online": True, "last_heartbeat": _now_iso()}
        if self._position_provider:
            fields["current_position"] = self._position_provider()
        await self._write(fields)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            await self.heartbeat()

    async def start(self) -> None:
        await self.set_online(True)
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def shutdown(self) -> None:
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            await asyncio.gather(self._heartbeat_task, return_exceptions=True)
            self._heartbeat_task = None
        await self.flush()
        await self.set_online(False)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
