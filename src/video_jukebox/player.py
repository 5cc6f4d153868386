"""
Jukebox player: one explicitly constructed instance per process.

Wires the queue engine to the crossfade controller, the watchdog, the remote
command channel and the state publisher. Every change of the now-playing
video goes through one lock, so advances from a natural end, a skip, the
watchdog or a remote command never interleave.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from video_jukebox.core.config import Config
from video_jukebox.domain.playback import BufferPair, CrossfadeController, PlaybackWatchdog
from video_jukebox.domain.queue import NowPlayingSource, QueueEngine, QueueSnapshot, Video
from video_jukebox.domain.remote import (
    Command,
    CommandChannel,
    CommandTransport,
    CommandType,
    PlaybackStatus,
    StateSink,
    StateSyncPublisher,
)
from video_jukebox.domain.remote.models import (
    EmptyPayload,
    LoadPlaylistPayload,
    PlayPayload,
    QueueAddPayload,
    QueueMovePayload,
    QueueRemovePayload,
    SeekToPayload,
    SetVolumePayload,
)
from video_jukebox.playlists import PlaylistSource

CommandResult = Optional[dict[str, Any]]


class JukeboxPlayer:
    """Owns the engine, controller, watchdog, command channel and publisher."""

    def __init__(
        self,
        config: Config,
        buffers: BufferPair,
        transport: CommandTransport,
        sink: StateSink,
        playlists: PlaylistSource,
        engine: Optional[QueueEngine] = None,
    ) -> None:
        self.config = config
        self.player_id = config.player.player_id
        self.playlists = playlists

        self.engine = engine or QueueEngine(
            failure_threshold=config.queue.failure_threshold,
            failure_window=config.queue.failure_window,
        )
        self.crossfade = CrossfadeController(
            buffers,
            config.playback,
            volume=config.player.volume,
            skip_fade_ms=config.player.skip_fade_ms,
            on_video_end=self._on_video_end,
            on_advance=self.force_advance,
            on_error=self._on_play_error,
        )
        self.watchdog = PlaybackWatchdog(
            provider=self._sample_playback,
            on_stall=self.force_advance,
            config=config.watchdog,
        )
        self.channel = CommandChannel(self.player_id, transport, config.commands)
        self.publisher = StateSyncPublisher(
            self.player_id,
            sink,
            config.sync,
            position_provider=lambda: self.crossfade.position,
        )

        self._advance_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        self._unsubscribe_engine: Optional[Callable[[], None]] = None
        self._started = False
        self._register_handlers()

    # ----------------------------------------------------------- lifecycle

    async def start(self, playlist_name: Optional[str] = None, autoplay: bool = True) -> None:
        """Load the initial playlist, connect remote control and start playing."""
        if self._started:
            return
        self._started = True
        self._unsubscribe_engine = self.engine.subscribe(self._on_queue_change)

        name = playlist_name or self.config.playlists.default_playlist
        if name:
            try:
                self._load_playlist(name, shuffle=self.config.queue.shuffle_on_load)
            except KeyError:
                logger.warning(f"Initial playlist {name!r} not found")

        await self.publisher.start()
        await self.channel.start()

        self._tasks.append(asyncio.create_task(self.crossfade.run()))
        if self.config.watchdog.enabled:
            self._tasks.append(asyncio.create_task(self.watchdog.run()))

        if autoplay:
            await self.start_playback()
        self._publish(immediate=True)
        logger.info(f"Jukebox player {self.player_id} started")

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.channel.shutdown()
        self.crossfade.stop()
        await self.crossfade.shutdown()
        if self._unsubscribe_engine:
            self._unsubscribe_engine()
            self._unsubscribe_engine = None
        await self.publisher.shutdown()
        logger.info(f"Jukebox player {self.player_id} stopped")

    # ---------------------------------------------------------- transitions

    async def start_playback(self) -> Optional[Video]:
        async with self._advance_lock:
            video = self.engine.start_playback()
            await self._play_now_playing()
            return video

    async def advance(self, reason: str = "ended") -> Optional[Video]:
        """The single serialized entry point for moving to the next video."""
        async with self._advance_lock:
            logger.debug(f"Advancing ({reason})")
            video = self.engine.advance()
            await self._play_now_playing()
            return video

    async def force_advance(self) -> None:
        """Advance without any end-of-track debounce (watchdog, failed play)."""
        await self.advance(reason="forced")

    async def skip(self) -> bool:
        """Fade out the current video; its completion advances. Ignored while a skip is running."""
        if self.engine.now_playing is None or not self.crossfade.current_video:
            await self.advance(reason="skip")
            return True
        return self.crossfade.skip_with_fade()

    async def _play_now_playing(self) -> None:
        video = self.engine.now_playing
        self.watchdog.reset()
        if video is None:
            self.crossfade.stop()
            return

        if await self.crossfade.play_video(video):
            self.engine.set_playing(True)
            self._preload_next()

    def _preload_next(self) -> None:
        upcoming, _ = self.engine.peek_next()
        if upcoming is not None:
            self.crossfade.preload_video(upcoming)

    async def _on_video_end(self) -> None:
        await self.advance(reason="ended")

    def _on_play_error(self, video: Video, message: str) -> None:
        self._publish(immediate=True)

    def _sample_playback(self) -> tuple[float, float, bool]:
        return self.crossfade.position, self.crossfade.duration, self.crossfade.is_playing

    # ----------------------------------------------------------- publishing

    def playback_status(self) -> PlaybackStatus:
        return PlaybackStatus(
            position=self.crossfade.position,
            volume=self.crossfade.volume,
            error=self.crossfade.last_error is not None,
        )

    def _on_queue_change(self, snapshot: QueueSnapshot) -> None:
        self.publisher.publish(snapshot, self.playback_status())

    def _publish(self, immediate: bool = False) -> None:
        self.publisher.publish(self.engine.snapshot(), self.playback_status(), immediate=immediate)

    # ------------------------------------------------------------- commands

    def _register_handlers(self) -> None:
        handlers: dict[CommandType, Callable[[Command], Awaitable[CommandResult]]] = {
            CommandType.PLAY: self._handle_play,
            CommandType.PAUSE: self._handle_pause,
            CommandType.RESUME: self._handle_resume,
            CommandType.SKIP: self._handle_skip,
            CommandType.SET_VOLUME: self._handle_set_volume,
            CommandType.SEEK_TO: self._handle_seek_to,
            CommandType.QUEUE_ADD: self._handle_queue_add,
            CommandType.QUEUE_SHUFFLE: self._handle_queue_shuffle,
            CommandType.QUEUE_REMOVE: self._handle_queue_remove,
            CommandType.QUEUE_MOVE: self._handle_queue_move,
            CommandType.LOAD_PLAYLIST: self._handle_load_playlist,
        }
        for command_type, handler in handlers.items():
            self.channel.on_command(command_type, self._acknowledged(handler))

    def _acknowledged(
        self, handler: Callable[[Command], Awaitable[CommandResult]]
    ) -> Callable[[Command], Awaitable[CommandResult]]:
        """Publish state immediately after a remote command so dashboards see it at once."""

        async def run(command: Command) -> CommandResult:
            result = await handler(command)
            self._publish(immediate=True)
            return result

        return run

    async def _handle_play(self, command: Command) -> CommandResult:
        payload = PlayPayload.model_validate(command.payload)
        async with self._advance_lock:
            if payload.video is not None:
                video = self.engine.play_video(payload.video.to_video())
            elif payload.queue_index is not None:
                video = self.engine.play_index(payload.queue_index)
                if video is None:
                    raise ValueError(f"Queue index {payload.queue_index} out of range")
            elif self.engine.now_playing is not None:
                if not await self.crossfade.resume():
                    await self._play_now_playing()
                self.engine.set_playing(True)
                return {"video": self.engine.now_playing.key}
            else:
                video = self.engine.start_playback()

            if video is None:
                raise ValueError("Nothing to play")
            await self._play_now_playing()
        return {"video": video.key}

    async def _handle_pause(self, command: Command) -> CommandResult:
        EmptyPayload.model_validate(command.payload)
        self.crossfade.pause()
        self.engine.set_playing(False)
        return None

    async def _handle_resume(self, command: Command) -> CommandResult:
        EmptyPayload.model_validate(command.payload)
        if self.engine.now_playing is None:
            if await self.start_playback() is None:
                raise ValueError("Nothing to resume")
            return None
        if not await self.crossfade.resume():
            raise RuntimeError("Playback could not be resumed")
        self.engine.set_playing(True)
        return None

    async def _handle_skip(self, command: Command) -> CommandResult:
        EmptyPayload.model_validate(command.payload)
        started = await self.skip()
        return None if started else {"ignored": "skip already in progress"}

    async def _handle_set_volume(self, command: Command) -> CommandResult:
        payload = SetVolumePayload.model_validate(command.payload)
        self.crossfade.set_volume(payload.volume)
        return {"volume": self.crossfade.volume}

    async def _handle_seek_to(self, command: Command) -> CommandResult:
        payload = SeekToPayload.model_validate(command.payload)
        self.crossfade.seek(payload.position)
        self.watchdog.reset()
        return {"position": payload.position}

    async def _handle_queue_add(self, command: Command) -> CommandResult:
        payload = QueueAddPayload.model_validate(command.payload)
        video = payload.video.to_video()
        if payload.queue_type == "priority":
            accepted = self.engine.add_to_priority(video)
        else:
            accepted = self.engine.add_to_active(video, payload.position)

        if accepted and self.engine.now_playing is None:
            await self.start_playback()
        elif accepted:
            self._preload_next()
        return {"accepted": accepted}

    async def _handle_queue_shuffle(self, command: Command) -> CommandResult:
        EmptyPayload.model_validate(command.payload)
        self.engine.shuffle(keep_first=True)
        self._preload_next()
        return None

    async def _handle_queue_remove(self, command: Command) -> CommandResult:
        payload = QueueRemovePayload.model_validate(command.payload)
        removed = self.engine.remove_by_id(payload.video_id, NowPlayingSource(payload.queue_type))
        self._preload_next()
        return {"accepted": removed is not None}

    async def _handle_queue_move(self, command: Command) -> CommandResult:
        payload = QueueMovePayload.model_validate(command.payload)
        accepted = self.engine.move_active(payload.from_index, payload.to_index)
        self._preload_next()
        return {"accepted": accepted}

    async def _handle_load_playlist(self, command: Command) -> CommandResult:
        payload = LoadPlaylistPayload.model_validate(command.payload)
        try:
            count = self._load_playlist(payload.playlist_name, shuffle=payload.shuffle)
        except KeyError:
            raise ValueError(f"Unknown playlist: {payload.playlist_name}") from None

        if self.engine.now_playing is None:
            await self.start_playback()
        else:
            self._preload_next()
        return {"loaded": count}

    def _load_playlist(self, name: str, shuffle: bool = False) -> int:
        """Replace the active queue with a playlist. Raises KeyError if unknown."""
        playlists = self.playlists.get_playlists()
        videos = playlists[name]
        count = self.engine.load_active_queue(videos)
        if shuffle:
            self.engine.shuffle()
        logger.info(f"Loaded playlist {name!r} ({count} videos)")
        return count
