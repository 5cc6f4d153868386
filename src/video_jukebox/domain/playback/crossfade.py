"""
Crossfade controller: coordinates the two playback buffers.

Outside of a fade at most one buffer is audible and visible. Natural ends are
direct cuts; only a user skip ramps volume and opacity down over time.
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Coroutine, Optional

from loguru import logger

from video_jukebox.core.config import PlaybackConfig
from video_jukebox.domain.queue.models import Video

from .buffers import (
    AutoplayBlockedError,
    BufferEvent,
    BufferEventKind,
    BufferPair,
    PlaybackBuffer,
    PlaybackError,
    PlaybackInterruptedError,
)

AsyncCallback = Callable[[], Awaitable[None]]


class CrossfadeState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    ENDING = "ending"  # natural end accepted, waiting for the next video
    SKIP_REQUESTED = "skip_requested"  # fade-out in progress


class CrossfadeController:
    """Drives a BufferPair for one player.

    Callbacks:
        on_video_end: awaited after a natural end or a completed skip fade
        on_advance: awaited after a failed play once the error delay has passed
        on_error: called with the failing video and message
        on_time_update: called with (current_time, duration) from the active buffer
    """

    def __init__(
        self,
        buffers: BufferPair,
        config: Optional[PlaybackConfig] = None,
        volume: float = 1.0,
        skip_fade_ms: int = 2000,
        on_video_end: Optional[AsyncCallback] = None,
        on_advance: Optional[AsyncCallback] = None,
        on_error: Optional[Callable[[Video, str], None]] = None,
        on_time_update: Optional[Callable[[float, float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._buffers = buffers
        self._config = config or PlaybackConfig()
        self._volume = max(0.0, min(1.0, volume))
        self._skip_fade_ms = skip_fade_ms
        self._on_video_end = on_video_end
        self._on_advance = on_advance
        self._on_error = on_error
        self._on_time_update = on_time_update
        self._clock = clock

        self._state = CrossfadeState.IDLE
        self._current: Optional[Video] = None
        self._generation = 0  # bumped on every play_video; stale awaits compare against it
        self._last_end_at: Optional[float] = None
        self._fade_task: Optional[asyncio.Task] = None
        self._safeguard_task: Optional[asyncio.Task] = None
        self._error_advance_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self.last_error: Optional[str] = None

        for buffer in self._buffers:
            buffer.set_volume(0.0)
            buffer.set_opacity(0.0)

    # ------------------------------------------------------------ properties

    @property
    def state(self) -> CrossfadeState:
        return self._state

    @property
    def current_video(self) -> Optional[Video]:
        return self._current

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def is_playing(self) -> bool:
        return self._buffers.active.is_playing

    @property
    def position(self) -> float:
        return self._buffers.active.current_time

    @property
    def duration(self) -> float:
        return self._buffers.active.duration

    @property
    def is_fading(self) -> bool:
        return self._fade_task is not None and not self._fade_task.done()

    # -------------------------------------------------------------- playback

    async def play_video(self, video: Video) -> bool:
        """Direct cut to `video` on the active buffer.

        Uses the preloaded inactive buffer when it already holds the source.
        Returns True once playback has started.
        """
        self.cancel_fade()
        self._cancel_safeguard()
        self._cancel_error_advance()
        self._generation += 1
        generation = self._generation
        self._current = video
        self._state = CrossfadeState.LOADING
        self.last_error = None

        src = video.path
        if self._buffers.inactive.src == src:
            self._buffers.swap()
            logger.debug(f"Using preloaded buffer for {video.title or src}")

        active = self._buffers.active
        inactive = self._buffers.inactive
        if active.src == src:
            active.seek(0.0)
        else:
            active.load(src)

        inactive.pause()
        inactive.set_volume(0.0)
        inactive.set_opacity(0.0)
        active.set_opacity(1.0)
        active.set_volume(self._volume)
        active.muted = False

        try:
            await active.play()
        except PlaybackInterruptedError:
            logger.debug(f"Play of {src} superseded by a newer load")
            return False
        except AutoplayBlockedError:
            logger.warning(f"Unmuted playback blocked for {src}, retrying muted")
            active.muted = True
            try:
                await active.play()
            except PlaybackError as e:
                if generation == self._generation:
                    self._fail(video, str(e))
                return False
            self._spawn(self._unmute_after_delay(active, generation))
        except PlaybackError as e:
            if generation == self._generation:
                self._fail(video, str(e))
            return False

        if generation != self._generation:
            return False
        self._state = CrossfadeState.PLAYING
        logger.info(f"Now playing: {video.title or src}")
        return True

    async def _unmute_after_delay(self, buffer: PlaybackBuffer, generation: int) -> None:
        await asyncio.sleep(self._config.autoplay_unmute_delay)
        if generation == self._generation and buffer is self._buffers.active:
            buffer.muted = False

    def _fail(self, video: Video, message: str) -> None:
        """Surface a playback failure and force an advance after the error delay."""
        logger.error(f"Playback failed for {video.title or video.path}: {message}")
        self.last_error = message
        self._state = CrossfadeState.IDLE
        if self._on_error:
            self._on_error(video, message)
        self._error_advance_task = self._spawn(self._advance_after_error(self._generation))

    async def _advance_after_error(self, generation: int) -> None:
        await asyncio.sleep(self._config.play_error_advance_delay)
        if generation != self._generation:
            return
        self._error_advance_task = None  # the advance below starts a new play
        if self._on_advance:
            await self._on_advance()

    def _cancel_error_advance(self) -> None:
        if self._error_advance_task and not self._error_advance_task.done():
            self._error_advance_task.cancel()
        self._error_advance_task = None

    async def retry(self) -> bool:
        """Replay the current video, e.g. from an error overlay."""
        if self._current is None:
            return False
        return await self.play_video(self._current)

    def stop(self) -> None:
        """Stop both buffers and return to idle (queue emptied)."""
        self.cancel_fade()
        self._cancel_safeguard()
        self._cancel_error_advance()
        self._generation += 1
        for buffer in self._buffers:
            buffer.pause()
            buffer.set_opacity(0.0)
        self._current = None
        self._state = CrossfadeState.IDLE

    def pause(self) -> None:
        self._buffers.active.pause()

    async def resume(self) -> bool:
        active = self._buffers.active
        if not active.src:
            return False
        try:
            await active.play()
        except PlaybackError as e:
            logger.warning(f"Resume failed: {e}")
            return False
        return True

    def seek(self, position: float) -> None:
        self._buffers.active.seek(max(0.0, position))

    def set_volume(self, volume: float) -> None:
        """Set the master volume (clamped to 0-1) on both buffers."""
        self._volume = max(0.0, min(1.0, volume))
        for buffer in self._buffers:
            if buffer is self._buffers.active and self.is_fading:
                continue  # fade ramps from its own start level
            if buffer is self._buffers.inactive and not buffer.is_playing:
                continue  # stays silent until it becomes active
            buffer.set_volume(self._volume)

    # ------------------------------------------------------------------ fades

    async def _ramp(self, buffer: PlaybackBuffer, duration_ms: float) -> None:
        """Linearly ramp a buffer's volume and opacity to zero, one step per frame."""
        start_volume = buffer.volume
        start_opacity = buffer.opacity
        duration = duration_ms / 1000.0
        started = self._clock()
        while True:
            elapsed = self._clock() - started
            progress = 1.0 if duration <= 0 else min(1.0, elapsed / duration)
            buffer.set_volume(start_volume * (1.0 - progress))
            buffer.set_opacity(start_opacity * (1.0 - progress))
            if progress >= 1.0:
                return
            await asyncio.sleep(self._config.frame_interval)

    def skip_with_fade(self, duration_ms: Optional[int] = None) -> bool:
        """Start a fade-out of the active buffer, then end the video.

        A skip while another is fading is ignored. Returns True if a fade started.
        """
        if self.is_fading or self._state == CrossfadeState.SKIP_REQUESTED:
            logger.info("Skip already in progress, ignoring")
            return False

        duration_ms = self._skip_fade_ms if duration_ms is None else duration_ms
        self._state = CrossfadeState.SKIP_REQUESTED
        self._fade_task = self._spawn(self._run_skip_fade(self._buffers.active, duration_ms))
        return True

    async def _run_skip_fade(self, buffer: PlaybackBuffer, duration_ms: float) -> None:
        await self._ramp(buffer, duration_ms)
        buffer.pause()
        buffer.seek(0.0)
        buffer.set_volume(self._volume)
        self._fade_task = None
        self._state = CrossfadeState.ENDING
        if self._on_video_end:
            await self._on_video_end()

    def cancel_fade(self) -> bool:
        """Discard an in-flight skip fade and restore the active buffer immediately."""
        if not self.is_fading:
            return False
        self._fade_task.cancel()
        self._fade_task = None
        active = self._buffers.active
        active.set_volume(self._volume)
        active.set_opacity(1.0)
        self._state = CrossfadeState.PLAYING if active.is_playing else CrossfadeState.IDLE
        logger.debug("Fade cancelled")
        return True

    async def wait_for_fades(self) -> None:
        """Wait until any skip or safeguard fade has finished."""
        pending = [t for t in (self._fade_task, self._safeguard_task) if t and not t.done()]
        if pending:
            await asyncio.wait(pending)

    # ------------------------------------------------------------- preloading

    def preload_video(self, video: Video) -> bool:
        """Load `video` into the inactive buffer without playing it."""
        inactive = self._buffers.inactive
        if inactive.src == video.path:
            return False
        if self._safeguard_task and not self._safeguard_task.done():
            return False
        inactive.pause()
        inactive.set_volume(0.0)
        inactive.set_opacity(0.0)
        inactive.load(video.path)
        logger.debug(f"Preloaded {video.title or video.path} into {inactive.name}")
        return True

    # ------------------------------------------------------- safeguard checks

    def check_dual_play(self) -> bool:
        """Stop the inactive buffer if both are playing outside a fade."""
        if self.is_fading:
            return False
        if self._safeguard_task and not self._safeguard_task.done():
            return False

        active = self._buffers.active
        inactive = self._buffers.inactive
        if not (active.is_playing and inactive.is_playing):
            return False

        logger.warning(f"Both buffers playing, fading out {inactive.name}")
        active.set_opacity(1.0)
        active.set_volume(self._volume)
        self._safeguard_task = self._spawn(self._fade_out_and_stop(inactive))
        return True

    async def _fade_out_and_stop(self, buffer: PlaybackBuffer) -> None:
        await self._ramp(buffer, self._config.safeguard_fade_ms)
        buffer.pause()
        buffer.seek(0.0)

    def _cancel_safeguard(self) -> None:
        """Stop a safeguard fade; the next cut settles both buffers itself."""
        if self._safeguard_task and not self._safeguard_task.done():
            self._safeguard_task.cancel()
        self._safeguard_task = None

    # ----------------------------------------------------------------- events

    async def handle_ended(self, buffer: PlaybackBuffer) -> bool:
        """Accept a natural end from the active buffer, debounced. Returns True if accepted."""
        if buffer is not self._buffers.active:
            logger.debug(f"Ignoring ended event from inactive buffer {buffer.name}")
            return False
        if self._state == CrossfadeState.SKIP_REQUESTED:
            return False

        now = self._clock()
        if self._last_end_at is not None and now - self._last_end_at < self._config.video_end_debounce:
            logger.debug("Ignoring ended event inside debounce window")
            return False

        self._last_end_at = now
        self._state = CrossfadeState.ENDING
        if self._on_video_end:
            await self._on_video_end()
        return True

    def handle_error(self, buffer: PlaybackBuffer, message: str) -> None:
        if buffer is not self._buffers.active:
            logger.warning(f"Preload failed in {buffer.name}: {message}")
            return
        if self._current is not None:
            self._fail(self._current, message)

    def handle_time_update(self, buffer: PlaybackBuffer, current_time: float, duration: float) -> None:
        if buffer is self._buffers.active and self._on_time_update:
            self._on_time_update(current_time, duration)

    def handle_loaded_metadata(self, buffer: PlaybackBuffer, duration: float) -> None:
        logger.debug(f"{buffer.name} loaded metadata, duration {duration:.1f}s")

    async def dispatch(self, buffer: PlaybackBuffer, event: BufferEvent) -> None:
        if event.kind == BufferEventKind.ENDED:
            await self.handle_ended(buffer)
        elif event.kind == BufferEventKind.ERROR:
            self.handle_error(buffer, event.data.get("message", "playback error"))
        elif event.kind == BufferEventKind.TIME_UPDATE:
            self.handle_time_update(
                buffer, event.data.get("current_time", 0.0), event.data.get("duration", 0.0)
            )
        elif event.kind == BufferEventKind.LOADED_METADATA:
            self.handle_loaded_metadata(buffer, event.data.get("duration", 0.0))

    async def run(self) -> None:
        """Poll both buffers for events and run the dual-play check until cancelled."""
        last_check = self._clock()
        while True:
            for buffer in list(self._buffers):
                for event in await buffer.poll():
                    await self.dispatch(buffer, event)

            now = self._clock()
            if now - last_check >= self._config.dual_play_check_interval:
                last_check = now
                self.check_dual_play()

            await asyncio.sleep(self._config.poll_interval)

    # ------------------------------------------------------------------ tasks

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error("Crossfade task failed")

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
