"""
Playback watchdog: detects a frozen playhead and forces the queue forward.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from video_jukebox.core.config import WatchdogConfig

# (current_time, duration, is_playing) of the active buffer
PlaybackSample = tuple[float, float, bool]


class PlaybackWatchdog:
    """Counts consecutive stalled samples and fires `on_stall` at the threshold."""

    def __init__(
        self,
        provider: Callable[[], PlaybackSample],
        on_stall: Callable[[], Awaitable[None]],
        config: Optional[WatchdogConfig] = None,
    ) -> None:
        self._provider = provider
        self._on_stall = on_stall
        self._config = config or WatchdogConfig()
        self._last_time: Optional[float] = None
        self._stall_count = 0

    @property
    def stall_count(self) -> int:
        return self._stall_count

    def reset(self) -> None:
        self._last_time = None
        self._stall_count = 0

    def is_stalled(self, current_time: float, duration: float, is_playing: bool) -> bool:
        """True when this sample alone looks stalled against the previous one."""
        if not is_playing:
            return False
        if current_time <= self._config.start_grace:
            return False
        if duration > 0 and current_time >= duration - self._config.end_grace:
            return False
        return self._last_time is not None and current_time == self._last_time

    def sample(self, current_time: float, duration: float, is_playing: bool) -> bool:
        """Record one sample. Returns True when the stall threshold is reached.

        Any non-stalled sample resets the counter; reaching the threshold
        resets all state so the next recovery needs a fresh run of stalls.
        """
        stalled = self.is_stalled(current_time, duration, is_playing)
        self._last_time = current_time

        if not stalled:
            self._stall_count = 0
            return False

        self._stall_count += 1
        logger.debug(
            f"Playback stalled at {current_time:.2f}s "
            f"({self._stall_count}/{self._config.stall_threshold})"
        )
        if self._stall_count >= self._config.stall_threshold:
            logger.warning(f"Playback stuck at {current_time:.2f}s, forcing advance")
            self.reset()
            return True
        return False

    async def check(self) -> bool:
        """Take one sample from the provider and recover if stalled."""
        current_time, duration, is_playing = self._provider()
        if self.sample(current_time, duration, is_playing):
            await self._on_stall()
            return True
        return False

    async def run(self) -> None:
        """Check every `interval` seconds until cancelled."""
        while True:
            await asyncio.sleep(self._config.interval)
            try:
                await self.check()
            except Exception:
                logger.exception("Watchdog recovery failed")
