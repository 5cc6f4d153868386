"""Shared fixtures: fake playback buffers and fast timing configs."""

from typing import Optional

import pytest

from video_jukebox.core.config import PlaybackConfig, WatchdogConfig
from video_jukebox.domain.playback.buffers import BufferEvent, BufferPair
from video_jukebox.domain.queue.models import Video


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeBuffer:
    """In-memory playback buffer. `play_errors` are raised by play() in order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.src: Optional[str] = None
        self.muted = False
        self.is_playing = False
        self.current_time = 0.0
        self.duration = 0.0
        self.volume = 1.0
        self.opacity = 1.0
        self.loads: list[str] = []
        self.play_calls = 0
        self.play_errors: list[Exception] = []
        self.pending_events: list[BufferEvent] = []

    def load(self, src: str) -> None:
        self.src = src
        self.loads.append(src)
        self.is_playing = False
        self.current_time = 0.0

    async def play(self) -> None:
        self.play_calls += 1
        if self.play_errors:
            raise self.play_errors.pop(0)
        self.is_playing = True

    def pause(self) -> None:
        self.is_playing = False

    def seek(self, position: float) -> None:
        self.current_time = position

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def set_opacity(self, opacity: float) -> None:
        self.opacity = opacity

    async def poll(self) -> list[BufferEvent]:
        events, self.pending_events = self.pending_events, []
        return events


@pytest.fixture
def buffer_a() -> FakeBuffer:
    return FakeBuffer("a")


@pytest.fixture
def buffer_b() -> FakeBuffer:
    return FakeBuffer("b")


@pytest.fixture
def buffers(buffer_a: FakeBuffer, buffer_b: FakeBuffer) -> BufferPair:
    return BufferPair(buffer_a, buffer_b)


@pytest.fixture
def fast_playback() -> PlaybackConfig:
    """Playback timings shrunk so fades and delays finish within a test."""
    return PlaybackConfig(
        video_end_debounce=0.5,
        dual_play_check_interval=0.01,
        safeguard_fade_ms=20,
        play_error_advance_delay=0.02,
        autoplay_unmute_delay=0.01,
        frame_interval=0.001,
        poll_interval=0.005,
    )


@pytest.fixture
def watchdog_config() -> WatchdogConfig:
    return WatchdogConfig(interval=2.0, stall_threshold=3, start_grace=1.0, end_grace=0.5)


def make_video(key: str, **kwargs) -> Video:
    return Video(path=f"/videos/{key}.mp4", title=key.upper(), id=key, **kwargs)


@pytest.fixture
def videos() -> dict[str, Video]:
    """Videos a-f plus priority requests p1, p2 keyed by id."""
    return {key: make_video(key) for key in ("a", "b", "c", "d", "e", "f", "p1", "p2")}
