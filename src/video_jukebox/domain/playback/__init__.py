"""Playback domain: two-buffer crossfading and stall detection."""

from .buffers import (
    AutoplayBlockedError,
    BufferEvent,
    BufferEventKind,
    BufferPair,
    MpvBuffer,
    PlaybackBuffer,
    PlaybackError,
    PlaybackInterruptedError,
)
from .crossfade import CrossfadeController, CrossfadeState
from .watchdog import PlaybackWatchdog

__all__ = [
    "AutoplayBlockedError",
    "BufferEvent",
    "BufferEventKind",
    "BufferPair",
    "CrossfadeController",
    "CrossfadeState",
    "MpvBuffer",
    "PlaybackBuffer",
    "PlaybackError",
    "PlaybackInterruptedError",
    "PlaybackWatchdog",
]
