"""Queue domain - dual-queue rotation state machine.

This domain handles:
- The active queue (rotating playlist, recycled after playing)
- The priority queue (one-shot requests, never recycled)
- Now-playing selection and the repeated-failure guard
"""

from .engine import QueueEngine, QueueObserver
from .models import EngineState, NowPlayingSource, QueueSnapshot, Video

__all__ = [
    "QueueEngine",
    "QueueObserver",
    "EngineState",
    "NowPlayingSource",
    "QueueSnapshot",
    "Video",
]
