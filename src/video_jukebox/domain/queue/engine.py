"""
Dual-queue rotation engine.

The active queue rotates: the now-playing active video keeps its slot at
`queue_index` and is moved to the tail when it finishes. The priority queue
is a FIFO of one-shot requests that always play before the next active video
and are discarded after playing.

All operations are synchronous and must be called from a single owner
(the player's event loop). Rejected mutations are logged and reported via
the return value, never raised.
"""

import random
import time
from typing import Callable, Iterable, Optional

from loguru import logger

from .models import NowPlayingSource, QueueSnapshot, Video

QueueObserver = Callable[[QueueSnapshot], None]


class QueueEngine:
    """Owns the queue state; everything else sees immutable snapshots."""

    def __init__(
        self,
        failure_threshold: int = 3,
        failure_window: float = 10.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._active: list[Video] = []
        self._priority: list[Video] = []
        self._now_playing: Optional[Video] = None
        self._source = NowPlayingSource.NONE
        self._queue_index = 0
        self._is_playing = False

        self._failure_threshold = failure_threshold
        self._failure_window = failure_window
        self._last_selected_key: Optional[str] = None
        self._last_selected_at = 0.0
        self._consecutive_failures = 0

        self._rng = rng or random.Random()
        self._clock = clock
        self._observers: list[QueueObserver] = []

    # ------------------------------------------------------------------ reads

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            active_queue=tuple(self._active),
            priority_queue=tuple(self._priority),
            now_playing=self._now_playing,
            now_playing_source=self._source,
            queue_index=self._queue_index,
            is_playing=self._is_playing,
            consecutive_failures=self._consecutive_failures,
        )

    @property
    def now_playing(self) -> Optional[Video]:
        return self._now_playing

    def peek_next(self) -> tuple[Optional[Video], NowPlayingSource]:
        """What advance() would select next, without changing anything."""
        if self._priority:
            return self._priority[0], NowPlayingSource.PRIORITY
        if not self._active:
            return None, NowPlayingSource.NONE

        n = len(self._active)
        if self._source == NowPlayingSource.ACTIVE:
            if n == 1:
                return None, NowPlayingSource.NONE
            return self._active[(self._queue_index + 1) % n], NowPlayingSource.ACTIVE
        return self._active[self._queue_index % n], NowPlayingSource.ACTIVE

    def subscribe(self, observer: QueueObserver) -> Callable[[], None]:
        """Register an observer called with a snapshot after every accepted change.

        Returns:
            Function that removes the observer
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # -------------------------------------------------------------- mutations

    def add_to_active(self, video: Video, position: Optional[int] = None) -> bool:
        """Append (or insert at `position`) a video to the active queue."""
        if self._now_playing and video.key == self._now_playing.key:
            logger.info(f"Rejected add to active queue: '{video.title}' is now playing")
            return False
        if self._index_of(self._active, video.key) is not None:
            logger.info(f"Rejected add to active queue: '{video.title}' already queued")
            return False

        if position is None or not 0 <= position <= len(self._active):
            self._active.append(video)
        else:
            self._active.insert(position, video)
            playing_slot = self._source == NowPlayingSource.ACTIVE
            if position < self._queue_index or (playing_slot and position == self._queue_index):
                self._queue_index += 1

        logger.debug(f"Added '{video.title}' to active queue ({len(self._active)} total)")
        self._notify()
        return True

    def add_to_priority(self, video: Video) -> bool:
        """Append a one-shot request to the priority queue."""
        if self._index_of(self._priority, video.key) is not None:
            logger.info(f"Rejected priority request: '{video.title}' already requested")
            return False

        self._priority.append(video)
        logger.info(
            f"Priority request queued: '{video.title}'"
            + (f" (by {video.requested_by})" if video.requested_by else "")
        )
        self._notify()
        return True

    def remove_from_active(self, index: int) -> Optional[Video]:
        """Remove the active-queue video at `index`. The now-playing slot cannot be removed."""
        if not 0 <= index < len(self._active):
            logger.info(f"Rejected active removal: index {index} out of range")
            return None
        if self._source == NowPlayingSource.ACTIVE and index == self._queue_index:
            logger.info(f"Rejected active removal: index {index} is now playing")
            return None

        removed = self._active.pop(index)
        if index < self._queue_index:
            self._queue_index -= 1
        if self._queue_index >= len(self._active):
            self._queue_index = 0

        logger.debug(f"Removed '{removed.title}' from active queue")
        self._notify()
        return removed

    def remove_from_priority(self, index: int) -> Optional[Video]:
        if not 0 <= index < len(self._priority):
            logger.info(f"Rejected priority removal: index {index} out of range")
            return None

        removed = self._priority.pop(index)
        logger.debug(f"Removed '{removed.title}' from priority queue")
        self._notify()
        return removed

    def remove_by_id(self, video_id: str, queue_type: NowPlayingSource) -> Optional[Video]:
        """Remove a video by identity from the given queue."""
        queue = self._priority if queue_type == NowPlayingSource.PRIORITY else self._active
        index = self._index_of(queue, video_id)
        if index is None:
            logger.info(f"Rejected removal: {video_id} not in {queue_type.value} queue")
            return None
        if queue_type == NowPlayingSource.PRIORITY:
            return self.remove_from_priority(index)
        return self.remove_from_active(index)

    def move_active(self, from_index: int, to_index: int) -> bool:
        """Reorder the active queue, keeping `queue_index` on the same video."""
        n = len(self._active)
        if not (0 <= from_index < n and 0 <= to_index < n):
            logger.info(f"Rejected move {from_index}->{to_index}: out of range")
            return False
        if self._source == NowPlayingSource.ACTIVE and self._queue_index in (from_index, to_index):
            logger.info(f"Rejected move {from_index}->{to_index}: touches now playing")
            return False
        if from_index == to_index:
            return True

        anchor = self._active[self._queue_index] if self._queue_index < n else None
        video = self._active.pop(from_index)
        self._active.insert(to_index, video)
        if anchor is not None:
            self._queue_index = self._index_of(self._active, anchor.key) or 0

        self._notify()
        return True

    def shuffle(self, keep_first: bool = False) -> None:
        """Shuffle the active queue. The priority queue is never touched.

        With `keep_first`, the now-playing video keeps its position and only
        the remaining videos are shuffled.
        """
        if len(self._active) <= 1:
            return

        playing_index = None
        if self._now_playing is not None and self._source == NowPlayingSource.ACTIVE:
            playing_index = self._index_of(self._active, self._now_playing.key)
            if playing_index is None:
                playing_index = self._index_of_path(self._active, self._now_playing.path)

        if keep_first and playing_index is not None:
            playing = self._active.pop(playing_index)
            self._rng.shuffle(self._active)
            self._active.insert(playing_index, playing)
            self._queue_index = playing_index
        else:
            self._rng.shuffle(self._active)
            if playing_index is not None:
                self._queue_index = self._index_of(self._active, self._now_playing.key) or 0
            else:
                self._queue_index = 0

        logger.info(f"Shuffled active queue ({len(self._active)} videos, keep_first={keep_first})")
        self._notify()

    def clear(self) -> None:
        """Empty both queues and stop."""
        self._active.clear()
        self._priority.clear()
        self._now_playing = None
        self._source = NowPlayingSource.NONE
        self._queue_index = 0
        self._is_playing = False
        self._reset_failures()
        self._notify()

    def load_active_queue(self, videos: Iterable[Video]) -> int:
        """Replace the active queue (e.g. a newly loaded playlist).

        A now-playing active video is dropped from the selection; a now-playing
        priority video keeps playing. Duplicate ids are skipped.

        Returns:
            Number of videos loaded
        """
        loaded: list[Video] = []
        seen: set[str] = set()
        for video in videos:
            if video.key in seen:
                logger.warning(f"Skipping duplicate video in playlist: {video.key}")
                continue
            seen.add(video.key)
            loaded.append(video)

        self._active = loaded
        self._queue_index = 0
        if self._source == NowPlayingSource.ACTIVE:
            self._now_playing = None
            self._source = NowPlayingSource.NONE
            self._is_playing = False

        logger.info(f"Loaded {len(loaded)} videos into active queue")
        self._notify()
        return len(loaded)

    def set_playing(self, playing: bool) -> None:
        playing = playing and self._now_playing is not None
        if playing != self._is_playing:
            self._is_playing = playing
            self._notify()

    # ------------------------------------------------------------ transitions

    def start_playback(self) -> Optional[Video]:
        """Initial selection with no recycling: priority head, else active[0]."""
        if self._priority:
            self._select_priority()
        elif self._active:
            self._select_active(0)
        else:
            self._go_idle()
            self._notify()
            return None

        self._register_selection()
        self._notify()
        return self._now_playing

    def advance(self) -> Optional[Video]:
        """Finish the current video and select the next one.

        1. A finished active video is recycled to the tail; a priority video is discarded.
        2. A waiting priority request plays first.
        3. Otherwise the active video following the finished one plays.
        4. A sole active video is kept rather than duplicated.
        5. With both queues empty the engine goes idle.
        """
        recycled_key: Optional[str] = None
        next_index = self._queue_index

        if self._now_playing is not None and self._source == NowPlayingSource.ACTIVE:
            recycled_key = self._now_playing.key
            next_index = self._recycle_now_playing()
        elif self._active:
            next_index = self._queue_index % len(self._active)

        if self._priority:
            self._queue_index = next_index
            self._select_priority()
        elif self._active:
            candidate = self._active[next_index]
            if candidate.key == recycled_key and len(self._active) > 1:
                next_index = (next_index + 1) % len(self._active)
            self._select_active(next_index)
        else:
            self._go_idle()
            self._notify()
            return None

        self._register_selection()
        self._notify()
        return self._now_playing

    def play_index(self, index: int) -> Optional[Video]:
        """Jump to an active-queue position. The previous active video keeps its place."""
        if not 0 <= index < len(self._active):
            logger.info(f"Rejected play: index {index} out of range")
            return None

        self._select_active(index)
        self._register_selection()
        self._notify()
        return self._now_playing

    def play_video(self, video: Video) -> Optional[Video]:
        """Play a specific video now, inserting it after the current slot if not queued."""
        index = self._index_of(self._active, video.key)
        if index is None:
            if self._source == NowPlayingSource.ACTIVE:
                index = self._queue_index + 1
            else:
                index = self._queue_index if self._active else 0
            index = min(index, len(self._active))
            self._active.insert(index, video)
            if self._source == NowPlayingSource.ACTIVE and index <= self._queue_index:
                self._queue_index += 1
        return self.play_index(index)

    # --------------------------------------------------------------- helpers

    def _recycle_now_playing(self) -> int:
        """Move the finished active video to the tail. Returns the index of its successor."""
        index = self._queue_index
        if not (0 <= index < len(self._active)) or self._active[index].key != self._now_playing.key:
            found = self._index_of(self._active, self._now_playing.key)
            if found is None:
                # Removed from the rotation while playing; nothing to recycle
                return index % len(self._active) if self._active else 0
            index = found

        was_last = index == len(self._active) - 1
        finished = self._active.pop(index)
        self._active.append(finished)
        return 0 if was_last else index

    def _select_priority(self) -> None:
        self._now_playing = self._priority.pop(0)
        self._source = NowPlayingSource.PRIORITY
        self._is_playing = True

    def _select_active(self, index: int) -> None:
        self._queue_index = index
        self._now_playing = self._active[index]
        self._source = NowPlayingSource.ACTIVE
        self._is_playing = True

    def _go_idle(self) -> None:
        self._now_playing = None
        self._source = NowPlayingSource.NONE
        self._is_playing = False
        if self._queue_index >= len(self._active):
            self._queue_index = 0

    def _register_selection(self) -> None:
        """Count rapid re-selections of the same video and skip past it at the threshold."""
        video = self._now_playing
        if video is None:
            return

        now = self._clock()
        if (
            video.key == self._last_selected_key
            and now - self._last_selected_at <= self._failure_window
        ):
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0
        self._last_selected_key = video.key
        self._last_selected_at = now

        if self._consecutive_failures >= self._failure_threshold:
            logger.error(
                f"'{video.title}' selected {self._consecutive_failures + 1} times in a row; skipping past it"
            )
            self._reset_failures()
            self._skip_past(video.key)

    def _skip_past(self, bad_key: str) -> None:
        start = self._queue_index + 1 if self._source == NowPlayingSource.ACTIVE else self._queue_index
        if self._priority and self._priority[0].key != bad_key:
            self._select_priority()
            return

        n = len(self._active)
        for step in range(n):
            index = (start + step) % n
            if self._active[index].key != bad_key:
                self._select_active(index)
                return

        logger.warning("No other video available; going idle")
        self._go_idle()

    def _reset_failures(self) -> None:
        self._consecutive_failures = 0
        self._last_selected_key = None
        self._last_selected_at = 0.0

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Queue observer failed")

    @staticmethod
    def _index_of(queue: list[Video], key: str) -> Optional[int]:
        for i, video in enumerate(queue):
            if video.key == key:
                return i
        return None

    @staticmethod
    def _index_of_path(queue: list[Video], path: str) -> Optional[int]:
        for i, video in enumerate(queue):
            if video.path == path:
                return i
        return None
