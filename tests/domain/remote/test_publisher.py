"""Tests for debounced state publishing and heartbeats."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from video_jukebox.core.config import SyncConfig
from video_jukebox.domain.queue import NowPlayingSource, QueueSnapshot, Video
from video_jukebox.domain.remote import (
    MemoryBackend,
    PlaybackStatus,
    StateSyncPublisher,
    build_state_fields,
    player_status,
)

VIDEO_A = Video(path="/videos/a.mp4", title="A", id="a")
VIDEO_B = Video(path="/videos/b.mp4", title="B", id="b")


def playing(video: Video, *queue: Video) -> QueueSnapshot:
    active = (video, *queue)
    return QueueSnapshot(
        active_queue=active,
        now_playing=video,
        now_playing_source=NowPlayingSource.ACTIVE,
        queue_index=0,
        is_playing=True,
    )


@pytest.fixture
def sink() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def publisher(sink: MemoryBackend) -> StateSyncPublisher:
    return StateSyncPublisher("player-1", sink, SyncConfig(debounce=0.02, heartbeat_interval=60.0))


class TestStateFields:
    def test_fields_cover_queue_and_playback(self) -> None:
        fields = build_state_fields(playing(VIDEO_A, VIDEO_B), PlaybackStatus(position=12.5, volume=0.6))

        assert fields["status"] == "playing"
        assert fields["now_playing_video"]["title"] == "A"
        assert [v["id"] for v in fields["active_queue"]] == ["a", "b"]
        assert fields["priority_queue"] == []
        assert fields["current_position"] == 12.5
        assert fields["volume"] == 0.6
        assert fields["queue_index"] == 0

    @pytest.mark.parametrize(
        "snapshot, playback, expected",
        [
            (QueueSnapshot(), PlaybackStatus(), "idle"),
            (QueueSnapshot(now_playing=VIDEO_A, is_playing=False), PlaybackStatus(), "paused"),
            (playing(VIDEO_A), PlaybackStatus(buffering=True), "buffering"),
            (playing(VIDEO_A), PlaybackStatus(error=True), "error"),
        ],
    )
    def test_player_status(self, snapshot, playback, expected) -> None:
        assert player_status(snapshot, playback) == expected


class TestPublish:
    @pytest.mark.anyio
    async def test_debounced_publishes_coalesce_to_latest(self, publisher, sink) -> None:
        assert publisher.publish(playing(VIDEO_A)) is True
        assert publisher.publish(playing(VIDEO_B)) is True
        assert sink.state_writes == []

        await asyncio.sleep(0.05)

        assert len(sink.state_writes) == 1
        assert sink.get_state("player-1")["now_playing_video"]["title"] == "B"

    @pytest.mark.anyio
    async def test_unchanged_fingerprint_is_skipped(self, publisher, sink) -> None:
        assert publisher.publish(playing(VIDEO_A), immediate=True) is True
        assert publisher.publish(playing(VIDEO_A), PlaybackStatus(position=30.0)) is False
        await publisher.flush()
        assert len(sink.state_writes) == 1

    @pytest.mark.anyio
    async def test_immediate_always_writes(self, publisher, sink) -> None:
        publisher.publish(playing(VIDEO_A), immediate=True)
        assert publisher.publish(playing(VIDEO_A), PlaybackStatus(position=8.0), immediate=True) is True
        await publisher.flush()
        assert len(sink.state_writes) == 2
        assert sink.get_state("player-1")["current_position"] == 8.0

    @pytest.mark.anyio
    async def test_reorder_changes_fingerprint(self, publisher, sink) -> None:
        video_c = Video(path="/videos/c.mp4", title="C", id="c")
        publisher.publish(playing(VIDEO_A, VIDEO_B, video_c), immediate=True)
        assert publisher.publish(playing(VIDEO_A, video_c, VIDEO_B)) is True
        await publisher.flush()

        assert [v["id"] for v in sink.get_state("player-1")["active_queue"]] == ["a", "c", "b"]

    @pytest.mark.anyio
    async def test_immediate_cancels_pending_debounce(self, publisher, sink) -> None:
        publisher.publish(playing(VIDEO_A))
        assert publisher.has_pending

        publisher.publish(playing(VIDEO_B), immediate=True)
        assert not publisher.has_pending
        await asyncio.sleep(0.05)

        assert len(sink.state_writes) == 1
        assert sink.state_writes[0][1]["now_playing_video"]["title"] == "B"

    @pytest.mark.anyio
    async def test_immediate_flushes_pending_write_of_same_state(self, publisher, sink) -> None:
        publisher.publish(playing(VIDEO_A))
        assert publisher.publish(playing(VIDEO_A), immediate=True) is True
        await publisher.flush()

        assert len(sink.state_writes) == 1
        assert not publisher.has_pending

    @pytest.mark.anyio
    async def test_sink_failure_is_logged_not_raised(self) -> None:
        sink = AsyncMock()
        sink.update_state.side_effect = ConnectionError("hub unreachable")
        publisher = StateSyncPublisher("player-1", sink, SyncConfig(debounce=0.01))

        publisher.publish(playing(VIDEO_A), immediate=True)
        await publisher.flush()

        sink.update_state.assert_awaited_once()


class TestHeartbeat:
    @pytest.mark.anyio
    async def test_heartbeat_reports_online_and_position(self, sink) -> None:
        publisher = StateSyncPublisher("player-1", sink, position_provider=lambda: 42.0)
        await publisher.heartbeat()

        state = sink.get_state("player-1")
        assert state["is_online"] is True
        assert state["current_position"] == 42.0
        assert "last_heartbeat" in state

    @pytest.mark.anyio
    async def test_start_and_shutdown_toggle_online(self, publisher, sink) -> None:
        await publisher.start()
        assert sink.get_state("player-1")["is_online"] is True

        publisher.publish(playing(VIDEO_A))
        await publisher.shutdown()

        state = sink.get_state("player-1")
        assert state["is_online"] is False
        assert state["now_playing_video"]["title"] == "A"  # pending write flushed first
