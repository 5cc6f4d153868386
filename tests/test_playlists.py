"""Tests for playlist sources and display names."""

import json

import pytest

from video_jukebox.domain.queue import Video
from video_jukebox.playlists import (
    JsonPlaylistSource,
    StaticPlaylistSource,
    load_playlist_source,
    playlist_display_name,
)

YOUTUBE_ID = "PL" + "aB3_-" * 6 + "xy"  # PL + 32 id characters


@pytest.mark.parametrize(
    "name, expected",
    [
        (f"{YOUTUBE_ID}.Friday Night", "Friday Night"),
        (f"{YOUTUBE_ID}_Chill", "Chill"),
        ("Friday Night", "Friday Night"),
        ("PLshort.Name", "PLshort.Name"),
        ("", ""),
    ],
)
def test_playlist_display_name(name, expected):
    assert playlist_display_name(name) == expected


def test_static_source_tags_videos():
    source = StaticPlaylistSource({f"{YOUTUBE_ID}.Lobby": [Video(path="/v/a.mp4", title="A")]})

    [video] = source.get_playlists()[f"{YOUTUBE_ID}.Lobby"]
    assert video.playlist == f"{YOUTUBE_ID}.Lobby"
    assert video.playlist_display_name == "Lobby"


def test_json_source_skips_malformed_entries(tmp_path):
    path = tmp_path / "playlists.json"
    path.write_text(
        json.dumps(
            {
                "Main": [
                    {"path": "/v/a.mp4", "title": "A", "duration": "12.5"},
                    {"title": "no path"},
                    "not an object",
                    {"src": "/v/b.mp4", "id": "b"},
                ],
                "Broken": "not a list",
            }
        ),
        encoding="utf-8",
    )

    playlists = JsonPlaylistSource(path).get_playlists()

    assert list(playlists) == ["Main"]
    assert [v.key for v in playlists["Main"]] == ["/v/a.mp4", "b"]
    assert playlists["Main"][0].duration == 12.5
    assert playlists["Main"][1].path == "/v/b.mp4"


@pytest.mark.parametrize("content", [None, "{not json", "[1, 2]"])
def test_json_source_unreadable_file_yields_nothing(tmp_path, content):
    path = tmp_path / "playlists.json"
    if content is not None:
        path.write_text(content, encoding="utf-8")

    assert JsonPlaylistSource(path).get_playlists() == {}


def test_load_playlist_source(tmp_path):
    assert isinstance(load_playlist_source(str(tmp_path / "p.json")), JsonPlaylistSource)
    assert load_playlist_source(None).get_playlists() == {}
