"""
Playlist sources.

The player never scans the filesystem; it asks a source for a mapping of
playlist name to videos. A JSON file written by an external scanner is the
usual source.
"""

import json
import re
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence

from loguru import logger

from video_jukebox.domain.queue.models import Video

# Folder names like "PL<32-char id>.Name" or "PL<32-char id>_Name"
_YOUTUBE_PREFIX = re.compile(r"^PL[A-Za-z0-9_-]{32}[._](.+)$")


def playlist_display_name(name: str) -> str:
    """Strip a leading YouTube playlist id from a playlist folder name."""
    if not name:
        return ""
    match = _YOUTUBE_PREFIX.match(name)
    return match.group(1) if match else name


class PlaylistSource(Protocol):
    def get_playlists(self) -> dict[str, list[Video]]: ...


def _tag(name: str, videos: Sequence[Video]) -> list[Video]:
    """Fill in playlist fields the source left empty."""
    display = playlist_display_name(name)
    tagged = []
    for video in videos:
        if video.playlist and video.playlist_display_name:
            tagged.append(video)
            continue
        tagged.append(
            Video(
                path=video.path,
                title=video.title,
                id=video.id,
                artist=video.artist,
                duration=video.duration,
                playlist=video.playlist or name,
                playlist_display_name=video.playlist_display_name or display,
                requested_by=video.requested_by,
            )
        )
    return tagged


class StaticPlaylistSource:
    """In-memory playlists, mostly for tests and embedding."""

    def __init__(self, playlists: Mapping[str, Sequence[Video]]) -> None:
        self._playlists = {name: _tag(name, videos) for name, videos in playlists.items()}

    def get_playlists(self) -> dict[str, list[Video]]:
        return {name: list(videos) for name, videos in self._playlists.items()}


class JsonPlaylistSource:
    """Reads `{playlist name: [video, ...]}` from a JSON file on every call.

    Malformed entries are skipped with a warning; a missing or unreadable
    file yields no playlists.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def get_playlists(self) -> dict[str, list[Video]]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Playlist file not found: {self.path}")
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read playlist file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Playlist file {self.path} must contain an object of playlists")
            return {}

        playlists: dict[str, list[Video]] = {}
        for name, items in data.items():
            if not isinstance(items, list):
                logger.warning(f"Skipping playlist {name!r}: expected a list")
                continue
            videos = []
            for item in items:
                try:
                    videos.append(Video.from_dict(item))
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping malformed video in {name!r}: {e}")
            playlists[name] = _tag(name, videos)
        return playlists


def load_playlist_source(playlists_file: Optional[str]) -> PlaylistSource:
    if playlists_file:
        return JsonPlaylistSource(Path(playlists_file))
    return StaticPlaylistSource({})
