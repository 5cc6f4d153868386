"""
Playback buffers: the two video surfaces the crossfade controller alternates between.

`PlaybackBuffer` is the boundary interface; `MpvBuffer` drives one mpv process
through its JSON IPC socket.
"""

import asyncio
import json
import os
import socket
import subprocess
import tempfile
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from loguru import logger


class PlaybackError(Exception):
    """A buffer could not start or continue playback."""


class AutoplayBlockedError(PlaybackError):
    """Unmuted playback was refused; muted playback may still succeed."""


class PlaybackInterruptedError(PlaybackError):
    """A play request was superseded by a new load before it started."""


class BufferEventKind(str, Enum):
    ENDED = "ended"
    ERROR = "error"
    TIME_UPDATE = "timeupdate"
    LOADED_METADATA = "loadedmetadata"


@dataclass(frozen=True)
class BufferEvent:
    kind: BufferEventKind
    data: dict[str, Any] = field(default_factory=dict)


class PlaybackBuffer(Protocol):
    """One video surface with its own audio."""

    name: str
    src: Optional[str]
    muted: bool

    @property
    def is_playing(self) -> bool: ...

    @property
    def current_time(self) -> float: ...

    @property
    def duration(self) -> float: ...

    @property
    def volume(self) -> float: ...

    @property
    def opacity(self) -> float: ...

    def load(self, src: str) -> None: ...

    async def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...

    def set_volume(self, volume: float) -> None: ...

    def set_opacity(self, opacity: float) -> None: ...

    async def poll(self) -> list[BufferEvent]: ...


class BufferPair:
    """Two buffers plus the index of the active one, swapped in one step."""

    def __init__(self, first: PlaybackBuffer, second: PlaybackBuffer) -> None:
        self._buffers = [first, second]
        self._active = 0

    @property
    def active(self) -> PlaybackBuffer:
        return self._buffers[self._active]

    @property
    def inactive(self) -> PlaybackBuffer:
        return self._buffers[1 - self._active]

    def swap(self) -> None:
        self._active = 1 - self._active
        logger.debug(f"Active buffer is now {self.active.name}")

    def __iter__(self):
        return iter(self._buffers)


class MpvBuffer:
    """Playback buffer backed by an mpv process with JSON IPC.

    Opacity is emulated with mpv's `brightness` property (0.0 -> -100).
    IPC requests run in order on one worker thread, so setters return at once
    and a slow mpv never stalls the event loop.
    """

    def __init__(
        self,
        name: str,
        mpv_path: str = "mpv",
        socket_path: Optional[str] = None,
        fullscreen: bool = True,
    ) -> None:
        self.name = name
        self.src: Optional[str] = None
        self._mpv_path = mpv_path
        self._socket_path = socket_path or str(
            Path(tempfile.gettempdir()) / f"jukebox-{name}-{os.getpid()}.sock"
        )
        self._fullscreen = fullscreen
        self._process: Optional[subprocess.Popen] = None
        self._ipc = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"mpv-{name}")

        self._playing = False
        self._muted = False
        self._volume = 1.0
        self._opacity = 1.0
        self._current_time = 0.0
        self._duration = 0.0
        self._metadata_reported = False
        self._end_reported = False

    # -------------------------------------------------------------- process

    def start(self, timeout: float = 5.0) -> bool:
        """Start mpv idle with an IPC socket. Returns False if it did not come up."""
        if os.path.exists(self._socket_path):
            os.unlink(self._socket_path)

        cmd = [
            self._mpv_path,
            "--idle=yes",
            "--keep-open=yes",
            "--no-terminal",
            "--pause=yes",
            f"--input-ipc-server={self._socket_path}",
            "--load-scripts=no",
        ]
        if self._fullscreen:
            cmd.append("--fullscreen")

        logger.info(f"Starting mpv buffer {self.name} with socket: {self._socket_path}")
        try:
            self._process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
            )
        except (subprocess.SubprocessError, OSError) as e:
            logger.error(f"Failed to start mpv buffer {self.name}: {e}")
            return False

        start_time = time.time()
        while not os.path.exists(self._socket_path):
            if time.time() - start_time > timeout:
                logger.error(f"mpv socket creation timeout after {timeout}s")
                self._process.kill()
                return False
            time.sleep(0.1)
        return True

    def stop(self) -> None:
        """Stop the mpv process and remove its socket."""
        self._ipc.shutdown(wait=False, cancel_futures=True)
        if self._process:
            try:
                self._process.kill()
                self._process.wait(timeout=2.0)
            except (OSError, subprocess.TimeoutExpired):
                pass  # Already gone
        if os.path.exists(self._socket_path):
            try:
                os.unlink(self._socket_path)
            except OSError:
                pass

    def _request(self, command: list[Any]) -> Optional[dict[str, Any]]:
        """Send one IPC command and return mpv's reply, or None on socket failure."""
        if not os.path.exists(self._socket_path):
            return None
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(2.0)
                sock.connect(self._socket_path)
                sock.sendall((json.dumps({"command": command}) + "\n").encode("utf-8"))
                response = sock.recv(4096).decode("utf-8")
        except OSError as e:
            logger.debug(f"mpv IPC failed on {self.name}: {e}")
            return None

        # mpv may interleave async events; the reply is the line carrying "error"
        for line in response.splitlines():
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if "error" in data:
                return data
        return None

    def _command(self, *args: Any) -> bool:
        reply = self._request(list(args))
        return bool(reply) and reply.get("error") == "success"

    def _send(self, *args: Any) -> Future:
        """Queue one IPC command on the worker thread."""
        return self._ipc.submit(self._command, *args)

    async def drain(self) -> None:
        """Wait until every queued IPC command has been sent."""
        await asyncio.wrap_future(self._ipc.submit(lambda: None))

    def _get(self, name: str) -> Any:
        reply = self._request(["get_property", name])
        if reply and reply.get("error") == "success":
            return reply.get("data")
        return None

    # ---------------------------------------------------------- buffer API

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def current_time(self) -> float:
        return self._current_time

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def opacity(self) -> float:
        return self._opacity

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool) -> None:
        self._muted = value
        self._send("set_property", "mute", value)

    def load(self, src: str) -> None:
        self._ipc.submit(self._load_file, src)
        self.src = src
        self._playing = False
        self._current_time = 0.0
        self._duration = 0.0
        self._metadata_reported = False
        self._end_reported = False

    def _load_file(self, src: str) -> None:
        self._command("set_property", "pause", True)
        if not self._command("loadfile", src, "replace"):
            logger.warning(f"mpv {self.name} rejected loadfile: {src}")

    async def play(self) -> None:
        if not self.src:
            raise PlaybackError(f"Nothing loaded in buffer {self.name}")
        ok = await asyncio.wrap_future(self._send("set_property", "pause", False))
        if not ok:
            raise PlaybackError(f"mpv {self.name} refused to start playback")
        self._playing = True

    def pause(self) -> None:
        self._send("set_property", "pause", True)
        self._playing = False

    def seek(self, position: float) -> None:
        self._current_time = position
        self._send("seek", position, "absolute")

    def set_volume(self, volume: float) -> None:
        self._volume = max(0.0, min(1.0, volume))
        self._send("set_property", "volume", round(self._volume * 100))

    def set_opacity(self, opacity: float) -> None:
        self._opacity = max(0.0, min(1.0, opacity))
        self._send("set_property", "brightness", round((self._opacity - 1.0) * 100))

    async def poll(self) -> list[BufferEvent]:
        """Read playback properties and translate changes into buffer events."""
        if not self.src:
            return []

        position, duration, eof, idle = await asyncio.wrap_future(
            self._ipc.submit(
                lambda: (
                    self._get("time-pos"),
                    self._get("duration"),
                    self._get("eof-reached"),
                    self._get("idle-active"),
                )
            )
        )
        events: list[BufferEvent] = []

        if idle and not self._end_reported and not self._metadata_reported:
            # mpv fell back to idle right after loadfile: the file is unplayable
            self._end_reported = True
            self._playing = False
            events.append(BufferEvent(BufferEventKind.ERROR, {"message": f"Could not load {self.src}"}))
            return events

        if duration and not self._metadata_reported:
            self._duration = float(duration)
            self._metadata_reported = True
            events.append(BufferEvent(BufferEventKind.LOADED_METADATA, {"duration": self._duration}))

        if position is not None:
            self._current_time = float(position)
            events.append(
                BufferEvent(
                    BufferEventKind.TIME_UPDATE,
                    {"current_time": self._current_time, "duration": self._duration},
                )
            )

        if eof and not self._end_reported:
            self._end_reported = True
            self._playing = False
            events.append(BufferEvent(BufferEventKind.ENDED))

        return events
