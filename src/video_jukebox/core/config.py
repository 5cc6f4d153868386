"""
Configuration management for the video jukebox player
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger


@dataclass
class PlayerConfig:
    """Configuration for the player identity and output volume."""

    player_id: str = "default"
    volume: float = 0.7
    skip_fade_ms: int = 2000
    mpv_path: str = "mpv"
    fullscreen: bool = True

    def validate(self) -> None:
        """Validate player configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if not self.player_id:
            raise ValueError("player_id must not be empty")
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError(f"volume must be within 0.0-1.0, got {self.volume}")
        if self.skip_fade_ms < 0:
            raise ValueError("skip_fade_ms must be >= 0")


@dataclass
class PlaybackConfig:
    """Timing knobs for the two-buffer crossfade controller."""

    video_end_debounce: float = 0.5  # Minimum gap between accepted "ended" events
    dual_play_check_interval: float = 0.5
    safeguard_fade_ms: int = 500  # Fade used to silence a stray second buffer
    play_error_advance_delay: float = 2.0
    autoplay_unmute_delay: float = 0.1
    frame_interval: float = 1 / 60  # Fade step period
    poll_interval: float = 0.25  # How often buffers are polled for events


@dataclass
class WatchdogConfig:
    """Configuration for stalled-playback detection."""

    enabled: bool = True
    interval: float = 2.0
    stall_threshold: int = 3
    start_grace: float = 1.0  # Ignore samples this close to the start
    end_grace: float = 0.5  # Ignore samples this close to the end


@dataclass
class QueueConfig:
    """Configuration for the queue engine."""

    failure_threshold: int = 3
    failure_window: float = 10.0
    shuffle_on_load: bool = False


@dataclass
class CommandsConfig:
    """Configuration for the remote command channel."""

    expiry_seconds: float = 300.0
    processed_id_cap: int = 500
    poll_interval: float = 2.0


@dataclass
class SyncConfig:
    """Configuration for state publishing to the remote store."""

    debounce: float = 1.0
    heartbeat_interval: float = 30.0


@dataclass
class HubConfig:
    """Configuration for the remote hub (command table + state rows)."""

    url: Optional[str] = None  # None = offline, in-process backend
    host: str = "127.0.0.1"
    port: int = 8642
    database_path: Optional[str] = None
    request_timeout: float = 5.0


@dataclass
class PlaylistsConfig:
    """Configuration for the playlist source."""

    playlists_file: Optional[str] = None  # JSON written by an external scanner
    default_playlist: Optional[str] = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/video-jukebox/video-jukebox.log)
    )
    console_output: bool = False  # Also output to stderr (for debugging)


@dataclass
class Config:
    """Main configuration object."""

    player: PlayerConfig = field(default_factory=PlayerConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    hub: HubConfig = field(default_factory=HubConfig)
    playlists: PlaylistsConfig = field(default_factory=PlaylistsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "video-jukebox"
    return Path.home() / ".config" / "video-jukebox"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Current working directory
    2. XDG_CONFIG_HOME/video-jukebox (or ~/.config/video-jukebox)
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "video-jukebox"
    return Path.home() / ".local" / "share" / "video-jukebox"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Video Jukebox Configuration

[player]
# Identifier used for the command topic and the state row
player_id = "default"

# Output volume (0.0-1.0)
volume = 0.7

# Fade length for user-initiated skips
skip_fade_ms = 2000

[playback]
# Minimum seconds between accepted natural end-of-track events
video_end_debounce = 0.5

# Seconds between dual-play safeguard checks
dual_play_check_interval = 0.5

# Seconds to wait before skipping a video that failed to play
play_error_advance_delay = 2.0

[watchdog]
enabled = true
interval = 2.0
stall_threshold = 3

[queue]
# Consecutive re-selections of the same video before it is skipped
failure_threshold = 3
failure_window = 10.0

[commands]
# Pending commands older than this are never executed
expiry_seconds = 300
processed_id_cap = 500
poll_interval = 2.0

[sync]
debounce = 1.0
heartbeat_interval = 30.0

[hub]
# Remote hub base URL; leave unset to run offline
# url = "http://127.0.0.1:8642"
host = "127.0.0.1"
port = 8642

[playlists]
# playlists_file = "~/.local/share/video-jukebox/playlists.json"
# default_playlist = "Main"

[logging]
level = "INFO"
console_output = false
""".strip()


def _section(toml_data: dict, name: str, default):
    """Build a config section from a TOML table, keeping defaults for missing keys."""
    data = toml_data.get(name)
    if not data:
        return default
    known = {k: v for k, v in data.items() if k in default.__dataclass_fields__}
    unknown = set(data) - set(known)
    if unknown:
        logger.warning(f"Ignoring unknown [{name}] keys: {sorted(unknown)}")
    return type(default)(**{**default.__dict__, **known})


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - JUKEBOX_PLAYER_ID
    - JUKEBOX_HUB_URL
    """
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or get_config_path()
    config = Config()

    if not config_path.exists():
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(create_default_config())
            logger.info(f"Created default configuration at: {config_path}")
        except OSError as e:
            logger.warning(f"Could not write default configuration: {e}")
    else:
        try:
            with open(config_path, "rb") as f:
                toml_data = tomllib.load(f)

            config.player = _section(toml_data, "player", config.player)
            config.playback = _section(toml_data, "playback", config.playback)
            config.watchdog = _section(toml_data, "watchdog", config.watchdog)
            config.queue = _section(toml_data, "queue", config.queue)
            config.commands = _section(toml_data, "commands", config.commands)
            config.sync = _section(toml_data, "sync", config.sync)
            config.hub = _section(toml_data, "hub", config.hub)
            config.playlists = _section(toml_data, "playlists", config.playlists)
            config.logging = _section(toml_data, "logging", config.logging)
            config.logging.level = config.logging.level.upper()

            if config.playlists.playlists_file:
                config.playlists.playlists_file = str(
                    Path(config.playlists.playlists_file).expanduser()
                )

            # Validate player config
            try:
                config.player.validate()
            except ValueError as e:
                logger.warning(f"Invalid player configuration: {e}. Using defaults.")
                config.player = PlayerConfig()

        except (OSError, tomllib.TOMLDecodeError, TypeError) as e:
            logger.error(f"Error loading configuration from {config_path}: {e}")
            logger.warning("Using default configuration.")
            config = Config()

    player_id = os.environ.get("JUKEBOX_PLAYER_ID")
    hub_url = os.environ.get("JUKEBOX_HUB_URL")

    if player_id:
        config.player.player_id = player_id
    if hub_url:
        config.hub.url = hub_url

    return config


def ensure_directories() -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
