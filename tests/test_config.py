"""Tests for TOML configuration loading."""

import pytest

from video_jukebox.core.config import Config, create_default_config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("JUKEBOX_PLAYER_ID", raising=False)
    monkeypatch.delenv("JUKEBOX_HUB_URL", raising=False)


def write(tmp_path, text: str):
    path = tmp_path / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_missing_file_writes_default(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    path = tmp_path / "fresh" / "config.toml"

    config = load_config(path)

    assert path.read_text(encoding="utf-8") == create_default_config()
    assert config == Config()


def test_sections_override_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    path = write(
        tmp_path,
        """
[player]
player_id = "lobby"
volume = 0.5

[watchdog]
enabled = false

[commands]
expiry_seconds = 60

[logging]
level = "debug"
""",
    )

    config = load_config(path)

    assert config.player.player_id == "lobby"
    assert config.player.volume == 0.5
    assert config.player.skip_fade_ms == 2000
    assert config.watchdog.enabled is False
    assert config.watchdog.stall_threshold == 3
    assert config.commands.expiry_seconds == 60
    assert config.logging.level == "DEBUG"


def test_unknown_keys_are_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    path = write(tmp_path, '[sync]\ndebounce = 2.0\nfrobnicate = true\n')

    config = load_config(path)
    assert config.sync.debounce == 2.0


def test_invalid_player_section_falls_back(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    path = write(tmp_path, '[player]\nplayer_id = "lobby"\nvolume = 3.0\n')

    config = load_config(path)
    assert config.player.volume == 0.7
    assert config.player.player_id == "default"


def test_malformed_toml_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    path = write(tmp_path, "[player\nvolume = ")

    assert load_config(path) == Config()


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("JUKEBOX_PLAYER_ID", "bar-screen")
    monkeypatch.setenv("JUKEBOX_HUB_URL", "http://hub:8642")
    path = write(tmp_path, '[player]\nplayer_id = "lobby"\n')

    config = load_config(path)
    assert config.player.player_id == "bar-screen"
    assert config.hub.url == "http://hub:8642"
