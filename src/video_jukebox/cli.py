"""
Video Jukebox CLI - entry point for the player, the hub and admin commands.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from video_jukebox.core.config import Config, ensure_directories, load_config
from video_jukebox.core.output import log, setup_from_config


def run_player(config: Config, playlist: Optional[str], autoplay: bool, offline: bool) -> int:
    """Run the player until interrupted."""
    from video_jukebox.domain.playback import BufferPair, MpvBuffer
    from video_jukebox.domain.remote import HubClient, MemoryBackend
    from video_jukebox.player import JukeboxPlayer
    from video_jukebox.playlists import load_playlist_source

    buffers = [
        MpvBuffer(name, mpv_path=config.player.mpv_path, fullscreen=config.player.fullscreen)
        for name in ("buffer-a", "buffer-b")
    ]
    for buffer in buffers:
        if not buffer.start():
            print(f"Error: could not start mpv ({config.player.mpv_path})", file=sys.stderr)
            for started in buffers:
                started.stop()
            return 1

    async def main() -> None:
        hub: Optional[HubClient] = None
        if config.hub.url and not offline:
            hub = HubClient(config.hub.url, timeout=config.hub.request_timeout)
            transport = sink = hub
        else:
            logger.info("No hub configured; remote control is in-process only")
            transport = sink = MemoryBackend()

        player = JukeboxPlayer(
            config,
            BufferPair(*buffers),
            transport,
            sink,
            load_playlist_source(config.playlists.playlists_file),
        )
        try:
            await player.start(playlist_name=playlist, autoplay=autoplay)
            await asyncio.Event().wait()
        finally:
            await player.shutdown()
            for buffer in buffers:
                await buffer.drain()
            if hub:
                await hub.close()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nStopped.")
    finally:
        for buffer in buffers:
            buffer.stop()
    return 0


def run_hub(config: Config, host: Optional[str], port: Optional[int]) -> int:
    """Serve the hub API (run from the repository root)."""
    import uvicorn

    if config.hub.database_path:
        os.environ.setdefault("JUKEBOX_HUB_DB", config.hub.database_path)
    uvicorn.run(
        "web.backend.main:app",
        host=host or config.hub.host,
        port=port or config.hub.port,
        log_level=config.logging.level.lower(),
    )
    return 0


def send_remote_command(
    config: Config, command_type: str, payload: str, player_id: Optional[str]
) -> int:
    """Send one command to a player through the hub."""
    from video_jukebox.domain.remote import HubClient, TransportError, send_command

    if not config.hub.url:
        print("Error: no hub URL configured (set [hub] url or JUKEBOX_HUB_URL)", file=sys.stderr)
        return 1
    try:
        payload_data = json.loads(payload) if payload else {}
    except json.JSONDecodeError as e:
        print(f"Error: payload is not valid JSON: {e}", file=sys.stderr)
        return 1

    async def main() -> int:
        hub = HubClient(config.hub.url, timeout=config.hub.request_timeout)
        try:
            command = await send_command(
                hub, player_id or config.player.player_id, command_type, payload_data
            )
        except TransportError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            await hub.close()
        log(f"Sent {command.command_type} ({command.id}) to {command.player_id}")
        return 0

    return asyncio.run(main())


def list_playlists(config: Config) -> int:
    from video_jukebox.playlists import load_playlist_source

    playlists = load_playlist_source(config.playlists.playlists_file).get_playlists()
    if not playlists:
        log("No playlists found.", level="warning")
        return 0
    for name, videos in sorted(playlists.items()):
        print(f"{name} ({len(videos)} videos)")
    return 0


def main() -> None:
    """Main entry point for the video-jukebox command."""
    parser = argparse.ArgumentParser(
        description="Video Jukebox - rotating video player with remote control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to config.toml")

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    play_parser = subparsers.add_parser("play", help="Run the player")
    play_parser.add_argument("--playlist", help="Playlist to load at start")
    play_parser.add_argument("--no-autoplay", action="store_true", help="Load but do not start")
    play_parser.add_argument("--offline", action="store_true", help="Ignore the configured hub")

    hub_parser = subparsers.add_parser("hub", help="Serve the remote hub API")
    hub_parser.add_argument("--host", help="Bind address")
    hub_parser.add_argument("--port", type=int, help="Bind port")

    send_parser = subparsers.add_parser("send", help="Send a command to a player")
    send_parser.add_argument("command_type", help="e.g. skip, pause, queue_add")
    send_parser.add_argument("--payload", default="", help="JSON payload")
    send_parser.add_argument("--player-id", help="Target player (default: configured player)")

    subparsers.add_parser("playlists", help="List available playlists")

    args = parser.parse_args()

    ensure_directories()
    config = load_config(Path(args.config) if args.config else None)
    setup_from_config(config.logging)

    if args.subcommand == "hub":
        sys.exit(run_hub(config, args.host, args.port))
    elif args.subcommand == "send":
        sys.exit(send_remote_command(config, args.command_type, args.payload, args.player_id))
    elif args.subcommand == "playlists":
        sys.exit(list_playlists(config))
    elif args.subcommand == "play":
        sys.exit(run_player(config, args.playlist, not args.no_autoplay, args.offline))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
