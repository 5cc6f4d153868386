"""Remote control domain: command delivery and state publishing."""

from .channel import CommandChannel, CommandHandler, send_command
from .hub_client import HubClient
from .models import Command, CommandStatus, CommandType, StatusUpdate
from .publisher import PlaybackStatus, StateSyncPublisher, build_state_fields, player_status
from .transport import CommandTransport, MemoryBackend, StateSink, TransportError

__all__ = [
    "Command",
    "CommandChannel",
    "CommandHandler",
    "CommandStatus",
    "CommandTransport",
    "CommandType",
    "HubClient",
    "MemoryBackend",
    "PlaybackStatus",
    "StateSink",
    "StateSyncPublisher",
    "StatusUpdate",
    "TransportError",
    "build_state_fields",
    "player_status",
    "send_command",
]
