"""
Transport boundary for remote control.

`CommandTransport` is the broadcast topic plus durable command table;
`StateSink` is the per-player state row. `MemoryBackend` implements both in
process for offline mode and tests.
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from loguru import logger

from .models import Command, CommandStatus, StatusUpdate

CommandCallback = Callable[[Command], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]


class TransportError(Exception):
    """The hub could not be reached or rejected a request."""


class CommandTransport(Protocol):
    async def subscribe_commands(self, player_id: str, callback: CommandCallback) -> Unsubscribe: ...

    async def fetch_pending(self, player_id: str, since: datetime) -> list[Command]: ...

    async def update_status(self, command_id: str, update: StatusUpdate) -> None: ...

    async def mark_executed(self, command_ids: list[str]) -> None: ...

    async def insert_command(self, command: Command) -> Command: ...


class StateSink(Protocol):
    async def update_state(self, player_id: str, fields: dict[str, Any]) -> None: ...


class MemoryBackend:
    """In-process command table, broadcast topic and state rows."""

    def __init__(self) -> None:
        self.commands: dict[str, Command] = {}
        self.states: dict[str, dict[str, Any]] = {}
        self.state_writes: list[tuple[str, dict[str, Any]]] = []
        self._subscribers: dict[str, list[CommandCallback]] = {}

    async def subscribe_commands(self, player_id: str, callback: CommandCallback) -> Unsubscribe:
        self._subscribers.setdefault(player_id, []).append(callback)

        async def unsubscribe() -> None:
            callbacks = self._subscribers.get(player_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    async def fetch_pending(self, player_id: str, since: datetime) -> list[Command]:
        pending = [
            c
            for c in self.commands.values()
            if c.player_id == player_id
            and c.status == CommandStatus.PENDING
            and _aware(c.created_at) > _aware(since)
        ]
        return sorted(pending, key=lambda c: c.created_at)

    async def update_status(self, command_id: str, update: StatusUpdate) -> None:
        command = self.commands.get(command_id)
        if command is None:
            raise TransportError(f"Unknown command {command_id}")
        self.commands[command_id] = command.model_copy(
            update={
                "status": update.status,
                "executed_at": update.executed_at,
                "execution_result": update.execution_result,
            }
        )

    async def mark_executed(self, command_ids: list[str]) -> None:
        now = datetime.now(timezone.utc)
        for command_id in command_ids:
            command = self.commands.get(command_id)
            if command is not None:
                self.commands[command_id] = command.model_copy(
                    update={"status": CommandStatus.EXECUTED, "executed_at": now}
                )

    async def insert_command(self, command: Command) -> Command:
        """Store a command and push it to the player's subscribers."""
        self.commands[command.id] = command
        await self.broadcast(command)
        return command

    async def broadcast(self, command: Command) -> None:
        for callback in list(self._subscribers.get(command.player_id, [])):
            try:
                await callback(command)
            except Exception:
                logger.exception(f"Command subscriber failed for {command.id}")

    async def update_state(self, player_id: str, fields: dict[str, Any]) -> None:
        self.states.setdefault(player_id, {}).update(fields)
        self.state_writes.append((player_id, dict(fields)))

    def get_state(self, player_id: str) -> Optional[dict[str, Any]]:
        return self.states.get(player_id)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
