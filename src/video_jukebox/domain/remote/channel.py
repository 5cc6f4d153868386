"""
Command channel: at-most-once execution of remote commands.

Commands usually arrive twice, once over the broadcast topic and once from
the reconciliation poll. Dedup bookkeeping happens before any await so the two
sources cannot both start the same command.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Coroutine, Optional, Union

from loguru import logger

from video_jukebox.core.config import CommandsConfig

from .models import Command, CommandStatus, CommandType, StatusUpdate
from .transport import CommandTransport, TransportError, Unsubscribe

CommandHandler = Callable[[Command], Awaitable[Optional[dict[str, Any]]]]


class CommandChannel:
    """Receives, deduplicates and dispatches commands for one player."""

    def __init__(
        self,
        player_id: str,
        transport: CommandTransport,
        config: Optional[CommandsConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.player_id = player_id
        self._transport = transport
        self._config = config or CommandsConfig()
        self._clock = clock

        self._handlers: dict[str, list[CommandHandler]] = {}
        # Bounded, oldest first. Value is the outcome so stale rows can be re-acknowledged.
        self._processed: OrderedDict[str, CommandStatus] = OrderedDict()
        self._processing: set[str] = set()
        self._status_writes: set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Unsubscribe] = None

    # ------------------------------------------------------------ handlers

    def on_command(
        self, command_type: Union[CommandType, str], handler: CommandHandler
    ) -> Callable[[], None]:
        """Register a handler. Only the first handler registered for a type runs."""
        key = _type_key(command_type)
        handlers = self._handlers.setdefault(key, [])
        if handlers:
            logger.warning(f"Handler for {key} already registered; the first one stays in effect")
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers.get(key, []):
                self._handlers[key].remove(handler)

        return unsubscribe

    def is_processed(self, command_id: str) -> bool:
        return command_id in self._processed

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    def _remember(self, command_id: str, status: CommandStatus) -> None:
        self._processed[command_id] = status
        self._processed.move_to_end(command_id)
        while len(self._processed) > self._config.processed_id_cap:
            self._processed.popitem(last=False)

    # ------------------------------------------------------------- receive

    async def receive(self, command: Command, source: str = "broadcast") -> bool:
        """Execute a command at most once. Returns True if its handler ran successfully."""
        command_id = command.id
        if command_id in self._processed or command_id in self._processing:
            logger.debug(f"Ignoring duplicate command {command_id} from {source}")
            return False

        self._processing.add(command_id)
        self._remember(command_id, CommandStatus.EXECUTING)
        try:
            return await self._execute(command, source)
        finally:
            self._processing.discard(command_id)

    async def _execute(self, command: Command, source: str) -> bool:
        if command.player_id != self.player_id:
            logger.warning(f"Command {command.id} is for player {command.player_id}, not {self.player_id}")
            self._finish(command.id, CommandStatus.FAILED, {"error": "Command for different player"})
            return False

        if command.age_seconds(self._clock()) > self._config.expiry_seconds:
            logger.info(f"Dropping expired command {command.id} ({command.command_type})")
            self._finish(command.id, CommandStatus.FAILED, {"error": "expired"})
            return False

        handlers = self._handlers.get(command.command_type)
        if not handlers:
            logger.warning(f"No handler registered for command type: {command.command_type}")
            self._finish(
                command.id,
                CommandStatus.FAILED,
                {"error": f"No handler registered for command type: {command.command_type}"},
            )
            return False

        logger.info(f"Executing {command.command_type} ({command.id}) from {source}")
        try:
            result = await handlers[0](command)
        except Exception as e:
            logger.exception(f"Command {command.id} ({command.command_type}) failed")
            self._finish(command.id, CommandStatus.FAILED, {"error": str(e)})
            return False

        self._finish(command.id, CommandStatus.EXECUTED, {"success": True, **(result or {})})
        return True

    def _finish(self, command_id: str, status: CommandStatus, result: dict[str, Any]) -> None:
        """Record the outcome locally and write it back without waiting."""
        self._remember(command_id, status)
        update = StatusUpdate(status=status, executed_at=self._clock(), execution_result=result)
        self._spawn_write(self._transport.update_status(command_id, update), command_id)

    def _spawn_write(self, coro: Coroutine, label: str) -> None:
        task = asyncio.create_task(coro)
        self._status_writes.add(task)

        def done(t: asyncio.Task) -> None:
            self._status_writes.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Status write for {label} failed: {t.exception()}")

        task.add_done_callback(done)

    # ----------------------------------------------------------- reconcile

    async def reconcile(self) -> int:
        """Poll pending commands once. Returns how many were executed."""
        since = self._clock() - timedelta(seconds=self._config.expiry_seconds)
        try:
            pending = await self._transport.fetch_pending(self.player_id, since)
        except TransportError as e:
            logger.warning(f"Command poll failed: {e}")
            return 0

        # Rows still pending but already handled here: an earlier status write was lost
        stale_executed = []
        for command in pending:
            status = self._processed.get(command.id)
            if command.id in self._processing or status is None:
                continue
            if status == CommandStatus.FAILED:
                self._spawn_write(
                    self._transport.update_status(
                        command.id,
                        StatusUpdate(status=CommandStatus.FAILED, executed_at=self._clock()),
                    ),
                    command.id,
                )
            else:
                stale_executed.append(command.id)

        if stale_executed:
            try:
                await self._transport.mark_executed(stale_executed)
                logger.debug(f"Marked {len(stale_executed)} stale commands executed")
            except TransportError as e:
                logger.warning(f"Batch mark-executed failed: {e}")

        executed = 0
        for command in sorted(pending, key=lambda c: c.created_at):
            if command.id in self._processed:
                continue
            if await self.receive(command, source="poll"):
                executed += 1
        return executed

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.poll_interval)
            try:
                await self.reconcile()
            except Exception:
                logger.exception("Command reconciliation failed")

    # ----------------------------------------------------------- lifecycle

    async def start(self) -> None:
        """Subscribe to the broadcast topic, catch up, then poll on an interval."""
        try:
            self._unsubscribe = await self._transport.subscribe_commands(
                self.player_id, self._on_broadcast
            )
        except TransportError as e:
            logger.warning(f"Broadcast subscription failed, relying on polling: {e}")
        await self.reconcile()
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Command channel started for player {self.player_id}")

    async def _on_broadcast(self, command: Command) -> None:
        await self.receive(command, source="broadcast")

    async def shutdown(self) -> None:
        if self._poll_task:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None
        if self._unsubscribe:
            await self._unsubscribe()
            self._unsubscribe = None
        if self._status_writes:
            await asyncio.gather(*self._status_writes, return_exceptions=True)
        logger.info(f"Command channel stopped for player {self.player_id}")


async def send_command(
    transport: CommandTransport,
    player_id: str,
    command_type: Union[CommandType, str],
    payload: Optional[dict[str, Any]] = None,
    source: Optional[str] = "admin",
) -> Command:
    """Create a command for a player; the transport stores and broadcasts it."""
    command = Command(
        player_id=player_id,
        command_type=_type_key(command_type),
        payload=payload or {},
        source=source,
    )
    return await transport.insert_command(command)


def _type_key(command_type: Union[CommandType, str]) -> str:
    return command_type.value if isinstance(command_type, CommandType) else command_type
