"""Tests for at-most-once command delivery."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from video_jukebox.core.config import CommandsConfig
from video_jukebox.domain.remote import (
    Command,
    CommandChannel,
    CommandStatus,
    CommandType,
    MemoryBackend,
    TransportError,
    send_command,
)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def channel(backend: MemoryBackend) -> CommandChannel:
    return CommandChannel("player-1", backend, CommandsConfig(poll_interval=60.0))


def make_command(command_type: str = "skip", age: float = 0.0, **kwargs) -> Command:
    return Command(
        player_id=kwargs.pop("player_id", "player-1"),
        command_type=command_type,
        created_at=datetime.now(timezone.utc) - timedelta(seconds=age),
        **kwargs,
    )


async def settle() -> None:
    """Let fire-and-forget status writes run."""
    for _ in range(3):
        await asyncio.sleep(0)


class TestReceive:
    @pytest.mark.anyio
    async def test_executes_and_marks_executed(self, channel, backend) -> None:
        handler = AsyncMock(return_value={"volume": 0.5})
        channel.on_command(CommandType.SET_VOLUME, handler)
        command = make_command("setVolume", payload={"volume": 0.5})
        backend.commands[command.id] = command

        assert await channel.receive(command) is True
        await settle()

        handler.assert_awaited_once_with(command)
        stored = backend.commands[command.id]
        assert stored.status == CommandStatus.EXECUTED
        assert stored.execution_result == {"success": True, "volume": 0.5}
        assert stored.executed_at is not None

    @pytest.mark.anyio
    async def test_same_id_from_both_sources_runs_once(self, channel, backend) -> None:
        handler = AsyncMock(return_value=None)
        channel.on_command("skip", handler)
        command = make_command()
        backend.commands[command.id] = command

        await channel.receive(command, source="broadcast")
        await channel.receive(command, source="poll")
        await channel.receive(command, source="broadcast")

        assert handler.await_count == 1

    @pytest.mark.anyio
    async def test_concurrent_delivery_runs_once(self, channel, backend) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def slow_handler(command: Command):
            calls.append(command.id)
            started.set()
            await release.wait()

        channel.on_command("skip", slow_handler)
        command = make_command()
        backend.commands[command.id] = command

        first = asyncio.create_task(channel.receive(command, source="broadcast"))
        await started.wait()
        assert await channel.receive(command, source="poll") is False
        release.set()
        assert await first is True
        assert calls == [command.id]

    @pytest.mark.anyio
    async def test_handler_failure_marks_failed_and_continues(self, channel, backend) -> None:
        channel.on_command("skip", AsyncMock(side_effect=RuntimeError("no video loaded")))
        ok = AsyncMock(return_value=None)
        channel.on_command("pause", ok)
        bad, good = make_command("skip"), make_command("pause")
        backend.commands.update({bad.id: bad, good.id: good})

        assert await channel.receive(bad) is False
        assert await channel.receive(good) is True
        await settle()

        assert backend.commands[bad.id].status == CommandStatus.FAILED
        assert backend.commands[bad.id].execution_result == {"error": "no video loaded"}
        assert backend.commands[good.id].status == CommandStatus.EXECUTED

    @pytest.mark.anyio
    async def test_only_first_handler_runs(self, channel, backend) -> None:
        first, second = AsyncMock(return_value=None), AsyncMock(return_value=None)
        channel.on_command("skip", first)
        channel.on_command("skip", second)
        command = make_command()
        backend.commands[command.id] = command

        await channel.receive(command)
        first.assert_awaited_once()
        second.assert_not_awaited()

    @pytest.mark.anyio
    async def test_unsubscribed_handler_is_replaced_by_next(self, channel, backend) -> None:
        first, second = AsyncMock(return_value=None), AsyncMock(return_value=None)
        unsubscribe = channel.on_command("skip", first)
        channel.on_command("skip", second)
        unsubscribe()

        command = make_command()
        backend.commands[command.id] = command
        await channel.receive(command)
        first.assert_not_awaited()
        second.assert_awaited_once()

    @pytest.mark.anyio
    async def test_missing_handler_marks_failed(self, channel, backend) -> None:
        command = make_command("queue_teleport")
        backend.commands[command.id] = command

        assert await channel.receive(command) is False
        await settle()
        stored = backend.commands[command.id]
        assert stored.status == CommandStatus.FAILED
        assert "No handler registered" in stored.execution_result["error"]

    @pytest.mark.anyio
    async def test_expired_command_never_executes(self, channel, backend) -> None:
        handler = AsyncMock(return_value=None)
        channel.on_command("skip", handler)
        command = make_command(age=301)
        backend.commands[command.id] = command

        assert await channel.receive(command) is False
        await settle()
        handler.assert_not_awaited()
        assert backend.commands[command.id].execution_result == {"error": "expired"}

    @pytest.mark.anyio
    async def test_command_for_other_player_is_refused(self, channel, backend) -> None:
        handler = AsyncMock(return_value=None)
        channel.on_command("skip", handler)
        command = make_command(player_id="player-2")
        backend.commands[command.id] = command

        assert await channel.receive(command) is False
        await settle()
        handler.assert_not_awaited()
        assert backend.commands[command.id].execution_result == {"error": "Command for different player"}

    @pytest.mark.anyio
    async def test_status_write_failure_does_not_block(self) -> None:
        transport = AsyncMock()
        transport.update_status.side_effect = TransportError("hub down")
        channel = CommandChannel("player-1", transport)
        handler = AsyncMock(return_value=None)
        channel.on_command("skip", handler)

        assert await channel.receive(make_command()) is True
        assert await channel.receive(make_command()) is True
        await settle()
        assert handler.await_count == 2

    @pytest.mark.anyio
    async def test_processed_ids_are_bounded(self, backend) -> None:
        channel = CommandChannel("player-1", backend, CommandsConfig(processed_id_cap=5))
        channel.on_command("skip", AsyncMock(return_value=None))
        commands = [make_command() for _ in range(8)]
        for command in commands:
            backend.commands[command.id] = command
            await channel.receive(command)

        assert channel.processed_count == 5
        assert not channel.is_processed(commands[0].id)
        assert channel.is_processed(commands[-1].id)
        await settle()


class TestReconcile:
    @pytest.mark.anyio
    async def test_executes_pending_in_creation_order(self, channel, backend) -> None:
        order = []

        async def record(command: Command):
            order.append(command.command_type)

        channel.on_command("pause", record)
        channel.on_command("resume", record)
        later = make_command("resume", age=10)
        earlier = make_command("pause", age=20)
        backend.commands.update({later.id: later, earlier.id: earlier})

        assert await channel.reconcile() == 2
        assert order == ["pause", "resume"]

    @pytest.mark.anyio
    async def test_skips_expired_rows(self, channel, backend) -> None:
        handler = AsyncMock(return_value=None)
        channel.on_command("skip", handler)
        stale = make_command(age=600)
        backend.commands[stale.id] = stale

        assert await channel.reconcile() == 0
        handler.assert_not_awaited()

    @pytest.mark.anyio
    async def test_processed_but_pending_rows_are_batch_marked(self) -> None:
        transport = AsyncMock()
        channel = CommandChannel("player-1", transport)
        handler = AsyncMock(return_value=None)
        channel.on_command("skip", handler)
        command = make_command()
        await channel.receive(command)

        transport.fetch_pending.return_value = [command]
        assert await channel.reconcile() == 0
        transport.mark_executed.assert_awaited_once_with([command.id])
        handler.assert_awaited_once()

    @pytest.mark.anyio
    async def test_poll_failure_is_logged_not_raised(self) -> None:
        transport = AsyncMock()
        transport.fetch_pending.side_effect = TransportError("timeout")
        channel = CommandChannel("player-1", transport)
        assert await channel.reconcile() == 0


class TestLifecycle:
    @pytest.mark.anyio
    async def test_broadcast_delivery_after_start(self, channel, backend) -> None:
        handler = AsyncMock(return_value=None)
        channel.on_command("skip", handler)
        await channel.start()

        command = await send_command(backend, "player-1", CommandType.SKIP)
        await settle()

        handler.assert_awaited_once()
        assert backend.commands[command.id].status == CommandStatus.EXECUTED

        await channel.shutdown()
        await send_command(backend, "player-1", CommandType.SKIP)
        assert handler.await_count == 1

    @pytest.mark.anyio
    async def test_start_catches_up_on_missed_commands(self, channel, backend) -> None:
        handler = AsyncMock(return_value=None)
        channel.on_command("pause", handler)
        missed = make_command("pause", age=30)
        backend.commands[missed.id] = missed

        await channel.start()
        await settle()
        handler.assert_awaited_once()
        await channel.shutdown()

    @pytest.mark.anyio
    async def test_send_command_builds_pending_row(self, backend) -> None:
        command = await send_command(backend, "player-9", "queue_add", {"video": {"path": "/v.mp4"}})
        assert command.status == CommandStatus.PENDING
        assert command.source == "admin"
        assert backend.commands[command.id].payload == {"video": {"path": "/v.mp4"}}
