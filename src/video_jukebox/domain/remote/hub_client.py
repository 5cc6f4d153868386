"""
HTTP + WebSocket client for the jukebox hub (web/backend).

Implements both CommandTransport and StateSink. REST calls use a shared
httpx client; the per-player command topic is a websocket that reconnects
with backoff until unsubscribed.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Optional

import httpx
import websockets
from loguru import logger

from .models import Command, StatusUpdate
from .transport import CommandCallback, TransportError, Unsubscribe

RECONNECT_DELAYS = (1.0, 2.0, 5.0, 10.0)


class HubClient:
    """Client for one hub instance.

    Manages a shared httpx client for connection reuse. Call `close()` on shutdown.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._listeners: set[asyncio.Task] = set()

    async def close(self) -> None:
        for task in list(self._listeners):
            task.cancel()
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)
        await self._http.aclose()

    @property
    def ws_base_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):]
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):]
        return self.base_url

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{method} {url} failed: {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        return response

    # ------------------------------------------------------------------
    # Command table
    # ------------------------------------------------------------------

    async def fetch_pending(self, player_id: str, since: datetime) -> list[Command]:
        response = await self._request(
            "GET",
            f"/api/players/{player_id}/commands",
            params={"status": "pending", "since": since.isoformat()},
        )
        return [Command.model_validate(item) for item in response.json()]

    async def update_status(self, command_id: str, update: StatusUpdate) -> None:
        await self._request(
            "PATCH", f"/api/commands/{command_id}", json=update.model_dump(mode="json")
        )

    async def mark_executed(self, command_ids: list[str]) -> None:
        if not command_ids:
            return
        await self._request("POST", "/api/commands/mark-executed", json={"ids": command_ids})

    async def insert_command(self, command: Command) -> Command:
        """Create a command on the hub, which stores and broadcasts it."""
        response = await self._request(
            "POST",
            f"/api/players/{command.player_id}/commands",
            json={
                "id": command.id,
                "command_type": command.command_type,
                "payload": command.payload,
                "source": command.source,
            },
        )
        return Command.model_validate(response.json())

    # ------------------------------------------------------------------
    # State row
    # ------------------------------------------------------------------

    async def update_state(self, player_id: str, fields: dict[str, Any]) -> None:
        await self._request("PATCH", f"/api/players/{player_id}/state", json=fields)

    async def get_state(self, player_id: str) -> Optional[dict[str, Any]]:
        try:
            response = await self._request("GET", f"/api/players/{player_id}/state")
        except TransportError:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Broadcast topic
    # ------------------------------------------------------------------

    async def subscribe_commands(self, player_id: str, callback: CommandCallback) -> Unsubscribe:
        task = asyncio.create_task(self._listen(player_id, callback))
        self._listeners.add(task)
        task.add_done_callback(self._listeners.discard)

        async def unsubscribe() -> None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        return unsubscribe

    async def _listen(self, player_id: str, callback: CommandCallback) -> None:
        url = f"{self.ws_base_url}/ws/players/{player_id}/commands"
        attempt = 0
        while True:
            try:
                async with websockets.connect(url) as ws:
                    logger.info(f"Subscribed to command topic {url}")
                    attempt = 0
                    async for message in ws:
                        command = self._parse_message(message)
                        if command is not None:
                            await callback(command)
            except asyncio.CancelledError:
                raise
            except (websockets.exceptions.WebSocketException, OSError) as e:
                delay = RECONNECT_DELAYS[min(attempt, len(RECONNECT_DELAYS) - 1)]
                attempt += 1
                logger.warning(f"Command topic disconnected ({e}), reconnecting in {delay}s")
                await asyncio.sleep(delay)

    @staticmethod
    def _parse_message(message: str | bytes) -> Optional[Command]:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON on command topic: {message!r}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Unexpected message on command topic: {message!r}")
            return None
        if data.get("type") != "command":
            return None
        try:
            return Command.model_validate(data.get("data") or {})
        except ValueError as e:
            logger.warning(f"Malformed command on topic: {e}")
            return None
