import time
from typing import Any

from fastapi import WebSocket
from loguru import logger


def commands_topic(player_id: str) -> str:
    return f"commands:{player_id}"


def state_topic(player_id: str) -> str:
    return f"state:{player_id}"


class SyncManager:
    """Manages WebSocket connections per topic and broadcasts messages to them.

    Each player has a command topic (consumed by the player itself) and a
    state topic (consumed by dashboards and kiosks).
    """

    def __init__(self):
        self.topics: dict[str, list[WebSocket]] = {}

    async def connect(self, topic: str, ws: WebSocket) -> None:
        """Accept and store a new WebSocket connection on a topic."""
        await ws.accept()
        self.topics.setdefault(topic, []).append(ws)
        logger.debug(f"WebSocket joined {topic} ({len(self.topics[topic])} connected)")

    def disconnect(self, topic: str, ws: WebSocket) -> None:
        """Remove a WebSocket connection."""
        connections = self.topics.get(topic, [])
        if ws in connections:
            connections.remove(ws)
        if not connections:
            self.topics.pop(topic, None)

    def connection_count(self, topic: str) -> int:
        return len(self.topics.get(topic, []))

    async def broadcast_command(self, command: dict[str, Any]) -> None:
        await self.broadcast(commands_topic(command["player_id"]), "command", command)

    async def broadcast_state(self, player_id: str, state: dict[str, Any]) -> None:
        await self.broadcast(state_topic(player_id), "state:updated", state)

    async def broadcast(self, topic: str, event_type: str, data: dict) -> None:
        """Send a message to all clients on a topic."""
        message = {
            "type": event_type,
            "data": data,
            "ts": time.time(),
        }
        dead_connections: list[WebSocket] = []

        for conn in list(self.topics.get(topic, [])):
            try:
                await conn.send_json(message)
            except Exception:
                dead_connections.append(conn)

        for conn in dead_connections:
            self.disconnect(topic, conn)


# Singleton instance
sync_manager = SyncManager()
