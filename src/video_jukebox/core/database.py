"""
SQLite storage for the remote hub: the durable command table and player state rows
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import get_data_dir

# Database schema version for migrations
SCHEMA_VERSION = 1

# Columns a player may write through a partial state update
PLAYER_STATE_FIELDS = (
    "status",
    "is_playing",
    "now_playing_video",
    "current_position",
    "volume",
    "active_queue",
    "priority_queue",
    "queue_index",
    "is_online",
    "last_heartbeat",
)

_JSON_FIELDS = {"now_playing_video", "active_queue", "priority_queue"}


def get_database_path() -> Path:
    """Get the path to the SQLite database file."""
    return get_data_dir() / "hub.db"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string (the format stored in every timestamp column)."""
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def get_db_connection(db_path: Optional[Path] = None):
    """Get a database connection with proper cleanup and concurrency support."""
    db_path = db_path or get_database_path()
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row  # Enable dict-like access

    # WAL mode allows the poller's reads during status writes
    conn.execute("PRAGMA journal_mode=WAL")

    try:
        yield conn
    finally:
        conn.close()


def init_database(conn: sqlite3.Connection) -> None:
    """Create the hub tables if they do not exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS commands (
            id TEXT PRIMARY KEY,
            player_id TEXT NOT NULL,
            command_type TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'pending', -- pending, executing, executed, failed
            source TEXT,
            created_at TEXT NOT NULL,
            executed_at TEXT,
            execution_result TEXT
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_commands_player_status
        ON commands (player_id, status, created_at)
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS player_state (
            player_id TEXT PRIMARY KEY,
            status TEXT,
            is_playing INTEGER DEFAULT 0,
            now_playing_video TEXT,
            current_position REAL DEFAULT 0,
            volume REAL,
            active_queue TEXT,
            priority_queue TEXT,
            queue_index INTEGER DEFAULT 0,
            is_online INTEGER DEFAULT 0,
            last_heartbeat TEXT,
            updated_at TEXT
        )
    """)

    conn.execute(
        "INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
    )
    conn.commit()


def _command_row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "player_id": row["player_id"],
        "command_type": row["command_type"],
        "payload": json.loads(row["payload"] or "{}"),
        "status": row["status"],
        "source": row["source"],
        "created_at": row["created_at"],
        "executed_at": row["executed_at"],
        "execution_result": (
            json.loads(row["execution_result"]) if row["execution_result"] else None
        ),
    }


def insert_command(conn: sqlite3.Connection, command: dict[str, Any]) -> dict[str, Any]:
    """Insert a new pending command row and return it as stored."""
    conn.execute(
        """
        INSERT INTO commands (id, player_id, command_type, payload, status, source, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            command["id"],
            command["player_id"],
            command["command_type"],
            json.dumps(command.get("payload") or {}),
            command.get("status", "pending"),
            command.get("source"),
            command.get("created_at") or utc_now(),
        ),
    )
    conn.commit()
    return get_command(conn, command["id"])


def get_command(conn: sqlite3.Connection, command_id: str) -> Optional[dict[str, Any]]:
    """Fetch one command by id."""
    row = conn.execute("SELECT * FROM commands WHERE id = ?", (command_id,)).fetchone()
    return _command_row_to_dict(row) if row else None


def list_commands(
    conn: sqlite3.Connection,
    player_id: str,
    status: Optional[str] = None,
    since: Optional[str] = None,
) -> list[dict[str, Any]]:
    """List a player's commands, oldest first, optionally filtered by status and age."""
    query = "SELECT * FROM commands WHERE player_id = ?"
    params: list[Any] = [player_id]
    if status:
        query += " AND status = ?"
        params.append(status)
    if since:
        query += " AND created_at > ?"
        params.append(since)
    query += " ORDER BY created_at ASC"

    return [_command_row_to_dict(row) for row in conn.execute(query, params).fetchall()]


def update_command_status(
    conn: sqlite3.Connection,
    command_id: str,
    status: str,
    executed_at: Optional[str] = None,
    execution_result: Optional[dict[str, Any]] = None,
) -> bool:
    """Write a command's terminal status. Returns False if the id is unknown."""
    cursor = conn.execute(
        """
        UPDATE commands
        SET status = ?, executed_at = ?, execution_result = ?
        WHERE id = ?
        """,
        (
            status,
            executed_at or utc_now(),
            json.dumps(execution_result) if execution_result is not None else None,
            command_id,
        ),
    )
    conn.commit()
    return cursor.rowcount > 0


def mark_commands_executed(conn: sqlite3.Connection, command_ids: list[str]) -> int:
    """Batch-mark commands executed. Returns the number of rows changed."""
    if not command_ids:
        return 0
    placeholders = ",".join("?" * len(command_ids))
    cursor = conn.execute(
        f"""
        UPDATE commands SET status = 'executed', executed_at = ?
        WHERE id IN ({placeholders})
        """,
        [utc_now(), *command_ids],
    )
    conn.commit()
    logger.info(f"Batch-marked {cursor.rowcount} commands executed")
    return cursor.rowcount


def update_player_state(
    conn: sqlite3.Connection, player_id: str, fields: dict[str, Any]
) -> dict[str, Any]:
    """Partially update (or create) a player's state row and return the merged row."""
    unknown = set(fields) - set(PLAYER_STATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown player state fields: {sorted(unknown)}")

    conn.execute(
        "INSERT OR IGNORE INTO player_state (player_id, updated_at) VALUES (?, ?)",
        (player_id, utc_now()),
    )

    if fields:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [
            json.dumps(value) if name in _JSON_FIELDS else value
            for name, value in fields.items()
        ]
        conn.execute(
            f"UPDATE player_state SET {assignments}, updated_at = ? WHERE player_id = ?",
            [*values, utc_now(), player_id],
        )
    conn.commit()
    return get_player_state(conn, player_id)


def get_player_state(conn: sqlite3.Connection, player_id: str) -> Optional[dict[str, Any]]:
    """Fetch a player's state row with JSON columns decoded."""
    row = conn.execute(
        "SELECT * FROM player_state WHERE player_id = ?", (player_id,)
    ).fetchone()
    if not row:
        return None

    state = dict(row)
    for name in _JSON_FIELDS:
        state[name] = json.loads(state[name]) if state[name] else None
    state["is_playing"] = bool(state["is_playing"])
    state["is_online"] = bool(state["is_online"])
    return state
