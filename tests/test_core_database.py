#!/usr/bin/env python3
"""Tests for the hub's command table and player state rows."""

import pytest

from video_jukebox.core.database import (
    get_command,
    get_db_connection,
    get_player_state,
    init_database,
    insert_command,
    list_commands,
    mark_commands_executed,
    update_command_status,
    update_player_state,
)


@pytest.fixture
def conn(tmp_path):
    with get_db_connection(tmp_path / "hub.db") as conn:
        init_database(conn)
        yield conn


def add(conn, command_id, player_id="p1", created_at="2026-01-01T00:00:00+00:00", **kwargs):
    return insert_command(
        conn,
        {
            "id": command_id,
            "player_id": player_id,
            "command_type": kwargs.get("command_type", "skip"),
            "payload": kwargs.get("payload"),
            "created_at": created_at,
        },
    )


def test_insert_command_defaults_to_pending(conn):
    row = add(conn, "c1", payload={"volume": 0.4}, command_type="setVolume")

    assert row["status"] == "pending"
    assert row["payload"] == {"volume": 0.4}
    assert row["execution_result"] is None


def test_list_commands_filters_and_orders(conn):
    add(conn, "late", created_at="2026-01-01T00:05:00+00:00")
    add(conn, "early", created_at="2026-01-01T00:01:00+00:00")
    add(conn, "old", created_at="2025-12-31T23:00:00+00:00")
    add(conn, "other", player_id="p2", created_at="2026-01-01T00:02:00+00:00")
    update_command_status(conn, "late", "executed")

    pending = list_commands(conn, "p1", status="pending", since="2026-01-01T00:00:00+00:00")
    assert [c["id"] for c in pending] == ["early"]

    everything = list_commands(conn, "p1")
    assert [c["id"] for c in everything] == ["old", "early", "late"]


def test_update_command_status_records_result(conn):
    add(conn, "c1")
    assert update_command_status(conn, "c1", "failed", execution_result={"error": "expired"})

    row = get_command(conn, "c1")
    assert row["status"] == "failed"
    assert row["execution_result"] == {"error": "expired"}
    assert row["executed_at"] is not None

    assert update_command_status(conn, "missing", "executed") is False


def test_mark_commands_executed_in_batch(conn):
    for command_id in ("a", "b", "c"):
        add(conn, command_id)

    assert mark_commands_executed(conn, ["a", "c", "zzz"]) == 2
    assert mark_commands_executed(conn, []) == 0
    assert [c["id"] for c in list_commands(conn, "p1", status="pending")] == ["b"]


def test_player_state_partial_updates_merge(conn):
    update_player_state(conn, "p1", {"status": "playing", "is_playing": True, "volume": 0.7})
    state = update_player_state(
        conn,
        "p1",
        {"now_playing_video": {"id": "v1", "title": "Intro"}, "active_queue": [{"id": "v1"}]},
    )

    assert state["status"] == "playing"
    assert state["is_playing"] is True
    assert state["volume"] == 0.7
    assert state["now_playing_video"] == {"id": "v1", "title": "Intro"}
    assert state["priority_queue"] is None
    assert state["is_online"] is False


def test_player_state_rejects_unknown_fields(conn):
    with pytest.raises(ValueError, match="Unknown player state fields"):
        update_player_state(conn, "p1", {"player_id": "p2"})


def test_missing_player_state_is_none(conn):
    assert get_player_state(conn, "nobody") is None
