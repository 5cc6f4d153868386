"""Tests for the command table endpoints and the command topic."""


def create(client, player_id="p1", **body):
    body.setdefault("command_type", "skip")
    return client.post(f"/api/players/{player_id}/commands", json=body)


class TestCreateCommand:
    """POST /api/players/{player_id}/commands"""

    def test_creates_pending_row(self, client):
        response = create(client, command_type="setVolume", payload={"volume": 0.4}, source="admin")

        assert response.status_code == 201
        data = response.json()
        assert data["player_id"] == "p1"
        assert data["status"] == "pending"
        assert data["payload"] == {"volume": 0.4}
        assert data["id"]

    def test_keeps_client_supplied_id(self, client):
        response = create(client, id="cmd-123")
        assert response.json()["id"] == "cmd-123"

    def test_duplicate_id_conflicts(self, client):
        create(client, id="cmd-123")
        assert create(client, id="cmd-123").status_code == 409

    def test_rejects_empty_type(self, client):
        assert create(client, command_type="").status_code == 422

    def test_broadcasts_to_player_topic(self, client):
        with client.websocket_connect("/ws/players/p1/commands") as ws:
            created = create(client, command_type="pause").json()
            message = ws.receive_json()

        assert message["type"] == "command"
        assert message["data"]["id"] == created["id"]
        assert message["data"]["command_type"] == "pause"


class TestListCommands:
    """GET /api/players/{player_id}/commands"""

    def test_filters_by_player_and_status(self, client):
        first = create(client, id="a").json()
        create(client, id="b")
        create(client, player_id="p2", id="c")
        client.patch(f"/api/commands/{first['id']}", json={"status": "executed"})

        response = client.get("/api/players/p1/commands", params={"status": "pending"})

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == ["b"]

    def test_since_excludes_older_rows(self, client):
        old = create(client, id="old").json()
        response = client.get(
            "/api/players/p1/commands", params={"since": old["created_at"]}
        )
        assert response.json() == []

    def test_rejects_unknown_status(self, client):
        response = client.get("/api/players/p1/commands", params={"status": "done"})
        assert response.status_code == 422


class TestAcknowledge:
    """PATCH /api/commands/{id} and POST /api/commands/mark-executed"""

    def test_failed_status_carries_result(self, client):
        create(client, id="x")
        response = client.patch(
            "/api/commands/x",
            json={"status": "failed", "execution_result": {"error": "expired"}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "failed"
        assert data["execution_result"] == {"error": "expired"}
        assert data["executed_at"] is not None

    def test_unknown_command_is_404(self, client):
        response = client.patch("/api/commands/nope", json={"status": "executed"})
        assert response.status_code == 404

    def test_status_change_reaches_state_topic(self, client):
        create(client, id="x")
        with client.websocket_connect("/ws/players/p1/state") as ws:
            assert ws.receive_json()["type"] == "state:full"
            client.patch("/api/commands/x", json={"status": "executed"})
            message = ws.receive_json()

        assert message["type"] == "command:status"
        assert message["data"]["status"] == "executed"

    def test_mark_executed_batch(self, client):
        for command_id in ("a", "b", "c"):
            create(client, id=command_id)

        response = client.post("/api/commands/mark-executed", json={"ids": ["a", "b", "zzz"]})

        assert response.json() == {"updated": 2}
        pending = client.get("/api/players/p1/commands", params={"status": "pending"}).json()
        assert [c["id"] for c in pending] == ["c"]
