"""HTTP and WebSocket tests for the VeilBrawl API."""

import pytest
from fastapi.testclient import TestClient

from helpers import ALICE, BOB, MATCH_ID, PlanFixture, make_protocol
from veilbrawl.dependencies import get_protocol
from veilbrawl.main import app

SPECIALS = ["special"] * 10
PUNCHES = ["punch"] * 10


@pytest.fixture
def protocol():
    protocol, _ = make_protocol()
    app.dependency_overrides[get_protocol] = lambda: protocol
    yield protocol
    app.dependency_overrides.clear()


@pytest.fixture
def client(protocol):
    with TestClient(app) as client:
        yield client


def create_and_start(client):
    created = client.post("/matches", json={
        "player1Address": ALICE,
        "player2Address": BOB,
        "matchId": MATCH_ID,
    })
    assert created.status_code == 200
    assert created.json()["status"] == "character_select"
    started = client.post(f"/matches/{MATCH_ID}/start")
    assert started.status_code == 200
    return started.json()


def body(request):
    return request.model_dump(by_alias=True)


class TestHealth:
    """Test the health endpoint."""

    def test_health(self, client):
        """Health reports the active verification backend."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["zkBackend"] == "external"


class TestRoundFlow:
    """Test a full round over HTTP."""

    def test_commit_reveal_resolve(self, client):
        """Commit, reveal and resolve using camelCase payloads."""
        match = create_and_start(client)
        assert match["status"] == "in_progress"
        assert match["currentRound"] == 1

        alice, bob = PlanFixture(ALICE, SPECIALS), PlanFixture(BOB, PUNCHES)
        first = client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(alice.commit))
        assert first.status_code == 200
        assert first.json()["player1Committed"] is True
        second = client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(bob.commit))
        assert second.json()["bothCommitted"] is True

        waiting = client.post(f"/matches/{MATCH_ID}/rounds/reveal", json=body(alice.reveal))
        assert waiting.status_code == 200
        assert waiting.json()["awaitingOpponent"] is True
        assert "resolution" not in waiting.json()

        resolved = client.post(f"/matches/{MATCH_ID}/rounds/reveal", json=body(bob.reveal))
        resolution = resolved.json()["resolution"]
        assert resolution["winnerAddress"] == BOB
        assert resolution["endedBy"] == "knockout"
        assert len(resolution["turns"]) == 10
        assert resolution["turns"][0]["player1Move"] == "special"

        status = client.get(f"/matches/{MATCH_ID}/rounds/1/status")
        assert status.json()["state"] == "resolved"
        assert status.json()["resolvedRoundId"] == resolution["roundId"]

        assert client.get(f"/matches/{MATCH_ID}").json()["currentRound"] == 2


class TestErrorMapping:
    """Test protocol errors become the right status codes."""

    def test_bad_commitment_is_400(self, client):
        """Malformed commitments are 400 with an error code."""
        create_and_start(client)
        fixture = PlanFixture(ALICE, PUNCHES)
        fixture.commit.commitment = "xyz"
        response = client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(fixture.commit))
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_validation_error_is_400(self, client):
        """Schema validation failures use the same 400 envelope."""
        response = client.post(f"/matches/{MATCH_ID}/rounds/commit", json={"address": ALICE})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unknown_match_is_404(self, client):
        """Unknown matches are 404."""
        response = client.get("/matches/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "match_not_found"

    def test_outsider_is_403(self, client):
        """Non-participants are 403."""
        create_and_start(client)
        fixture = PlanFixture("GMALLORY", PUNCHES)
        response = client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(fixture.commit))
        assert response.status_code == 403

    def test_binding_conflict_is_409(self, client):
        """A reveal that does not match the commit is 409."""
        create_and_start(client)
        fixture = PlanFixture(ALICE, PUNCHES)
        client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(fixture.commit))
        fixture.reveal.transcript_hash = "7"
        response = client.post(f"/matches/{MATCH_ID}/rounds/reveal", json=body(fixture.reveal))
        assert response.status_code == 409
        assert response.json()["error"] == "binding_conflict"


class TestForfeit:
    """Test the forfeit endpoint."""

    def test_forfeit_ends_match(self, client):
        """Forfeiting completes the match for the opponent and ends pending reveals."""
        create_and_start(client)
        alice, bob = PlanFixture(ALICE, SPECIALS), PlanFixture(BOB, PUNCHES)
        client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(alice.commit))
        client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(bob.commit))

        response = client.post(f"/matches/{MATCH_ID}/forfeit", json={"address": ALICE})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["winnerAddress"] == BOB
        assert data["endedReason"] == "forfeit"
        assert data["player2RoundsWon"] == 2

        pending = client.post(f"/matches/{MATCH_ID}/rounds/reveal", json=body(alice.reveal))
        assert pending.status_code == 200
        assert pending.json()["matchOver"] is True
        assert pending.json()["reason"] == "match_completed"
        assert "resolution" not in pending.json()

        status = client.get(f"/matches/{MATCH_ID}/rounds/1/status")
        assert status.json()["state"] == "abandoned"

    def test_second_forfeit_is_409(self, client):
        """A completed match cannot be forfeited again."""
        create_and_start(client)
        client.post(f"/matches/{MATCH_ID}/forfeit", json={"address": ALICE})
        response = client.post(f"/matches/{MATCH_ID}/forfeit", json={"address": BOB})
        assert response.status_code == 409

    def test_outsider_forfeit_is_403(self, client):
        """Non-participants cannot concede."""
        create_and_start(client)
        response = client.post(f"/matches/{MATCH_ID}/forfeit", json={"address": "GMALLORY"})
        assert response.status_code == 403


class TestWebSocket:
    """Test event streaming."""

    def test_subscribe_and_receive(self, client, protocol):
        """Subscribers get a subscribed frame and then match events."""
        create_and_start(client)
        with client.websocket_connect(f"/ws/matches/{MATCH_ID}") as ws:
            assert ws.receive_json() == {"type": "subscribed", "matchId": MATCH_ID}
            assert protocol.events.subscriber_count(MATCH_ID) == 1
            fixture = PlanFixture(ALICE, PUNCHES)
            client.post(f"/matches/{MATCH_ID}/rounds/commit", json=body(fixture.commit))
            frame = ws.receive_json()
            while frame["type"] != "round_plan_committed":
                frame = ws.receive_json()
            assert frame["matchId"] == MATCH_ID
            assert frame["payload"]["playerAddress"] == ALICE
