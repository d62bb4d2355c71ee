"""
API Contract Tests

These tests verify:
1. Error responses follow the standard {success, error, message, code} shape
2. HTTP status codes match the auction error taxonomy
3. Mutating auction routes demand an Idempotency-Key and honour it
4. A full auction can be driven over HTTP
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from cricket_auction.database import get_db
from cricket_auction.errors import ErrorCode
from cricket_auction.main import app


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _setup_auction(client: AsyncClient):
    """Register a tournament, two teams and two players; open the first player."""
    response = await client.post("/api/tournaments", json={"name": "City Cup", "auction_budget": 1000})
    assert response.status_code == 201
    tid = response.json()["id"]

    teams = []
    for name in ("Team A", "Team B"):
        response = await client.post(f"/api/tournaments/{tid}/teams", json={"name": name})
        assert response.status_code == 201
        teams.append(response.json()["id"])

    players = []
    for name in ("Opener", "Keeper"):
        response = await client.post(f"/api/tournaments/{tid}/players", json={"name": name, "base_price": 100})
        assert response.status_code == 201
        players.append(response.json()["id"])

    base = f"/api/tournaments/{tid}/auction"
    response = await client.post(f"{base}/rounds", json={"player_ids": players})
    assert response.status_code == 201
    round_id = response.json()["id"]

    assert (await client.post(f"{base}/rounds/{round_id}/start")).status_code == 200
    response = await client.post(f"{base}/rounds/{round_id}/open", json={"player_id": players[0]})
    assert response.status_code == 200

    return base, teams, players


def _assert_error_shape(data, code):
    assert data["success"] is False
    assert "error" in data
    assert "message" in data
    assert data["code"] == code


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestErrorResponseFormat:

    @pytest.mark.asyncio
    async def test_404_not_found_format(self, client):
        response = await client.get("/api/tournaments/99999")
        assert response.status_code == 404
        _assert_error_shape(response.json(), ErrorCode.NOT_FOUND)

    @pytest.mark.asyncio
    async def test_validation_error_format(self, client):
        response = await client.post("/api/tournaments", json={"name": "", "auction_budget": -5})
        assert response.status_code == 422
        data = response.json()
        _assert_error_shape(data, ErrorCode.VALIDATION_ERROR)
        assert len(data["details"]["errors"]) == 2

    @pytest.mark.asyncio
    async def test_bid_too_low_is_400(self, client):
        base, teams, players = await _setup_auction(client)

        response = await client.post(
            f"{base}/bids",
            json={"team_id": teams[0], "player_id": players[0], "amount": 100},
            headers={"Idempotency-Key": "bid-1"}
        )

        assert response.status_code == 400
        data = response.json()
        _assert_error_shape(data, ErrorCode.BID_TOO_LOW)
        assert data["details"]["minimum_bid"] == 101

    @pytest.mark.asyncio
    async def test_invalid_transition_is_409(self, client):
        base, teams, players = await _setup_auction(client)

        response = await client.post(f"{base}/start")

        assert response.status_code == 409
        _assert_error_shape(response.json(), ErrorCode.INVALID_TRANSITION)

    @pytest.mark.asyncio
    async def test_settings_frozen_after_start(self, client):
        base, teams, players = await _setup_auction(client)
        tid = base.split("/")[3]

        response = await client.patch(f"/api/tournaments/{tid}", json={"bid_increment": 10})

        assert response.status_code == 409


class TestIdempotencyKeys:

    @pytest.mark.asyncio
    async def test_bid_requires_key(self, client):
        base, teams, players = await _setup_auction(client)

        response = await client.post(
            f"{base}/bids", json={"team_id": teams[0], "player_id": players[0], "amount": 150}
        )

        assert response.status_code == 422
        _assert_error_shape(response.json(), ErrorCode.VALIDATION_ERROR)

    @pytest.mark.asyncio
    async def test_sell_requires_key(self, client):
        base, teams, players = await _setup_auction(client)

        response = await client.post(f"{base}/sell", json={"player_id": players[0]})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_replay_and_reuse(self, client):
        base, teams, players = await _setup_auction(client)
        bid = {"team_id": teams[0], "player_id": players[0], "amount": 150}

        first = await client.post(f"{base}/bids", json=bid, headers={"Idempotency-Key": "bid-1"})
        replay = await client.post(f"{base}/bids", json=bid, headers={"Idempotency-Key": "bid-1"})
        reused = await client.post(
            f"{base}/bids", json={**bid, "amount": 175}, headers={"Idempotency-Key": "bid-1"}
        )

        assert first.status_code == 201
        assert replay.status_code == 201
        assert replay.json()["id"] == first.json()["id"]
        assert reused.status_code == 422
        _assert_error_shape(reused.json(), ErrorCode.IDEMPOTENCY_KEY_REUSED)

        history = await client.get(f"{base}/players/{players[0]}/bids")
        assert len(history.json()) == 1

    @pytest.mark.asyncio
    async def test_key_longer_than_column_rejected(self, client):
        base, teams, players = await _setup_auction(client)
        bid = {"team_id": teams[0], "player_id": players[0], "amount": 150}

        too_long = await client.post(f"{base}/bids", json=bid, headers={"Idempotency-Key": "k" * 129})
        longest = await client.post(f"{base}/bids", json=bid, headers={"Idempotency-Key": "k" * 128})

        assert too_long.status_code == 422
        _assert_error_shape(too_long.json(), ErrorCode.VALIDATION_ERROR)
        assert longest.status_code == 201

        history = await client.get(f"{base}/players/{players[0]}/bids")
        assert len(history.json()) == 1


class TestAuctionFlow:

    @pytest.mark.asyncio
    async def test_full_auction_over_http(self, client):
        base, teams, players = await _setup_auction(client)

        response = await client.post(
            f"{base}/bids",
            json={"team_id": teams[0], "player_id": players[0], "amount": 150},
            headers={"Idempotency-Key": "bid-a"}
        )
        assert response.status_code == 201
        response = await client.post(
            f"{base}/bids",
            json={"team_id": teams[1], "player_id": players[0], "amount": 200},
            headers={"Idempotency-Key": "bid-b"}
        )
        assert response.status_code == 201

        state = (await client.get(f"{base}/state")).json()
        assert state["highest_bid"]["amount"] == 200
        assert state["current_player"]["id"] == players[0]

        response = await client.post(f"{base}/sell", json={"player_id": players[0]}, headers={"Idempotency-Key": "sell-1"})
        assert response.status_code == 200
        assert response.json()["amount"] == 200
        assert response.json()["team_id"] == teams[1]

        summary = (await client.get(f"{base}/teams/{teams[1]}")).json()
        assert summary["remaining_budget"] == 800
        assert summary["team"]["players_count"] == 1

        round_id = state["active_round"]["id"]
        response = await client.post(f"{base}/rounds/{round_id}/open", json={"player_id": players[1]})
        assert response.status_code == 200
        response = await client.post(
            f"{base}/unsold", json={"player_id": players[1]}, headers={"Idempotency-Key": "unsold-1"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "UNSOLD"

        response = await client.post(f"{base}/rounds/{round_id}/complete")
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"

        response = await client.post(f"{base}/reselect", json={"player_id": players[1]})
        assert response.status_code == 200
        assert response.json()["status"] == "AVAILABLE"

        events = (await client.get(f"{base}/events", params={"after": 0})).json()
        assert events[0]["sequence"] == 1
        assert events[-1]["event_type"] == "PLAYER_RESELECTED"

        verification = (await client.get(f"{base}/events/verify")).json()
        assert verification["is_valid"] is True
        assert verification["total_events"] == len(events)

    @pytest.mark.asyncio
    async def test_players_filtered_by_status(self, client):
        base, teams, players = await _setup_auction(client)
        tid = base.split("/")[3]

        response = await client.get(f"/api/tournaments/{tid}/players", params={"status": "IN_AUCTION"})

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == [players[0]]
