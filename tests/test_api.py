"""
API endpoint tests
API 端点测试 - httpx ASGITransport + 依赖覆盖
"""

import pytest
from httpx import ASGITransport, AsyncClient

from party_game.api.deps import get_store
from party_game.main import app
from party_game.services.identity import identity_service


@pytest.fixture
async def client(store):
    app.dependency_overrides[get_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()


def auth(user_id):
    return {"Authorization": f"Bearer {identity_service.create_token(user_id).access_token}"}


HOST_HEADERS = auth("host-1")


async def create_game(client, title="Api Show"):
    response = await client.post("/api/v1/games", json={"title": title}, headers=HOST_HEADERS)
    assert response.status_code == 201
    return response.json()


class TestIdentity:

    async def test_anonymous_identity_is_stable(self, client):
        issued = (await client.post("/api/v1/identity/anonymous")).json()
        assert issued["token_type"] == "bearer"

        renewed = await client.post(
            "/api/v1/identity/anonymous",
            headers={"Authorization": f"Bearer {issued['access_token']}"},
        )
        assert renewed.json()["user_id"] == issued["user_id"]


class TestGamesApi:

    async def test_create_and_read_state(self, client):
        game = await create_game(client)
        response = await client.get(f"/api/v1/games/{game['id']}")
        assert response.status_code == 200

        state = response.json()
        assert state["game"]["title"] == "Api Show"
        assert len(state["teams"]) == 4
        assert state["available_actions"] == ["launch_game", "start_round", "reset_lobby"]
        assert state["join_url"] == f"http://testserver/game/{game['id']}"
        assert state["round"] is None

    async def test_unknown_game_returns_error_body(self, client):
        response = await client.get("/api/v1/games/missing")
        assert response.status_code == 404
        body = response.json()
        assert body["status"] == "error"
        assert body["error_code"] == "not_found"

    async def test_only_host_controls_the_game(self, client):
        game = await create_game(client)
        response = await client.post(f"/api/v1/games/{game['id']}/start-round", headers=auth("intruder"))
        assert response.status_code == 403

        response = await client.post(f"/api/v1/games/{game['id']}/start-round", headers=HOST_HEADERS)
        assert response.status_code == 200
        assert response.json()["phase"] == "leader_selection"

    async def test_guard_failure_is_409(self, client):
        game = await create_game(client)
        response = await client.post(f"/api/v1/games/{game['id']}/lock-voting", headers=HOST_HEADERS)
        assert response.status_code == 409
        assert response.json()["error_details"]["action"] == "lock_voting"

    async def test_list_games_for_host(self, client):
        game = await create_game(client)
        response = await client.get("/api/v1/games", headers=HOST_HEADERS)
        assert [summary["game"]["id"] for summary in response.json()] == [game["id"]]


class TestPlayersApi:

    async def test_join_requires_identity(self, client):
        game = await create_game(client)
        response = await client.post(f"/api/v1/games/{game['id']}/join", json={"nickname": "Ann"})
        assert response.status_code == 401

    async def test_join_assign_vote_flow(self, client):
        game = await create_game(client)
        game_id = game["id"]
        teams = (await client.get(f"/api/v1/games/{game_id}/teams")).json()

        players = []
        for index, team in enumerate(teams[:2]):
            headers = auth(f"player-{index}")
            joined = await client.post(f"/api/v1/games/{game_id}/join", json={"nickname": f"P{index}"},
                                       headers=headers)
            assert joined.status_code == 200
            participant = joined.json()
            assign = await client.put(
                f"/api/v1/games/{game_id}/participants/{participant['id']}/team",
                json={"team_id": team["id"]}, headers=HOST_HEADERS,
            )
            assert assign.status_code == 200
            await client.put(f"/api/v1/games/{game_id}/teams/{team['id']}/leader",
                             json={"participant_id": participant["id"]}, headers=HOST_HEADERS)
            players.append((headers, participant, team))

        for team in teams[2:]:
            response = await client.delete(f"/api/v1/games/{game_id}/teams/{team['id']}", headers=HOST_HEADERS)
            assert response.status_code == 204

        assert (await client.post(f"/api/v1/games/{game_id}/start-round", headers=HOST_HEADERS)).status_code == 200
        for headers, participant, team in players:
            response = await client.post(
                f"/api/v1/games/{game_id}/lineups",
                json={"team_id": team["id"], "participant_id": participant["id"]},
                headers=headers,
            )
            assert response.status_code == 200
        assert (await client.post(f"/api/v1/games/{game_id}/open-voting", headers=HOST_HEADERS)).status_code == 200

        headers, participant, _ = players[0]
        loser = players[1][2]
        vote = await client.post(f"/api/v1/games/{game_id}/votes", json={"team_id": loser["id"]}, headers=headers)
        assert vote.status_code == 200

        me = await client.get(f"/api/v1/games/{game_id}/me", headers=headers)
        assert me.json()["id"] == participant["id"]

        state = (await client.get(f"/api/v1/games/{game_id}")).json()
        assert state["pending_votes"] == 1
        assert {t["team_id"]: t["count"] for t in state["vote_tally"]}[loser["id"]] == 1

        await client.post(f"/api/v1/games/{game_id}/lock-voting", headers=HOST_HEADERS)
        outcome = await client.put(f"/api/v1/games/{game_id}/outcomes/{loser['id']}",
                                   json={"is_loser": True}, headers=HOST_HEADERS)
        assert outcome.status_code == 200
        assert (await client.post(f"/api/v1/games/{game_id}/reveal", headers=HOST_HEADERS)).status_code == 200

        scores = (await client.get(f"/api/v1/games/{game_id}/scores")).json()
        assert scores[0]["team_id"] == players[0][2]["id"]
        assert scores[0]["total_score"] == 3


class TestHealthApi:

    async def test_health(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
