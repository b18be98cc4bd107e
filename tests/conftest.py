"""
Pytest configuration and fixtures
测试配置和固件
"""

import pytest

from party_game.core.database import DatabaseManager
from party_game.realtime.change_feed import ChangeFeed
from party_game.schemas.game import ChallengeUpdate
from party_game.services.game import GameStateMachine
from party_game.services.game_editor import GameEditor
from party_game.services.lobby import LobbyService
from party_game.services.queries import GameReader
from party_game.services.round_actions import RoundActions
from party_game.services.scoring import ScoreService
from party_game.services.store import GameStore

HOST = "host-user"


@pytest.fixture
async def db_manager(tmp_path):
    """File backed SQLite so concurrent sessions do not share one connection"""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await manager.initialize()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def feed():
    feed = ChangeFeed(queue_size=1000)
    yield feed
    feed.close_all()


@pytest.fixture
def store(db_manager, feed):
    return GameStore(db_manager.session_factory, feed)


@pytest.fixture
def reader(store):
    return GameReader(store)


@pytest.fixture
def machine(store):
    return GameStateMachine(store)


@pytest.fixture
def editor(store):
    return GameEditor(store)


@pytest.fixture
def lobby(store):
    return LobbyService(store)


@pytest.fixture
def actions(store):
    return RoundActions(store)


@pytest.fixture
def scores(reader):
    return ScoreService(reader)


@pytest.fixture
async def game(editor):
    """Fresh game: four default teams and one unrestricted challenge"""
    return await editor.create_game("Friday Show", host_user_id=HOST)


@pytest.fixture
async def teams(reader, game):
    return await reader.list_teams(game.id)


async def join_players(lobby, game_id, team_ids, per_team=1):
    """Join `per_team` players into each team; returns {team_id: [participants]}"""
    members = {}
    for team_index, team_id in enumerate(team_ids):
        members[team_id] = []
        for n in range(per_team):
            user_id = f"user-{team_index}-{n}"
            participant = await lobby.join_game(game_id, user_id, f"P{team_index}{n}")
            participant = await lobby.assign_participant(game_id, participant.id, team_id)
            members[team_id].append(participant)
    return members


@pytest.fixture
async def two_team_game(editor, lobby, reader, game):
    """
    Game with two active teams of two players each (leaders set) and a
    challenge that needs one player per team.
    """
    teams = await reader.list_teams(game.id)
    for team in teams[2:]:
        await editor.delete_team(game.id, team.id)
    teams = await reader.list_teams(game.id)

    challenge = (await reader.list_challenges(game.id))[0]
    await editor.update_challenge(game.id, challenge.id, ChallengeUpdate(participants_per_team=1))

    members = await join_players(lobby, game.id, [t.id for t in teams], per_team=2)
    for team in teams:
        await lobby.set_team_leader(game.id, team.id, members[team.id][0].id)

    return {"game": game, "teams": teams, "members": members}


@pytest.fixture
def join(lobby):
    async def _join(game_id, team_ids, per_team=1):
        return await join_players(lobby, game_id, team_ids, per_team)
    return _join
