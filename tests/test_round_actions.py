"""
Round action tests
投票和出场阵容测试
"""

import pytest
from sqlalchemy.dialects import mysql
from sqlalchemy.ext.asyncio import AsyncSession

from party_game.core.exceptions import PermissionDenied, PreconditionFailed, ValidationError
from party_game.schemas.game import ChallengeUpdate, TeamUpdate


async def open_round(machine, actions, setup):
    game = setup["game"]
    await machine.start_round(game.id)
    for team in setup["teams"]:
        leader = setup["members"][team.id][0]
        await actions.toggle_lineup(game.id, team.id, leader.id, True, user_id=leader.user_id)
    return await machine.open_voting(game.id)


class TestVotes:
    """每人每轮一票"""

    async def test_second_vote_replaces_the_first(self, machine, actions, reader, two_team_game):
        game = two_team_game["game"]
        team_a, team_b = two_team_game["teams"]
        voter = two_team_game["members"][team_a.id][1]
        opened = await open_round(machine, actions, two_team_game)

        first = await actions.cast_vote(game.id, voter.user_id, team_a.id)
        second = await actions.cast_vote(game.id, voter.user_id, team_b.id)

        votes = await reader.list_votes(opened.active_round_id)
        assert len(votes) == 1
        assert second.id == first.id
        assert votes[0].team_id == team_b.id

    async def test_vote_holds_shared_lock_on_game_row(self, monkeypatch, machine, actions, two_team_game):
        game = two_team_game["game"]
        team_a, team_b = two_team_game["teams"]
        voter = two_team_game["members"][team_a.id][1]
        await open_round(machine, actions, two_team_game)

        statements = []
        execute = AsyncSession.execute

        async def recording_execute(session, statement, *args, **kwargs):
            statements.append(statement)
            return await execute(session, statement, *args, **kwargs)

        monkeypatch.setattr(AsyncSession, "execute", recording_execute)
        await actions.cast_vote(game.id, voter.user_id, team_b.id)

        # sqlite 忽略行锁，这里检查生成的语句
        locked = [s for s in statements if getattr(s, "_for_update_arg", None) is not None]
        assert len(locked) == 1
        assert locked[0]._for_update_arg.read
        assert "SHARE" in str(locked[0].compile(dialect=mysql.dialect()))

    async def test_vote_requires_membership(self, machine, actions, two_team_game):
        game = two_team_game["game"]
        team_a, _ = two_team_game["teams"]
        await open_round(machine, actions, two_team_game)
        with pytest.raises(PermissionDenied):
            await actions.cast_vote(game.id, "stranger", team_a.id)

    async def test_vote_only_while_voting(self, machine, actions, two_team_game):
        game = two_team_game["game"]
        team_a, _ = two_team_game["teams"]
        voter = two_team_game["members"][team_a.id][0]
        await machine.start_round(game.id)
        with pytest.raises(PreconditionFailed):
            await actions.cast_vote(game.id, voter.user_id, team_a.id)

    async def test_vote_for_inactive_team_rejected(self, machine, actions, editor, reader, two_team_game):
        game = two_team_game["game"]
        team_a, _ = two_team_game["teams"]
        voter = two_team_game["members"][team_a.id][0]
        await editor.add_team(game.id)
        extra = (await reader.list_teams(game.id))[-1]
        await editor.update_team(game.id, extra.id, TeamUpdate(is_active=False))
        await open_round(machine, actions, two_team_game)

        with pytest.raises(ValidationError):
            await actions.cast_vote(game.id, voter.user_id, extra.id)


class TestLineups:
    """队长选人"""

    async def test_full_lineup_rejects_another_player(self, machine, actions, editor, reader, two_team_game):
        game = two_team_game["game"]
        team_a, _ = two_team_game["teams"]
        leader, other = two_team_game["members"][team_a.id]
        started = await machine.start_round(game.id)

        await actions.toggle_lineup(game.id, team_a.id, leader.id, True, user_id=leader.user_id)
        with pytest.raises(ValidationError):
            await actions.toggle_lineup(game.id, team_a.id, other.id, True, user_id=leader.user_id)

        lineup = await reader.list_lineups(started.active_round_id)
        assert [e.participant_id for e in lineup] == [leader.id]

    async def test_eleventh_player_rejected_at_ten(self, machine, actions, editor, lobby, reader, join, game):
        teams = await reader.list_teams(game.id)
        challenge = (await reader.list_challenges(game.id))[0]
        await editor.update_challenge(game.id, challenge.id, ChallengeUpdate(participants_per_team=10))
        members = await join(game.id, [teams[0].id], per_team=11)
        squad = members[teams[0].id]
        await lobby.set_team_leader(game.id, teams[0].id, squad[0].id)
        started = await machine.start_round(game.id)

        for player in squad[:10]:
            await actions.toggle_lineup(game.id, teams[0].id, player.id, True, as_host=True)
        with pytest.raises(ValidationError):
            await actions.toggle_lineup(game.id, teams[0].id, squad[10].id, True, as_host=True)

        assert len(await reader.list_lineups(started.active_round_id)) == 10

    async def test_only_leader_or_host(self, machine, actions, two_team_game):
        game = two_team_game["game"]
        team_a, _ = two_team_game["teams"]
        leader, other = two_team_game["members"][team_a.id]
        await machine.start_round(game.id)

        with pytest.raises(PermissionDenied):
            await actions.toggle_lineup(game.id, team_a.id, other.id, True, user_id=other.user_id)

        lineup = await actions.toggle_lineup(game.id, team_a.id, other.id, True, as_host=True)
        assert [e.participant_id for e in lineup] == [other.id]

    async def test_member_of_other_team_rejected(self, machine, actions, two_team_game):
        game = two_team_game["game"]
        team_a, team_b = two_team_game["teams"]
        leader_a = two_team_game["members"][team_a.id][0]
        outsider = two_team_game["members"][team_b.id][1]
        await machine.start_round(game.id)

        with pytest.raises(ValidationError):
            await actions.toggle_lineup(game.id, team_a.id, outsider.id, True, user_id=leader_a.user_id)

    async def test_adding_twice_is_a_noop_and_removal_works(self, machine, actions, two_team_game):
        game = two_team_game["game"]
        team_a, _ = two_team_game["teams"]
        leader = two_team_game["members"][team_a.id][0]
        await machine.start_round(game.id)

        await actions.toggle_lineup(game.id, team_a.id, leader.id, True, user_id=leader.user_id)
        lineup = await actions.toggle_lineup(game.id, team_a.id, leader.id, True, user_id=leader.user_id)
        assert len(lineup) == 1

        lineup = await actions.toggle_lineup(game.id, team_a.id, leader.id, False, user_id=leader.user_id)
        assert lineup == []

    async def test_lineups_frozen_after_voting_opens(self, machine, actions, two_team_game):
        game = two_team_game["game"]
        team_a, _ = two_team_game["teams"]
        leader = two_team_game["members"][team_a.id][0]
        await open_round(machine, actions, two_team_game)

        with pytest.raises(PreconditionFailed):
            await actions.toggle_lineup(game.id, team_a.id, leader.id, False, user_id=leader.user_id)
