"""
Lobby service tests
大厅服务测试 - 加入、昵称、分队、队长
"""

import pytest

from party_game.core.exceptions import (
    NotFoundError, PermissionDenied, PreconditionFailed, ValidationError,
)
from party_game.schemas.game import GameSettingsUpdate, GameStatus
from party_game.services.lobby import normalize_nickname


class TestNickname:

    def test_trimmed(self):
        assert normalize_nickname("  Ann ") == "Ann"

    @pytest.mark.parametrize("value", ["", "   ", None, "x" * 21])
    def test_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_nickname(value)

    def test_twenty_characters_allowed(self):
        assert normalize_nickname("x" * 20) == "x" * 20


class TestJoin:
    """加入游戏"""

    async def test_join_is_idempotent_per_identity(self, lobby, reader, game):
        first = await lobby.join_game(game.id, "device-1", "Ann")
        again = await lobby.join_game(game.id, "device-1", "Someone Else")

        assert again.id == first.id
        assert again.nickname == "Ann"
        assert len(await reader.list_participants(game.id)) == 1

    async def test_distinct_identities_get_distinct_rows(self, lobby, reader, game):
        await lobby.join_game(game.id, "device-1", "Ann")
        await lobby.join_game(game.id, "device-2", "Bob")
        assert len(await reader.list_participants(game.id)) == 2

    async def test_unknown_game(self, lobby):
        with pytest.raises(NotFoundError):
            await lobby.join_game("missing", "device-1", "Ann")

    async def test_archived_game_rejects_new_players(self, lobby, editor, game):
        await editor.update_settings(game.id, GameSettingsUpdate(status=GameStatus.ARCHIVED))
        with pytest.raises(PreconditionFailed):
            await lobby.join_game(game.id, "device-1", "Ann")

    async def test_invalid_nickname_writes_nothing(self, lobby, reader, game):
        with pytest.raises(ValidationError):
            await lobby.join_game(game.id, "device-1", "   ")
        assert await reader.list_participants(game.id) == []

    async def test_rename_only_by_owner(self, lobby, game):
        participant = await lobby.join_game(game.id, "device-1", "Ann")
        renamed = await lobby.update_nickname(participant.id, "device-1", " Annie ")
        assert renamed.nickname == "Annie"

        with pytest.raises(PermissionDenied):
            await lobby.update_nickname(participant.id, "device-2", "Hijack")


class TestAssignment:
    """分队和队长"""

    async def test_assign_and_unassign(self, lobby, teams, game):
        participant = await lobby.join_game(game.id, "device-1", "Ann")
        assigned = await lobby.assign_participant(game.id, participant.id, teams[0].id)
        assert assigned.game_team_id == teams[0].id

        unassigned = await lobby.assign_participant(game.id, participant.id, None)
        assert unassigned.game_team_id is None

    async def test_team_capacity(self, lobby, editor, teams, game):
        await editor.update_settings(game.id, GameSettingsUpdate(max_players_per_team=1))
        first = await lobby.join_game(game.id, "device-1", "Ann")
        second = await lobby.join_game(game.id, "device-2", "Bob")
        await lobby.assign_participant(game.id, first.id, teams[0].id)

        with pytest.raises(ValidationError):
            await lobby.assign_participant(game.id, second.id, teams[0].id)

    async def test_leader_must_be_member(self, lobby, teams, game):
        participant = await lobby.join_game(game.id, "device-1", "Ann")
        with pytest.raises(ValidationError):
            await lobby.set_team_leader(game.id, teams[0].id, participant.id)

        await lobby.assign_participant(game.id, participant.id, teams[0].id)
        team = await lobby.set_team_leader(game.id, teams[0].id, participant.id)
        assert team.leader_participant_id == participant.id

    async def test_leaving_team_clears_leadership(self, lobby, reader, teams, game):
        participant = await lobby.join_game(game.id, "device-1", "Ann")
        await lobby.assign_participant(game.id, participant.id, teams[0].id)
        await lobby.set_team_leader(game.id, teams[0].id, participant.id)

        await lobby.assign_participant(game.id, participant.id, teams[1].id)
        refreshed = {t.id: t for t in await reader.list_teams(game.id)}
        assert refreshed[teams[0].id].leader_participant_id is None

    async def test_teams_locked_during_voting(self, machine, actions, lobby, two_team_game):
        game = two_team_game["game"]
        team_a, team_b = two_team_game["teams"]
        members = two_team_game["members"]
        await machine.start_round(game.id)
        for team in (team_a, team_b):
            leader = members[team.id][0]
            await actions.toggle_lineup(game.id, team.id, leader.id, True, user_id=leader.user_id)
        await machine.open_voting(game.id)

        with pytest.raises(PreconditionFailed):
            await lobby.assign_participant(game.id, members[team_a.id][1].id, team_b.id)

    async def test_moving_during_selection_drops_lineup_entry(self, machine, actions, lobby, reader, two_team_game):
        game = two_team_game["game"]
        team_a, team_b = two_team_game["teams"]
        leader_a = two_team_game["members"][team_a.id][0]
        player = two_team_game["members"][team_a.id][1]
        started = await machine.start_round(game.id)
        await actions.toggle_lineup(game.id, team_a.id, player.id, True, user_id=leader_a.user_id)

        await lobby.assign_participant(game.id, player.id, team_b.id)
        assert await reader.list_lineups(started.active_round_id) == []
